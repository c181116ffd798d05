"""
Booking engine error taxonomy

Business-rule rejections are never retried. ConcurrencyConflict and
StoreUnavailable are the only retryable errors; callers may retry them,
the engine retries ConcurrencyConflict itself a bounded number of times.

Every error renders to a plain dict via to_dict() with enough detail for a
caller to build an actionable message. Storage error text is never part
of that payload.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable
from uuid import UUID


class BookingEngineError(Exception):
    """Root of all errors raised by the booking engine"""

    code = 'engine_error'
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        payload = {'code': self.code, 'message': self.message, 'retryable': self.retryable}
        payload.update({key: _plain(value) for key, value in self.details.items()})
        return payload


def _plain(value):
    if isinstance(value, date):
        return value.isoformat()
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    if isinstance(value, UUID):
        return str(value)
    return value


class BusinessRuleViolation(BookingEngineError):
    """A request rejected by a business rule. Never retried automatically."""

    code = 'business_rule_violation'


class ValidationError(BusinessRuleViolation):
    """Malformed or contradictory input, rejected before touching inventory"""

    code = 'validation_error'

    def __init__(self, message: str, field: str | None = None, **details: Any):
        super().__init__(message, field=field, **details)
        self.field = field


class ItemNotBookable(ValidationError):
    """Listing is missing or not published"""

    code = 'item_not_bookable'


class InsufficientCapacity(BusinessRuleViolation):
    """Not enough remaining capacity right now. Never degraded to a partial hold."""

    code = 'insufficient_capacity'

    def __init__(
        self,
        message: str,
        *,
        night: date | None = None,
        slot_id=None,
        alternatives: Iterable = (),
    ):
        super().__init__(message, night=night, slot_id=slot_id, alternatives=list(alternatives))
        self.night = night
        self.slot_id = slot_id
        self.alternatives = list(alternatives)


class ImpossibleRequest(BusinessRuleViolation):
    """The request exceeds the total capacity, so no amount of waiting helps"""

    code = 'impossible_request'


class IllegalTransition(BusinessRuleViolation):
    """Requested status change is not an edge of the lifecycle table"""

    code = 'illegal_transition'

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Cannot change booking status from '{current}' to '{requested}'",
            current=current,
            requested=requested,
        )
        self.current = current
        self.requested = requested


class BookingNotFound(BusinessRuleViolation):
    code = 'booking_not_found'


class HoldNotFound(BusinessRuleViolation):
    code = 'hold_not_found'


class HoldAlreadyReleased(BusinessRuleViolation):
    """A released hold cannot be confirmed"""

    code = 'hold_already_released'


class HoldAlreadyBooked(BookingEngineError):
    """Another booking was created on this hold first"""

    code = 'hold_already_booked'


class CapacityInvariantViolated(BookingEngineError):
    """A capacity credit would push remaining above total"""

    code = 'capacity_invariant_violated'


class InvalidPolicy(BookingEngineError):
    """Pricing or cancellation policy data has an invalid shape (programming error)"""

    code = 'invalid_policy'


class ReferenceCollision(BookingEngineError):
    """Could not produce a unique booking reference within the retry budget"""

    code = 'reference_collision'


class ConcurrencyConflict(BookingEngineError):
    """A conditional update lost a race. Safe to retry."""

    code = 'concurrency_conflict'
    retryable = True


class StoreUnavailable(BookingEngineError):
    """Storage I/O failed. Distinct from business rejections so callers may retry."""

    code = 'store_unavailable'
    retryable = True
