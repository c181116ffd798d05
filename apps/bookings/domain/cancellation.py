"""
Cancellation Policy Engine

Pure functions turning (policy, booking start, now) into a refund.

Lead time is whole days rounded up, so cancelling 2 days and 1 hour
before the start counts as 3 days. A free-cancellation window that is
met refunds everything. Otherwise tiers are scanned in the order given
and the first tier whose threshold is within the lead time wins. No
match means no refund.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Mapping

from shared.domain.base import ValueObject
from shared.domain.exceptions import InvalidPolicy, ValidationError
from shared.domain.value_objects import HUNDRED, Money, to_decimal

ONE_DAY = timedelta(days=1)
FULL_REFUND = Decimal('100')
NO_REFUND = Decimal('0')


@dataclass(frozen=True)
class RefundTier(ValueObject):
    """Refund `refund_percentage` when cancelling at least `days_before` days ahead"""
    days_before: int
    refund_percentage: Decimal

    def __post_init__(self):
        if isinstance(self.days_before, bool) or not isinstance(self.days_before, int):
            raise InvalidPolicy(f"Refund tier days_before must be an integer, got {self.days_before!r}")
        if self.days_before < 0:
            raise InvalidPolicy(f"Refund tier days_before cannot be negative ({self.days_before})")
        try:
            percentage = to_decimal(self.refund_percentage)
        except (ArithmeticError, TypeError, ValueError) as exc:
            raise InvalidPolicy(f"Refund percentage {self.refund_percentage!r} is not a number") from exc
        if not NO_REFUND <= percentage <= FULL_REFUND:
            raise InvalidPolicy(f"Refund percentage must be between 0 and 100, got {percentage}")
        object.__setattr__(self, 'refund_percentage', percentage)


@dataclass(frozen=True)
class CancellationPolicy(ValueObject):
    """
    Listing-owned cancellation policy

    `free_cancellation_days`: full refund when at least this many days ahead.
    `tiers`: evaluated in the order given; first satisfied tier wins.
    """
    free_cancellation_days: int | None = None
    tiers: tuple[RefundTier, ...] = ()

    def __post_init__(self):
        if self.free_cancellation_days is not None:
            if isinstance(self.free_cancellation_days, bool) or not isinstance(self.free_cancellation_days, int):
                raise InvalidPolicy("free_cancellation days_before must be an integer")
            if self.free_cancellation_days < 0:
                raise InvalidPolicy("free_cancellation days_before cannot be negative")
        object.__setattr__(self, 'tiers', tuple(self.tiers))
        for tier in self.tiers:
            if not isinstance(tier, RefundTier):
                raise InvalidPolicy(f"Policy tiers must be RefundTier instances, got {type(tier).__name__}")

    @classmethod
    def from_document(cls, document: Mapping[str, Any] | None) -> 'CancellationPolicy':
        """
        Build a policy from the listing document shape:

            {"free_cancellation": {"days_before": 7},
             "refund_policy": [{"days_before": 3, "refund_percentage": 50}, ...]}

        A string names one of the presets instead.
        """
        if document is None:
            return cls()
        if isinstance(document, str):
            return cls.preset(document)
        if not isinstance(document, Mapping):
            raise InvalidPolicy(f"Cancellation policy must be a mapping, got {type(document).__name__}")

        if 'preset' in document:
            return cls.preset(document['preset'])

        free_days = None
        free = document.get('free_cancellation')
        if free is not None:
            if not isinstance(free, Mapping) or 'days_before' not in free:
                raise InvalidPolicy("free_cancellation must be a mapping with days_before")
            free_days = free['days_before']

        raw_tiers = document.get('refund_policy') or []
        if not isinstance(raw_tiers, (list, tuple)):
            raise InvalidPolicy("refund_policy must be a list of tiers")
        tiers = []
        for raw in raw_tiers:
            if not isinstance(raw, Mapping) or 'days_before' not in raw or 'refund_percentage' not in raw:
                raise InvalidPolicy(f"Malformed refund tier: {raw!r}")
            tiers.append(RefundTier(raw['days_before'], raw['refund_percentage']))
        return cls(free_cancellation_days=free_days, tiers=tuple(tiers))

    @classmethod
    def preset(cls, name: str) -> 'CancellationPolicy':
        try:
            return PRESETS[name]
        except KeyError:
            raise InvalidPolicy(f"Unknown cancellation policy preset '{name}'") from None

    def to_document(self) -> dict:
        document: dict = {
            'refund_policy': [
                {'days_before': tier.days_before, 'refund_percentage': str(tier.refund_percentage)}
                for tier in self.tiers
            ],
        }
        if self.free_cancellation_days is not None:
            document['free_cancellation'] = {'days_before': self.free_cancellation_days}
        return document


PRESETS = {
    'flexible': CancellationPolicy(free_cancellation_days=3),
    'moderate': CancellationPolicy(
        free_cancellation_days=3,
        tiers=(RefundTier(1, Decimal('50')),),
    ),
    'strict': CancellationPolicy(free_cancellation_days=7),
    'no_refund': CancellationPolicy(),
}


@dataclass(frozen=True)
class RefundQuote(ValueObject):
    percentage: Decimal
    amount: Money
    days_until_start: int


def start_of_day(day: date, tz=timezone.utc) -> datetime:
    """Bookings start at midnight of their start date"""
    return datetime.combine(day, time.min, tzinfo=tz)


def days_until(start: datetime, now: datetime) -> int:
    """Whole days from now until start, rounded up (negative once started)"""
    return -((now - start) // ONE_DAY)


def compute_refund_percentage(policy: CancellationPolicy, booking_start: datetime, now: datetime) -> Decimal:
    lead_days = days_until(booking_start, now)

    if policy.free_cancellation_days is not None and lead_days >= policy.free_cancellation_days:
        return FULL_REFUND

    for tier in policy.tiers:
        if tier.days_before <= lead_days:
            return tier.refund_percentage
    return NO_REFUND


def compute_refund(policy: CancellationPolicy, booking_start: datetime, now: datetime, total: Money) -> RefundQuote:
    """
    Deterministic refund for cancelling a booking that starts at
    `booking_start`, evaluated at `now`, against the locked booking total.
    """
    if booking_start.tzinfo is None or now.tzinfo is None:
        raise ValidationError("booking_start and now must be timezone-aware", field='now')
    percentage = compute_refund_percentage(policy, booking_start, now)
    return RefundQuote(
        percentage=percentage,
        amount=total * (percentage / HUNDRED),
        days_until_start=days_until(booking_start, now),
    )
