"""
Booking Domain Entities

Core business entities for the booking domain:
- Booking: aggregate root shared by both item kinds
- ExcursionBooking / LodgingBooking: the two booking variants
- StatusChange: one immutable entry of the status history
- CancellationRecord: refund owed once a booking is cancelled
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from apps.bookings.domain.cancellation import CancellationPolicy, start_of_day
from apps.bookings.domain.events import BookingCreated, BookingStatusChanged, RefundComputed
from apps.bookings.domain.state_machine import TERMINAL_STATES, BookingStatus, ensure_transition
from apps.catalog.domain import ItemKind, ItemRef
from apps.pricing.calculator import PricingBreakdown, SelectedExtra
from shared.domain.base import Aggregate, ValueObject
from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import DateRange, Money

__all__ = [
    'Booking',
    'BookingStatus',
    'CancellationRecord',
    'ExcursionBooking',
    'LodgingBooking',
    'Participant',
    'PartyComposition',
    'RefundStatus',
    'StatusChange',
]

SYSTEM_ACTOR = 'system'
AWAITING_PAYMENT = frozenset({BookingStatus.PENDING, BookingStatus.PAYMENT_PENDING})


class RefundStatus(Enum):
    """Refund processing state, advanced by the payment collaborator"""
    PENDING = 'pending'
    PROCESSED = 'processed'
    FAILED = 'failed'


@dataclass(frozen=True)
class Participant(ValueObject):
    name: str
    age: int | None = None

    def to_dict(self) -> dict:
        return {'name': self.name, 'age': self.age}


@dataclass(frozen=True)
class PartyComposition(ValueObject):
    """Who is travelling: head counts plus optional named participants"""
    adults: int
    children: int = 0
    participants: tuple[Participant, ...] = ()

    def __post_init__(self):
        for name in ('adults', 'children'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ValidationError(f"{name} must be a non-negative integer", field=name)
        if self.size < 1:
            raise ValidationError("Party size must be at least 1", field='adults')
        object.__setattr__(self, 'participants', tuple(self.participants))
        if len(self.participants) > self.size:
            raise ValidationError(
                f"{len(self.participants)} named participants for a party of {self.size}",
                field='participants',
            )

    @property
    def size(self) -> int:
        return self.adults + self.children

    def to_dict(self) -> dict:
        return {
            'adults': self.adults,
            'children': self.children,
            'participants': [participant.to_dict() for participant in self.participants],
        }


@dataclass(frozen=True)
class StatusChange(ValueObject):
    """Audit trail entry. Appended once, never rewritten."""
    from_status: BookingStatus | None
    to_status: BookingStatus
    actor: str
    changed_at: datetime
    reason: str = ''

    def to_dict(self) -> dict:
        return {
            'from_status': self.from_status.value if self.from_status else None,
            'to_status': self.to_status.value,
            'actor': self.actor,
            'changed_at': self.changed_at.isoformat(),
            'reason': self.reason,
        }


@dataclass(frozen=True)
class CancellationRecord(ValueObject):
    cancelled_by: str
    cancelled_at: datetime
    refund_percentage: Decimal
    refund_amount: Money
    days_until_start: int
    reason: str = ''
    refund_status: RefundStatus = RefundStatus.PENDING

    def to_dict(self) -> dict:
        return {
            'cancelled_by': self.cancelled_by,
            'cancelled_at': self.cancelled_at.isoformat(),
            'reason': self.reason,
            'refund_percentage': str(self.refund_percentage),
            'refund_amount': self.refund_amount.to_dict(),
            'days_until_start': self.days_until_start,
            'refund_status': self.refund_status.value,
        }


@dataclass(kw_only=True, eq=False)
class Booking(Aggregate):
    """
    Booking Aggregate Root

    One reservation of one listing. Created in PENDING with capacity
    already held, then moved only through apply_transition().

    Key invariants:
    - pricing is locked at creation and never recomputed
    - booking_number and confirmation_code never change
    - history only grows, one entry per status change
    """

    item_id: UUID
    requester_id: UUID
    dates: DateRange
    party: PartyComposition
    extras: tuple[SelectedExtra, ...] = ()
    pricing: PricingBreakdown
    cancellation_policy: CancellationPolicy = field(default_factory=CancellationPolicy)
    hold_id: UUID
    booking_number: str
    confirmation_code: str
    special_requests: str = ''
    payment_due_at: datetime | None = None

    status: BookingStatus = BookingStatus.PENDING
    history: tuple[StatusChange, ...] = ()
    cancellation: CancellationRecord | None = None
    version: int = 0

    confirmed_at: datetime | None = None
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None
    no_show_at: datetime | None = None

    kind = None

    @property
    def item(self) -> ItemRef:
        return ItemRef(self.kind, self.item_id)

    @property
    def starts_at(self) -> datetime:
        return start_of_day(self.dates.start_date)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def record_creation(self, actor: str, now: datetime):
        self.history = self.history + (StatusChange(None, self.status, actor, now, 'created'),)
        self.add_event(BookingCreated(
            aggregate_id=self.id,
            booking_id=self.id,
            booking_number=self.booking_number,
            confirmation_code=self.confirmation_code,
            item=self.item,
            requester_id=self.requester_id,
            dates=self.dates,
            total=self.pricing.total,
            payment_due_at=self.payment_due_at,
        ))

    def apply_transition(self, target: BookingStatus, actor: str, now: datetime, reason: str = '') -> StatusChange:
        """
        Move to `target`, append the history entry and stamp the time.

        Raises IllegalTransition without touching the booking when the
        edge is not in the lifecycle table.
        """
        ensure_transition(self.status, target)

        change = StatusChange(self.status, target, actor, now, reason)
        self.status = target
        self.history = self.history + (change,)
        self.updated_at = now

        if target is BookingStatus.CONFIRMED:
            self.confirmed_at = now
        elif target is BookingStatus.CANCELLED:
            self.cancelled_at = now
        elif target is BookingStatus.COMPLETED:
            self.completed_at = now
        elif target is BookingStatus.NO_SHOW:
            self.no_show_at = now

        self.add_event(BookingStatusChanged(
            aggregate_id=self.id,
            booking_id=self.id,
            booking_number=self.booking_number,
            item=self.item,
            requester_id=self.requester_id,
            from_status=change.from_status.value,
            to_status=target.value,
            actor=actor,
            reason=reason,
        ))
        return change

    def attach_cancellation(self, record: CancellationRecord):
        if self.status is not BookingStatus.CANCELLED:
            raise ValidationError("Only a cancelled booking carries a cancellation record", field='status')
        self.cancellation = record
        self.add_event(RefundComputed(
            aggregate_id=self.id,
            booking_id=self.id,
            booking_number=self.booking_number,
            requester_id=self.requester_id,
            refund_percentage=record.refund_percentage,
            refund_amount=record.refund_amount,
            days_until_start=record.days_until_start,
        ))

    def payment_instructions(self) -> dict | None:
        """What the payment collaborator must collect, and by when"""
        if self.status not in AWAITING_PAYMENT or self.payment_due_at is None:
            return None
        return {
            'amount': str(self.pricing.total.amount),
            'currency': self.pricing.currency,
            'due_at': self.payment_due_at.isoformat(),
        }

    def _kind_details(self) -> dict:
        return {}

    def to_dict(self) -> dict:
        return {
            'id': str(self.id),
            'item': self.item.to_dict(),
            **self._kind_details(),
            'requester_id': str(self.requester_id),
            'booking_number': self.booking_number,
            'confirmation_code': self.confirmation_code,
            'status': self.status.value,
            'dates': self.dates.to_dict(),
            'party': self.party.to_dict(),
            'extras': [{'service_id': extra.service_id, 'quantity': extra.quantity} for extra in self.extras],
            'special_requests': self.special_requests,
            'pricing': self.pricing.to_dict(),
            'status_history': [change.to_dict() for change in self.history],
            'cancellation': self.cancellation.to_dict() if self.cancellation else None,
            'payment': self.payment_instructions(),
            'created_at': self.created_at.isoformat(),
            'confirmed_at': self.confirmed_at.isoformat() if self.confirmed_at else None,
            'cancelled_at': self.cancelled_at.isoformat() if self.cancelled_at else None,
            'completed_at': self.completed_at.isoformat() if self.completed_at else None,
            'no_show_at': self.no_show_at.isoformat() if self.no_show_at else None,
        }

    def voucher(self) -> dict:
        """Confirmation document handed to the requester"""
        return {
            'booking_number': self.booking_number,
            'confirmation_code': self.confirmation_code,
            'status': self.status.value,
            'item': self.item.to_dict(),
            **self._kind_details(),
            'start_date': self.dates.start_date.isoformat(),
            'end_date': self.dates.end_date.isoformat(),
            'guests': self.party.size,
            'participants': [participant.name for participant in self.party.participants],
            'extras': [{'service_id': extra.service_id, 'quantity': extra.quantity} for extra in self.extras],
            'total': self.pricing.total.to_dict(),
            'payment': self.payment_instructions(),
            'special_requests': self.special_requests,
        }


@dataclass(kw_only=True, eq=False)
class ExcursionBooking(Booking):
    slot_id: UUID | None = None

    kind = ItemKind.EXCURSION

    def _kind_details(self) -> dict:
        return {'slot_id': str(self.slot_id) if self.slot_id else None}


@dataclass(kw_only=True, eq=False)
class LodgingBooking(Booking):
    room_type_id: UUID
    rooms: int = 1

    kind = ItemKind.LODGING

    @property
    def nights(self) -> int:
        return len(self.dates)

    def _kind_details(self) -> dict:
        return {'room_type_id': str(self.room_type_id), 'rooms': self.rooms, 'nights': self.nights}
