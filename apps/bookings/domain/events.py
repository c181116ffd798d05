"""
Booking Domain Events

Events that represent things that have happened in the booking domain.
These are published after successful transaction commits and feed the
notification collaborator.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from apps.catalog.domain import ItemRef
from shared.domain.base import DomainEvent
from shared.domain.value_objects import DateRange, Money


@dataclass(kw_only=True)
class BookingCreated(DomainEvent):
    """
    Event: A new booking was created in PENDING with capacity held

    Triggers:
    - Payment collaborator starts collecting payment
    - Requester receives booking number and confirmation code
    """
    booking_id: UUID
    booking_number: str
    confirmation_code: str
    item: ItemRef
    requester_id: UUID
    dates: DateRange
    total: Money
    payment_due_at: datetime | None = None


@dataclass(kw_only=True)
class BookingStatusChanged(DomainEvent):
    """Event: Booking moved along one edge of the lifecycle"""
    booking_id: UUID
    booking_number: str
    item: ItemRef
    requester_id: UUID
    from_status: str
    to_status: str
    actor: str
    reason: str = ''


@dataclass(kw_only=True)
class RefundComputed(DomainEvent):
    """
    Event: A cancellation computed the refund owed

    Triggers:
    - Refund processing by the payment collaborator
    - Cancellation notice to the requester
    """
    booking_id: UUID
    booking_number: str
    requester_id: UUID
    refund_percentage: Decimal
    refund_amount: Money
    days_until_start: int
