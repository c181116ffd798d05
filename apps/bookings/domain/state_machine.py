"""
Booking lifecycle state machine

    PENDING    -> CONFIRMED (payment captured) | CANCELLED
    CONFIRMED  -> COMPLETED | CANCELLED | NO_SHOW

PAYMENT_PENDING, CHECKED_IN, IN_PROGRESS and REFUNDED are states that
collaborators (payment capture, on-site check-in, refund processing) work
with. The engine itself never takes an edge outside ALLOWED_TRANSITIONS.
"""

from enum import Enum

from shared.domain.exceptions import IllegalTransition


class BookingStatus(Enum):
    PENDING = 'pending'
    PAYMENT_PENDING = 'payment_pending'
    CONFIRMED = 'confirmed'
    CHECKED_IN = 'checked_in'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    NO_SHOW = 'no_show'
    REFUNDED = 'refunded'


ALLOWED_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({
        BookingStatus.COMPLETED,
        BookingStatus.CANCELLED,
        BookingStatus.NO_SHOW,
    }),
}

TERMINAL_STATES = frozenset({
    BookingStatus.COMPLETED,
    BookingStatus.CANCELLED,
    BookingStatus.NO_SHOW,
    BookingStatus.REFUNDED,
})


def can_transition(current: BookingStatus, target: BookingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: BookingStatus, target: BookingStatus):
    if not can_transition(current, target):
        raise IllegalTransition(current.value, target.value)


def parse_status(current: BookingStatus, requested) -> BookingStatus:
    """Resolve a requested status; unknown names are illegal, never ignored"""
    if isinstance(requested, BookingStatus):
        return requested
    try:
        return BookingStatus(str(requested).lower())
    except ValueError:
        raise IllegalTransition(current.value, str(requested)) from None
