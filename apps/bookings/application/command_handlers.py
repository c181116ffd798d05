"""
Booking Command Handlers

These are the use cases for the booking domain.
They orchestrate inventory, pricing, references and persistence.

Commands:
- CreateBookingCommand: hold capacity, price and persist a PENDING booking
- TransitionBookingCommand: move a booking along one lifecycle edge
- CancelBookingCommand: cancel, compute the refund and release capacity
- AvailabilityQuery: read-only open windows for browsing
- ListBookingsQuery: paged bookings of one requester or one owner's listings
- ReleaseAbandonedHoldsCommand: cancel PENDING bookings never paid for
"""

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable
from uuid import UUID, uuid4

import structlog

from apps.bookings.domain.cancellation import compute_refund
from apps.bookings.domain.entities import (
    SYSTEM_ACTOR,
    Booking,
    BookingStatus,
    CancellationRecord,
    ExcursionBooking,
    LodgingBooking,
    Participant,
    PartyComposition,
)
from apps.bookings.domain.references import ReferenceGenerator
from apps.bookings.domain.state_machine import ensure_transition, parse_status
from apps.bookings.repositories import BookingCriteria
from apps.catalog.domain import ItemKind, ItemRef, Listing, LodgingItem
from apps.inventory.domain import HoldResult
from apps.pricing.calculator import PricingPolicy, SelectedExtra, no_seasonal_adjustment, price
from shared.application.retry import retry_on_conflict
from shared.domain.base import utcnow
from shared.domain.exceptions import (
    BookingEngineError,
    ConcurrencyConflict,
    HoldAlreadyBooked,
    IllegalTransition,
    ImpossibleRequest,
    ItemNotBookable,
    ReferenceCollision,
    ValidationError,
)
from shared.domain.value_objects import DateRange

logger = structlog.get_logger(__name__)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


# ===== Commands =====

@dataclass(kw_only=True)
class CreateBookingCommand:
    """
    Command to create a new booking

    `request_id` correlates retries of the same request: repeating it
    returns the booking already created instead of holding twice.
    """
    item: ItemRef
    requester_id: UUID
    start_date: date
    end_date: date
    adults: int
    children: int = 0
    participants: tuple[Participant, ...] = ()
    room_type_id: UUID | None = None
    rooms: int = 1
    extras: tuple[SelectedExtra, ...] = ()
    special_requests: str = ''
    request_id: UUID = field(default_factory=uuid4)


@dataclass(kw_only=True)
class TransitionBookingCommand:
    booking_id: UUID
    target_status: BookingStatus | str
    actor: str
    reason: str = ''


@dataclass(kw_only=True)
class CancelBookingCommand:
    booking_id: UUID
    actor: str
    reason: str = ''


@dataclass(kw_only=True)
class AvailabilityQuery:
    item: ItemRef
    start_date: date
    end_date: date
    party_size: int = 1
    room_type_id: UUID | None = None


@dataclass(kw_only=True)
class ListBookingsQuery:
    """
    One page of bookings for a requester or for an owner's listings.

    `status` takes one status or several; `kind` narrows to excursions or
    lodging. Pages are numbered from 1.
    """
    requester_id: UUID | None = None
    owner_id: UUID | None = None
    status: object = None
    kind: ItemKind | str | None = None
    starts_from: date | None = None
    starts_until: date | None = None
    page: int = 1
    limit: int = DEFAULT_PAGE_SIZE
    newest_first: bool = True


@dataclass(frozen=True, kw_only=True)
class BookingPage:
    bookings: tuple[Booking, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return -(-self.total // self.limit)

    def to_dict(self) -> dict:
        return {
            'bookings': [booking.to_dict() for booking in self.bookings],
            'pagination': {
                'page': self.page,
                'pages': self.pages,
                'total': self.total,
                'limit': self.limit,
            },
        }


def make_date_range(start_date, end_date) -> DateRange:
    """Reject missing, zero-length and inverted ranges before any I/O"""
    if start_date is None or end_date is None:
        raise ValidationError("Both start and end dates are required", field='dates')
    if end_date <= start_date:
        raise ValidationError(
            f"End date {end_date} must be after start date {start_date}",
            field='end_date',
            start_date=start_date,
            end_date=end_date,
        )
    return DateRange(start_date, end_date)


class _Handler:
    """Shared retry and clock plumbing"""

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utcnow,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.05,
    ):
        self._clock = clock
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay

    def _retry(self, operation):
        return retry_on_conflict(
            operation,
            attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
        )


# ===== Command Handlers =====

class CreateBookingHandler(_Handler):
    """
    Handler for CreateBooking command

    Steps:
    1. Validate dates, party and listing without touching inventory
    2. Check-and-hold capacity (retried on ConcurrencyConflict)
    3. Price against the held cells
    4. Assign references and persist the PENDING booking
    5. Anything failing after step 2 releases the hold, unless the hold
       came back from an earlier call with the same request_id
    """

    def __init__(
        self,
        *,
        catalog,
        inventory,
        bookings,
        uow_factory,
        references: ReferenceGenerator,
        policy: PricingPolicy = PricingPolicy(),
        seasonal_hook=no_seasonal_adjustment,
        payment_window: timedelta = timedelta(hours=24),
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.catalog = catalog
        self.inventory = inventory
        self.bookings = bookings
        self.uow_factory = uow_factory
        self.references = references
        self.policy = policy
        self.seasonal_hook = seasonal_hook
        self.payment_window = payment_window

    def handle(self, command: CreateBookingCommand) -> Booking:
        now = self._clock()
        dates = make_date_range(command.start_date, command.end_date)
        if dates.start_date < now.date():
            raise ValidationError(
                f"Start date {dates.start_date} is in the past",
                field='start_date',
                start_date=dates.start_date,
            )
        party = PartyComposition(command.adults, command.children, tuple(command.participants))
        listing = self._bookable_listing(command.item)
        self._check_request(listing, command, party)

        room_type_id = None
        if isinstance(listing, LodgingItem):
            room_type_id = listing.room_type(command.room_type_id).room_type_id

        logger.info(
            "booking.create.started",
            item=str(command.item),
            request_id=str(command.request_id),
            party_size=party.size,
            start_date=dates.start_date.isoformat(),
            end_date=dates.end_date.isoformat(),
        )

        held = self._retry(lambda: self.inventory.check_and_hold(
            command.item,
            dates,
            party.size,
            room_type_id,
            rooms=command.rooms,
            request_id=command.request_id,
        ))

        existing = self.bookings.find_by_hold(held.hold_id)
        if existing is not None:
            return self._replayed(existing, command)

        try:
            pricing = price(
                listing,
                dates,
                party.size,
                command.extras,
                policy=self.policy,
                room_type_id=room_type_id,
                rooms=command.rooms,
                slot_price=held.slot_price,
                nightly_prices=dict(held.nightly_prices),
                seasonal_hook=self.seasonal_hook,
            )
            booking = self._persist(
                lambda refs: self._build(
                    listing, command, dates, party, pricing, held, refs, now, now + self.payment_window
                ),
                actor=str(command.requester_id),
                now=now,
            )
        except HoldAlreadyBooked:
            # a concurrent retry of the same request saved its booking first
            return self._replayed(self.bookings.find_by_hold(held.hold_id), command)
        except BaseException:
            self._release_after_failure(held)
            raise

        logger.info(
            "booking.created",
            booking_id=str(booking.id),
            booking_number=booking.booking_number,
            hold_id=str(held.hold_id),
            total=str(booking.pricing.total.amount),
            currency=booking.pricing.currency,
        )
        return booking

    def _bookable_listing(self, item: ItemRef) -> Listing:
        listing = self.catalog.get(item)
        if listing is None:
            raise ItemNotBookable(f"Listing {item} does not exist", field='item', item=item)
        if not listing.is_bookable:
            raise ItemNotBookable(
                f"Listing {item} is {listing.status.value} and cannot be booked",
                field='item',
                item=item,
                status=listing.status.value,
            )
        return listing

    def _check_request(self, listing: Listing, command: CreateBookingCommand, party: PartyComposition):
        if listing.owner_id == command.requester_id:
            raise ValidationError("Owners cannot book their own listing", field='requester_id')

        for extra in command.extras:
            if listing.extra(extra.service_id) is None:
                raise ValidationError(f"Unknown extra service '{extra.service_id}'", field='extras')

        if listing.kind is ItemKind.LODGING:
            if isinstance(command.rooms, bool) or not isinstance(command.rooms, int) or command.rooms < 1:
                raise ValidationError(f"Rooms must be a positive integer, got {command.rooms!r}", field='rooms')
            room_type = listing.room_type(command.room_type_id)
            if room_type is None:
                raise ValidationError(f"Unknown room type {command.room_type_id}", field='room_type_id')
            if party.size > room_type.max_guests * command.rooms:
                raise ImpossibleRequest(
                    f"{party.size} guests exceed {command.rooms} x {room_type.name} "
                    f"(max {room_type.max_guests} each)",
                    party_size=party.size,
                    room_type_id=room_type.room_type_id,
                )

    @staticmethod
    def _build(listing, command, dates, party, pricing, held, refs, now, payment_due_at) -> Booking:
        common = dict(
            item_id=listing.item_id,
            requester_id=command.requester_id,
            dates=dates,
            party=party,
            extras=tuple(command.extras),
            pricing=pricing,
            cancellation_policy=listing.cancellation_policy,
            hold_id=held.hold_id,
            booking_number=refs.booking_number,
            confirmation_code=refs.confirmation_code,
            special_requests=command.special_requests,
            payment_due_at=payment_due_at,
            created_at=now,
            updated_at=now,
        )
        if listing.kind is ItemKind.EXCURSION:
            return ExcursionBooking(slot_id=held.hold.slot_id, **common)
        return LodgingBooking(room_type_id=held.hold.room_type_id, rooms=command.rooms, **common)

    def _persist(self, build: Callable, *, actor: str, now: datetime) -> Booking:
        """Regenerate references when a concurrent insert took them first"""
        attempts = self.references.max_attempts
        for attempt in range(1, attempts + 1):
            booking = build(self.references.assign())
            try:
                with self.uow_factory() as uow:
                    booking.record_creation(actor, now)
                    uow.collect_events(booking)
                    self.bookings.add(booking)
                return booking
            except ReferenceCollision:
                if attempt == attempts:
                    raise
                logger.warning("booking.reference.collision", attempt=attempt, booking_number=booking.booking_number)
        raise AssertionError("unreachable")

    @staticmethod
    def _replayed(existing: Booking, command: CreateBookingCommand) -> Booking:
        logger.info("booking.create.replayed", booking_id=str(existing.id), request_id=str(command.request_id))
        return existing

    def _release_after_failure(self, held: HoldResult):
        """Give the hold back unless another call owns it"""
        hold_id = held.hold_id
        if held.replayed:
            # the call that took this hold decides its fate
            logger.info("booking.create.hold_kept", hold_id=str(hold_id), reason="replayed")
            return
        try:
            owner = self.bookings.find_by_hold(hold_id)
        except BookingEngineError:
            logger.warning("booking.create.owner_lookup_failed", hold_id=str(hold_id))
            owner = None
        if owner is not None:
            logger.info("booking.create.hold_kept", hold_id=str(hold_id), booking_id=str(owner.id))
            return
        try:
            self.inventory.release(hold_id)
        except BookingEngineError:
            # the caller re-raises the create failure
            logger.exception("booking.create.release_failed", hold_id=str(hold_id))
        else:
            logger.info("booking.create.hold_released", hold_id=str(hold_id))


class TransitionBookingHandler(_Handler):
    """
    Handler for lifecycle transitions

    Side effects:
    - -> CONFIRMED: confirm the inventory hold
    - -> CANCELLED: compute the refund, attach the record, release the hold
    - -> COMPLETED / NO_SHOW: timestamps only, capacity stays consumed

    An illegal edge raises before any side effect, so neither the booking
    nor inventory changes.
    """

    def __init__(self, *, inventory, bookings, uow_factory, **kwargs):
        super().__init__(**kwargs)
        self.inventory = inventory
        self.bookings = bookings
        self.uow_factory = uow_factory

    def handle(self, command: TransitionBookingCommand) -> Booking:
        return self._retry(lambda: self._apply(
            command.booking_id, command.target_status, command.actor, command.reason
        ))

    def _apply(self, booking_id: UUID, requested, actor: str, reason: str) -> Booking:
        booking = self.bookings.get(booking_id)
        target = parse_status(booking.status, requested)
        ensure_transition(booking.status, target)
        now = self._clock()

        record = None
        if target is BookingStatus.CANCELLED:
            quote = compute_refund(booking.cancellation_policy, booking.starts_at, now, booking.pricing.total)
            record = CancellationRecord(
                cancelled_by=actor,
                cancelled_at=now,
                refund_percentage=quote.percentage,
                refund_amount=quote.amount,
                days_until_start=quote.days_until_start,
                reason=reason,
            )

        previous = booking.status
        with self.uow_factory() as uow:
            if target is BookingStatus.CONFIRMED:
                self.inventory.confirm(booking.hold_id)
            booking.apply_transition(target, actor, now, reason)
            if record is not None:
                booking.attach_cancellation(record)
            uow.collect_events(booking)
            self.bookings.save(booking)
            if target is BookingStatus.CANCELLED:
                self.inventory.release(booking.hold_id)

        logger.info(
            "booking.transitioned",
            booking_id=str(booking.id),
            from_status=previous.value,
            to_status=target.value,
            actor=actor,
        )
        return booking


class CancelBookingHandler(TransitionBookingHandler):
    """Cancel and hand back the refund owed"""

    def handle(self, command: CancelBookingCommand) -> tuple[Booking, CancellationRecord]:
        booking = self._retry(lambda: self._apply(
            command.booking_id, BookingStatus.CANCELLED, command.actor, command.reason
        ))
        logger.info(
            "booking.cancelled",
            booking_id=str(booking.id),
            refund_percentage=str(booking.cancellation.refund_percentage),
            refund_amount=str(booking.cancellation.refund_amount.amount),
        )
        return booking, booking.cancellation


class AvailabilityQueryHandler:
    """Read-only browsing; no holds, slightly stale reads are fine"""

    def __init__(self, *, catalog, inventory):
        self.catalog = catalog
        self.inventory = inventory

    def handle(self, query: AvailabilityQuery):
        dates = make_date_range(query.start_date, query.end_date)
        if isinstance(query.party_size, bool) or not isinstance(query.party_size, int) or query.party_size < 1:
            raise ValidationError(f"Party size must be a positive integer, got {query.party_size!r}", field='party_size')

        listing = self.catalog.get(query.item)
        if listing is None or not listing.is_bookable:
            raise ItemNotBookable(f"Listing {query.item} is not available for booking", field='item', item=query.item)

        windows = self.inventory.query_availability(query.item, dates, query.party_size, query.room_type_id)
        if not isinstance(listing, LodgingItem):
            return windows

        def fits(window) -> bool:
            room_type = listing.room_type(window.room_type_id)
            return room_type is not None and room_type.max_guests * window.remaining >= query.party_size

        return [window for window in windows if fits(window)]


class ListBookingsHandler:
    """Paged, read-only booking listings for requesters and listing owners"""

    def __init__(self, *, catalog, bookings):
        self.catalog = catalog
        self.bookings = bookings

    def handle(self, query: ListBookingsQuery) -> BookingPage:
        if (query.requester_id is None) == (query.owner_id is None):
            raise ValidationError("Give exactly one of requester_id and owner_id", field='requester_id')
        for name in ('page', 'limit'):
            value = getattr(query, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationError(f"{name.capitalize()} must be a positive integer, got {value!r}", field=name)
        if query.limit > MAX_PAGE_SIZE:
            raise ValidationError(f"Limit cannot exceed {MAX_PAGE_SIZE}", field='limit', limit=query.limit)

        items = None
        if query.owner_id is not None:
            items = tuple(self.catalog.owned_by(query.owner_id))

        criteria = BookingCriteria(
            requester_id=query.requester_id,
            items=items,
            statuses=_status_filter(query.status),
            kind=_kind_filter(query.kind),
            starts_from=query.starts_from,
            starts_until=query.starts_until,
            newest_first=query.newest_first,
        )
        offset = (query.page - 1) * query.limit
        bookings, total = self.bookings.search(criteria, offset=offset, limit=query.limit)
        return BookingPage(bookings=tuple(bookings), total=total, page=query.page, limit=query.limit)


def _status_filter(status) -> frozenset[BookingStatus] | None:
    if status is None:
        return None
    requested = [status] if isinstance(status, (str, BookingStatus)) else list(status)
    statuses = set()
    for value in requested:
        if isinstance(value, BookingStatus):
            statuses.add(value)
            continue
        try:
            statuses.add(BookingStatus(str(value).lower()))
        except ValueError:
            raise ValidationError(f"Unknown booking status '{value}'", field='status') from None
    return frozenset(statuses)


def _kind_filter(kind) -> ItemKind | None:
    if kind is None or isinstance(kind, ItemKind):
        return kind
    try:
        return ItemKind(str(kind).lower())
    except ValueError:
        raise ValidationError(f"Unknown item kind '{kind}'", field='kind') from None


class ReleaseAbandonedHoldsHandler:
    """
    Cancel PENDING bookings older than `ttl` with actor "system".

    This stands in for the payment collaborator's timeout; the engine
    itself never expires anything on its own.
    """

    def __init__(self, *, bookings, cancel_handler: CancelBookingHandler, ttl: timedelta, clock=utcnow):
        self.bookings = bookings
        self.cancel_handler = cancel_handler
        self.ttl = ttl
        self._clock = clock

    def handle(self) -> int:
        cutoff = self._clock() - self.ttl
        cancelled = 0
        for booking in self.bookings.pending_created_before(cutoff):
            try:
                self.cancel_handler.handle(CancelBookingCommand(
                    booking_id=booking.id,
                    actor=SYSTEM_ACTOR,
                    reason='Payment window expired',
                ))
            except (IllegalTransition, ConcurrencyConflict) as exc:
                # Confirmed or cancelled by someone else in the meantime
                logger.info("booking.sweep.skipped", booking_id=str(booking.id), reason=exc.code)
                continue
            cancelled += 1
        logger.info("booking.sweep.finished", cutoff=cutoff.isoformat(), cancelled=cancelled)
        return cancelled
