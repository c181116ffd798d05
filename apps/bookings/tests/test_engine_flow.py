"""End-to-end booking flows against the in-memory backends."""

from __future__ import annotations

import random
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from apps.bookings.application.command_handlers import CreateBookingCommand
from apps.bookings.conf import EngineSettings
from apps.bookings.domain.cancellation import CancellationPolicy, RefundTier
from apps.bookings.domain.events import BookingCreated, BookingStatusChanged, RefundComputed
from apps.bookings.domain.state_machine import BookingStatus
from apps.bookings.services import build_in_memory_engine
from apps.catalog.domain import (
    ExcursionItem,
    ExtraService,
    GroupDiscount,
    ItemKind,
    ItemRef,
    ListingStatus,
    LodgingItem,
    RoomType,
)
from apps.catalog.repository import InMemoryListingCatalog
from apps.inventory.domain import HoldStatus, SlotCapacity
from apps.inventory.store import InMemoryInventoryStore
from apps.pricing.calculator import SelectedExtra
from shared.application.message_bus import MessageBus
from shared.domain.base import DomainEvent
from shared.domain.exceptions import (
    BookingNotFound,
    IllegalTransition,
    ImpossibleRequest,
    InsufficientCapacity,
    InvalidPolicy,
    ItemNotBookable,
    StoreUnavailable,
    ValidationError,
)
from shared.domain.value_objects import DateRange, Money

NOW = datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc)
TRIP = DateRange(date(2030, 1, 11), date(2030, 1, 14))
STAY = DateRange(date(2030, 1, 4), date(2030, 1, 6))


def usd(amount: str) -> Money:
    return Money(Decimal(amount), "USD")


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class BookingEngineFlowTests:
    """Shared fixtures; subclasses hold the scenarios."""

    @pytest.fixture(autouse=True)
    def setup_engine(self):
        self.owner_id = uuid4()
        self.requester_id = uuid4()
        self.clock = Clock(NOW)
        self.events: list[DomainEvent] = []

        def record(event):
            self.events.append(event)

        bus = MessageBus()
        bus.register_event_handler(DomainEvent, record)

        self.excursion = ExcursionItem(
            item_id=uuid4(),
            title="Gorilla trek",
            owner_id=self.owner_id,
            status=ListingStatus.PUBLISHED,
            base_price=usd("100"),
            group_discounts=(GroupDiscount(5, Decimal("10")),),
            extras=(ExtraService("transfer", "Airport transfer", usd("40")),),
            cancellation_policy=CancellationPolicy(free_cancellation_days=7),
        )
        self.room_type = RoomType(uuid4(), "Double", max_guests=2)
        self.lodging = LodgingItem(
            item_id=uuid4(),
            title="Lake lodge",
            owner_id=self.owner_id,
            status=ListingStatus.PUBLISHED,
            base_price=usd("250"),
            room_types=(self.room_type,),
            cancellation_policy=CancellationPolicy(
                free_cancellation_days=7,
                tiers=(RefundTier(7, Decimal("50")), RefundTier(1, Decimal("10"))),
            ),
        )
        self.catalog = InMemoryListingCatalog([self.excursion, self.lodging])
        self.inventory = InMemoryInventoryStore()
        self.slot = self.inventory.add_slot(SlotCapacity(self.excursion.item_id, TRIP, total=6))
        self.inventory.add_room_nights(self.lodging.item_id, self.room_type.room_type_id, STAY, total=2)

        self.engine = build_in_memory_engine(
            catalog=self.catalog,
            inventory=self.inventory,
            bus=bus,
            clock=self.clock,
            rng=random.Random(11),
        )

    def excursion_command(self, **overrides) -> CreateBookingCommand:
        values = dict(
            item=self.excursion.ref,
            requester_id=self.requester_id,
            start_date=TRIP.start_date,
            end_date=TRIP.end_date,
            adults=5,
        )
        values.update(overrides)
        return CreateBookingCommand(**values)

    def lodging_command(self, **overrides) -> CreateBookingCommand:
        values = dict(
            item=self.lodging.ref,
            requester_id=self.requester_id,
            start_date=STAY.start_date,
            end_date=STAY.end_date,
            adults=2,
        )
        values.update(overrides)
        return CreateBookingCommand(**values)

    def seats_left(self) -> int:
        return self.inventory.slot(self.excursion.item_id, self.slot.slot_id).remaining

    def rooms_left(self) -> list[int]:
        return [
            self.inventory.night(self.lodging.item_id, self.room_type.room_type_id, night).remaining
            for night in STAY.nights()
        ]


class TestCreate(BookingEngineFlowTests):
    def test_excursion_booking_is_pending_priced_and_held(self):
        booking = self.engine.create(self.excursion_command())

        assert booking.status is BookingStatus.PENDING
        assert booking.pricing.total == usd("557.55")
        assert booking.booking_number.startswith("BK300101")
        assert booking.slot_id == self.slot.slot_id
        assert [change.to_status for change in booking.history] == [BookingStatus.PENDING]
        assert self.seats_left() == 1
        assert [type(event) for event in self.events] == [BookingCreated]

    def test_lodging_booking_takes_every_night(self):
        booking = self.engine.create(self.lodging_command())

        assert booking.nights == 2
        assert booking.room_type_id == self.room_type.room_type_id
        assert booking.pricing.total == usd("619.50")
        assert self.rooms_left() == [1, 1]

    def test_create_from_plain_dict(self):
        booking = self.engine.create({
            "item_kind": "excursion",
            "item_id": str(self.excursion.item_id),
            "requester_id": str(self.requester_id),
            "start_date": TRIP.start_date.isoformat(),
            "end_date": TRIP.end_date.isoformat(),
            "adults": 2,
            "children": 1,
            "participants": [{"name": "Amina", "age": 9}],
            "extras": [{"service_id": "transfer", "quantity": 2}],
        })

        assert booking.party.size == 3
        assert booking.extras == (SelectedExtra("transfer", 2),)
        assert booking.pricing.fees[1].amount == usd("80")

    def test_repeated_request_returns_the_same_booking(self):
        command = self.excursion_command(adults=2)

        first = self.engine.create(command)
        second = self.engine.create(command)

        assert first.id == second.id
        assert self.seats_left() == 4

    def test_sold_out_creates_nothing(self):
        self.engine.create(self.excursion_command())

        with pytest.raises(InsufficientCapacity):
            self.engine.create(self.excursion_command(adults=2))

        assert self.seats_left() == 1
        assert len(self.engine.bookings.pending_created_before(NOW + timedelta(days=1))) == 1

    def test_party_larger_than_departure_is_impossible(self):
        with pytest.raises(ImpossibleRequest):
            self.engine.create(self.excursion_command(adults=7))
        assert self.seats_left() == 6

    def test_too_many_guests_for_the_rooms_is_impossible(self):
        with pytest.raises(ImpossibleRequest):
            self.engine.create(self.lodging_command(adults=3))
        assert self.rooms_left() == [2, 2]

    def test_rejections_before_inventory(self):
        with pytest.raises(ValidationError):
            self.engine.create(self.excursion_command(start_date=date(2029, 12, 30), end_date=date(2030, 1, 2)))
        with pytest.raises(ValidationError):
            self.engine.create(self.excursion_command(end_date=TRIP.start_date))
        with pytest.raises(ValidationError):
            self.engine.create(self.excursion_command(requester_id=self.owner_id))
        with pytest.raises(ValidationError):
            self.engine.create(self.excursion_command(extras=(SelectedExtra("helicopter"),)))
        assert self.seats_left() == 6

    def test_unpublished_listing_is_not_bookable(self):
        draft = replace(self.excursion, item_id=uuid4(), status=ListingStatus.DRAFT)
        self.catalog.add(draft)

        with pytest.raises(ItemNotBookable):
            self.engine.create(self.excursion_command(item=draft.ref))
        with pytest.raises(ItemNotBookable):
            self.engine.create(self.excursion_command(item=ItemRef(ItemKind.EXCURSION, uuid4())))

    def test_failure_after_hold_releases_capacity(self):
        broken = replace(
            self.excursion,
            extras=(ExtraService("transfer", "Airport transfer", Money(Decimal("40"), "EUR")),),
        )
        self.catalog.add(broken)

        with pytest.raises(InvalidPolicy):
            self.engine.create(self.excursion_command(extras=(SelectedExtra("transfer"),)))

        assert self.seats_left() == 6


class TestTransitions(BookingEngineFlowTests):
    def test_confirm_then_complete(self):
        booking = self.engine.create(self.excursion_command())

        confirmed = self.engine.transition(booking.id, "confirmed", "payments")
        assert confirmed.status is BookingStatus.CONFIRMED
        assert confirmed.confirmed_at == NOW
        assert self.inventory.get_hold(booking.hold_id).status is HoldStatus.CONFIRMED

        completed = self.engine.transition(booking.id, BookingStatus.COMPLETED, "system")
        assert completed.completed_at == NOW
        assert self.seats_left() == 1
        assert [change.to_status for change in completed.history] == [
            BookingStatus.PENDING,
            BookingStatus.CONFIRMED,
            BookingStatus.COMPLETED,
        ]

    def test_completed_to_confirmed_changes_nothing(self):
        booking = self.engine.create(self.excursion_command())
        self.engine.transition(booking.id, "confirmed", "payments")
        self.engine.transition(booking.id, "completed", "system")
        before = self.engine.get(booking.id)

        with pytest.raises(IllegalTransition):
            self.engine.transition(booking.id, "confirmed", "payments")

        after = self.engine.get(booking.id)
        assert after.status is BookingStatus.COMPLETED
        assert after.history == before.history
        assert self.seats_left() == 1

    def test_unknown_target_status(self):
        booking = self.engine.create(self.excursion_command())

        with pytest.raises(IllegalTransition):
            self.engine.transition(booking.id, "teleported", "payments")

    def test_unknown_booking(self):
        with pytest.raises(BookingNotFound):
            self.engine.transition(uuid4(), "confirmed", "payments")


class TestCancellation(BookingEngineFlowTests):
    def test_cancel_inside_free_window_refunds_all_and_frees_seats(self):
        booking = self.engine.create(self.excursion_command())
        self.events.clear()

        cancelled, record = self.engine.cancel(booking.id, str(self.requester_id), "change of plans")

        assert cancelled.status is BookingStatus.CANCELLED
        assert record.refund_percentage == Decimal("100")
        assert record.refund_amount == usd("557.55")
        assert record.days_until_start == 10
        assert self.seats_left() == 6
        assert self.inventory.get_hold(booking.hold_id).is_released
        assert [type(event) for event in self.events] == [BookingStatusChanged, RefundComputed]

    def test_tiered_refund_for_confirmed_stay(self):
        booking = self.engine.create(self.lodging_command())
        self.engine.transition(booking.id, "confirmed", "payments")

        _, record = self.engine.cancel(booking.id, "support")

        assert record.days_until_start == 3
        assert record.refund_percentage == Decimal("10")
        assert record.refund_amount == usd("61.95")
        assert self.rooms_left() == [2, 2]

    def test_second_cancel_is_illegal_and_capacity_is_credited_once(self):
        booking = self.engine.create(self.excursion_command(adults=2))
        self.engine.cancel(booking.id, "support")

        with pytest.raises(IllegalTransition):
            self.engine.cancel(booking.id, "support")
        assert self.seats_left() == 6

    def test_policy_is_the_one_booked_under(self):
        booking = self.engine.create(self.excursion_command())
        self.catalog.add(replace(self.excursion, cancellation_policy=CancellationPolicy.preset("no_refund")))

        _, record = self.engine.cancel(booking.id, "support")

        assert record.refund_percentage == Decimal("100")


class TestQueriesAndSweep(BookingEngineFlowTests):
    def test_find_by_reference_and_voucher(self):
        booking = self.engine.create(self.excursion_command())

        assert self.engine.find_by_reference(booking.confirmation_code.lower()).id == booking.id
        voucher = self.engine.voucher(booking.booking_number)
        assert voucher["guests"] == 5
        assert voucher["total"] == {"amount": "557.55", "currency": "USD"}
        with pytest.raises(BookingNotFound):
            self.engine.find_by_reference("BK000000")

    def test_lodging_windows_respect_room_capacity(self):
        self.engine.create(self.lodging_command())

        assert self.engine.query_availability(self.lodging.ref, STAY.start_date, STAY.end_date, party_size=3) == []
        windows = self.engine.query_availability(self.lodging.ref, STAY.start_date, STAY.end_date, party_size=2)
        assert [(window.dates, window.remaining) for window in windows] == [(STAY, 1)]

    def test_excursion_windows(self):
        windows = self.engine.query_availability(self.excursion.ref, date(2030, 1, 1), date(2030, 2, 1), party_size=6)

        assert [window.slot_id for window in windows] == [self.slot.slot_id]

    def test_sweeper_cancels_only_stale_pending_bookings(self):
        stale = self.engine.create(self.excursion_command(adults=2))
        paid = self.engine.create(self.excursion_command(adults=2))
        self.engine.transition(paid.id, "confirmed", "payments")

        self.clock.now = NOW + timedelta(hours=25)
        fresh = self.engine.create(self.excursion_command(adults=1))

        assert self.engine.release_abandoned_holds() == 1
        swept = self.engine.get(stale.id)
        assert swept.status is BookingStatus.CANCELLED
        assert swept.cancellation.cancelled_by == "system"
        assert self.engine.get(paid.id).status is BookingStatus.CONFIRMED
        assert self.engine.get(fresh.id).status is BookingStatus.PENDING
        assert self.seats_left() == 3


class TestConcurrentRetries(BookingEngineFlowTests):
    def lookups_meet_at(self, barrier: threading.Barrier):
        """First hold lookup of each thread waits until both threads have looked"""
        lookup = self.engine.bookings.find_by_hold
        waited = set()

        def racing_lookup(hold_id):
            found = lookup(hold_id)
            if threading.get_ident() not in waited:
                waited.add(threading.get_ident())
                barrier.wait()
            return found

        return racing_lookup

    def test_two_threads_with_one_request_share_one_booking(self, monkeypatch):
        command = self.excursion_command(adults=2)
        monkeypatch.setattr(
            self.engine.bookings, "find_by_hold", self.lookups_meet_at(threading.Barrier(2, timeout=5))
        )

        with ThreadPoolExecutor(max_workers=2) as pool:
            first, second = pool.map(lambda _: self.engine.create(command), range(2))

        assert first.id == second.id
        assert first.hold_id == second.hold_id
        assert self.engine.bookings_for_requester(self.requester_id).total == 1
        assert self.seats_left() == 4
        assert self.inventory.get_hold(first.hold_id).status is HoldStatus.HELD
        assert [type(event) for event in self.events] == [BookingCreated]

    def miss_first_lookup(self, monkeypatch):
        lookup = self.engine.bookings.find_by_hold
        calls = []

        def flaky_lookup(hold_id):
            calls.append(hold_id)
            return None if len(calls) == 1 else lookup(hold_id)

        monkeypatch.setattr(self.engine.bookings, "find_by_hold", flaky_lookup)

    def test_retry_that_misses_the_lookup_returns_the_stored_booking(self, monkeypatch):
        command = self.excursion_command(adults=2)
        first = self.engine.create(command)
        self.miss_first_lookup(monkeypatch)

        second = self.engine.create(command)

        assert second.id == first.id
        assert self.engine.bookings_for_requester(self.requester_id).total == 1
        assert self.seats_left() == 4

    def test_failed_retry_never_releases_a_hold_it_did_not_take(self, monkeypatch):
        command = self.excursion_command(adults=2)
        first = self.engine.create(command)
        self.miss_first_lookup(monkeypatch)

        def unavailable(booking):
            raise StoreUnavailable("Booking storage is unavailable")

        monkeypatch.setattr(self.engine.bookings, "add", unavailable)

        with pytest.raises(StoreUnavailable):
            self.engine.create(command)

        assert self.inventory.get_hold(first.hold_id).status is HoldStatus.HELD
        assert self.seats_left() == 4


class TestPaymentWindow(BookingEngineFlowTests):
    def test_new_booking_carries_amount_and_deadline(self):
        booking = self.engine.create(self.excursion_command())

        assert booking.payment_due_at == NOW + timedelta(hours=24)
        assert booking.payment_instructions() == {
            "amount": "557.55",
            "currency": "USD",
            "due_at": "2030-01-02T09:00:00+00:00",
        }
        assert self.engine.voucher(booking.booking_number)["payment"]["due_at"] == "2030-01-02T09:00:00+00:00"
        created = self.events[0]
        assert created.to_dict()["payment_due_at"] == "2030-01-02T09:00:00+00:00"

    def test_paid_booking_has_no_instructions(self):
        booking = self.engine.create(self.excursion_command())
        confirmed = self.engine.transition(booking.id, "confirmed", "payments")

        assert confirmed.payment_due_at == NOW + timedelta(hours=24)
        assert confirmed.payment_instructions() is None
        assert confirmed.to_dict()["payment"] is None

    def test_deadline_follows_the_sweeper_ttl(self):
        engine = build_in_memory_engine(
            catalog=self.catalog,
            inventory=self.inventory,
            bus=MessageBus(),
            settings=EngineSettings.from_mapping({"PENDING_HOLD_TTL_MINUTES": 90}),
            clock=self.clock,
            rng=random.Random(3),
        )

        booking = engine.create(self.excursion_command(adults=1))

        assert booking.payment_due_at == NOW + timedelta(minutes=90)


class TestListings(BookingEngineFlowTests):
    def book_at(self, minutes: int, command: CreateBookingCommand):
        self.clock.now = NOW + timedelta(minutes=minutes)
        return self.engine.create(command)

    def test_requester_bookings_are_paged_newest_first(self):
        oldest = self.book_at(0, self.excursion_command(adults=1))
        middle = self.book_at(1, self.lodging_command())
        newest = self.book_at(2, self.excursion_command(adults=1))
        self.book_at(3, self.excursion_command(adults=1, requester_id=uuid4()))

        first_page = self.engine.bookings_for_requester(self.requester_id, limit=2)
        second_page = self.engine.bookings_for_requester(self.requester_id, page=2, limit=2)

        assert [booking.id for booking in first_page.bookings] == [newest.id, middle.id]
        assert [booking.id for booking in second_page.bookings] == [oldest.id]
        assert first_page.to_dict()["pagination"] == {"page": 1, "pages": 2, "total": 3, "limit": 2}

    def test_requester_filters_by_status_and_kind(self):
        paid = self.book_at(0, self.excursion_command(adults=1))
        self.engine.transition(paid.id, "confirmed", "payments")
        self.book_at(1, self.excursion_command(adults=1))
        stay = self.book_at(2, self.lodging_command())

        confirmed = self.engine.bookings_for_requester(self.requester_id, status="confirmed")
        lodging = self.engine.bookings_for_requester(self.requester_id, kind="lodging")
        either = self.engine.bookings_for_requester(self.requester_id, status=["CONFIRMED", "pending"])

        assert [booking.id for booking in confirmed.bookings] == [paid.id]
        assert [booking.id for booking in lodging.bookings] == [stay.id]
        assert either.total == 3

    def test_upcoming_only_lists_confirmed_trips_inside_the_window(self):
        trip = self.book_at(0, self.excursion_command(adults=1))
        self.engine.transition(trip.id, "confirmed", "payments")
        self.book_at(1, self.excursion_command(adults=1))

        assert [booking.id for booking in self.engine.upcoming_bookings(self.requester_id).bookings] == [trip.id]
        assert self.engine.upcoming_bookings(self.requester_id, days=5).total == 0

    def test_owner_sees_bookings_on_their_listings_only(self):
        other_owner = uuid4()
        rival = replace(self.excursion, item_id=uuid4(), owner_id=other_owner)
        self.catalog.add(rival)
        self.inventory.add_slot(SlotCapacity(rival.item_id, TRIP, total=4))

        mine = self.book_at(0, self.excursion_command(adults=1))
        stay = self.book_at(1, self.lodging_command())
        theirs = self.book_at(2, self.excursion_command(adults=1, item=rival.ref))

        owner_page = self.engine.bookings_for_owner(self.owner_id)
        assert [booking.id for booking in owner_page.bookings] == [stay.id, mine.id]
        assert [booking.id for booking in self.engine.bookings_for_owner(other_owner).bookings] == [theirs.id]
        assert self.engine.bookings_for_owner(self.owner_id, kind="excursion").total == 1

        nobody = self.engine.bookings_for_owner(uuid4())
        assert nobody.total == 0
        assert nobody.pages == 0

    def test_bad_listing_arguments(self):
        for arguments in ({"limit": 0}, {"limit": 101}, {"page": 0}, {"status": "lost"}, {"kind": "boat"}):
            with pytest.raises(ValidationError):
                self.engine.bookings_for_requester(self.requester_id, **arguments)
