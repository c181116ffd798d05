"""Tests for the ORM-backed inventory store."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import uuid4

from django.db import OperationalError
from django.test import TestCase

from apps.catalog.domain import ItemKind, ItemRef
from apps.inventory.django_store import DjangoInventoryStore, storage_errors
from apps.inventory.domain import HoldStatus
from apps.inventory.models import ExcursionSlot, InventoryHold, RoomNight
from shared.domain.exceptions import (
    ConcurrencyConflict,
    HoldAlreadyReleased,
    ImpossibleRequest,
    InsufficientCapacity,
    StoreUnavailable,
)
from shared.domain.value_objects import DateRange, Money


class DjangoInventoryStoreTests(TestCase):
    def setUp(self) -> None:
        self.store = DjangoInventoryStore()
        self.excursion = ItemRef(ItemKind.EXCURSION, uuid4())
        self.lodging = ItemRef(ItemKind.LODGING, uuid4())
        self.room_type_id = uuid4()
        self.trip = DateRange(date(2030, 6, 1), date(2030, 6, 5))
        self.stay = DateRange(date(2030, 12, 1), date(2030, 12, 3))

    def _slot(self, total: int, remaining: int | None = None, **extra) -> ExcursionSlot:
        return ExcursionSlot.objects.create(
            excursion_id=self.excursion.item_id,
            start_date=self.trip.start_date,
            end_date=self.trip.end_date,
            total_capacity=total,
            remaining_capacity=total if remaining is None else remaining,
            **extra,
        )

    def _nights(self, total: int, price: Decimal | None = None) -> list[RoomNight]:
        return [
            RoomNight.objects.create(
                lodging_id=self.lodging.item_id,
                room_type_id=self.room_type_id,
                night=night,
                total_rooms=total,
                remaining_rooms=total,
                price=price,
            )
            for night in self.stay.nights()
        ]

    def test_hold_decrements_slot_and_release_restores(self) -> None:
        slot = self._slot(total=2, price=Decimal("130.00"))

        held = self.store.check_and_hold(self.excursion, self.trip, 2)
        slot.refresh_from_db()
        self.assertEqual(slot.remaining_capacity, 0)
        self.assertEqual(held.slot_price, Money(Decimal("130.00"), "USD"))
        self.assertEqual(held.hold.slot_id, slot.id)

        with self.assertRaises(InsufficientCapacity):
            self.store.check_and_hold(self.excursion, self.trip, 1)

        self.assertTrue(self.store.release(held.hold_id))
        self.assertFalse(self.store.release(held.hold_id))
        slot.refresh_from_db()
        self.assertEqual(slot.remaining_capacity, 2)

    def test_party_larger_than_slot_total_is_impossible(self) -> None:
        self._slot(total=3)

        with self.assertRaises(ImpossibleRequest):
            self.store.check_and_hold(self.excursion, self.trip, 4)

    def test_failed_night_rolls_back_the_whole_stay(self) -> None:
        first, second = self._nights(total=1)
        RoomNight.objects.filter(pk=second.pk).update(remaining_rooms=0)

        with self.assertRaises(InsufficientCapacity):
            self.store.check_and_hold(self.lodging, self.stay, 1, self.room_type_id)

        first.refresh_from_db()
        self.assertEqual(first.remaining_rooms, 1)
        self.assertFalse(InventoryHold.objects.exists())

    def test_lodging_hold_carries_nightly_prices(self) -> None:
        self._nights(total=2, price=Decimal("250.00"))

        held = self.store.check_and_hold(self.lodging, self.stay, 2, self.room_type_id)

        self.assertEqual(len(held.hold.lines), 2)
        self.assertEqual(held.hold.room_type_id, self.room_type_id)
        self.assertEqual(
            [price for _, price in held.nightly_prices],
            [Money(Decimal("250.00"), "USD")] * 2,
        )
        self.assertEqual(
            list(RoomNight.objects.values_list("remaining_rooms", flat=True)),
            [1, 1],
        )

    def test_same_request_is_held_once(self) -> None:
        slot = self._slot(total=5)
        request_id = uuid4()

        first = self.store.check_and_hold(self.excursion, self.trip, 2, request_id=request_id)
        second = self.store.check_and_hold(self.excursion, self.trip, 2, request_id=request_id)

        self.assertEqual(first.hold_id, second.hold_id)
        slot.refresh_from_db()
        self.assertEqual(slot.remaining_capacity, 3)

    def test_confirm_then_released_hold_cannot_be_confirmed(self) -> None:
        self._slot(total=5)
        held = self.store.check_and_hold(self.excursion, self.trip, 1)

        self.assertIs(self.store.confirm(held.hold_id).status, HoldStatus.CONFIRMED)

        other = self.store.check_and_hold(self.excursion, self.trip, 1)
        self.store.release(other.hold_id)
        with self.assertRaises(HoldAlreadyReleased):
            self.store.confirm(other.hold_id)

    def test_availability_lists_open_slots(self) -> None:
        open_slot = self._slot(total=5)
        self._slot(total=5, remaining=1)

        windows = self.store.query_availability(self.excursion, self.trip, party_size=2)

        self.assertEqual([window.slot_id for window in windows], [open_slot.id])


class StorageErrorTranslationTests(TestCase):
    def test_lock_errors_become_conflicts(self) -> None:
        with self.assertRaises(ConcurrencyConflict):
            with storage_errors():
                raise OperationalError("database is locked")

    def test_other_errors_become_store_unavailable(self) -> None:
        with self.assertRaises(StoreUnavailable) as ctx:
            with storage_errors():
                raise OperationalError("connection refused")
        self.assertNotIn("refused", ctx.exception.message)
