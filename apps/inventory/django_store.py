"""
InventoryStore backed by the Django ORM.

Every decrement is a single conditional UPDATE:

    UPDATE ... SET remaining = remaining - n WHERE id = ? AND remaining >= n

All cells of one request are taken inside one transaction.atomic() block,
so a failing night rolls back the nights already taken.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import replace
from uuid import UUID

import structlog
from django.db import DatabaseError, IntegrityError, OperationalError, transaction  # type: ignore
from django.db.models import F  # type: ignore
from django.utils import timezone  # type: ignore

from apps.catalog.domain import ItemKind, ItemRef
from shared.domain.exceptions import (
    ConcurrencyConflict,
    HoldAlreadyReleased,
    HoldNotFound,
    ImpossibleRequest,
    InsufficientCapacity,
    StoreUnavailable,
)
from shared.domain.value_objects import DateRange, Money

from .domain import (
    Hold,
    HoldLine,
    HoldResult,
    HoldStatus,
    NightKey,
    NightlyRoomCapacity,
    SlotCapacity,
    SlotKey,
    night_windows,
)
from .models import ExcursionSlot, InventoryHold, InventoryHoldLine, RoomNight
from .store import InventoryStore

logger = structlog.get_logger(__name__)

_CONFLICT_MARKERS = ("lock", "deadlock", "serializ", "could not obtain")


@contextmanager
def storage_errors():
    """
    Translate database failures into the engine's taxonomy.

    Lock and serialization failures become ConcurrencyConflict, anything
    else StoreUnavailable. The database message is logged, never returned.
    """
    try:
        yield
    except IntegrityError as exc:
        logger.warning("inventory.store.integrity_error", error=str(exc))
        raise ConcurrencyConflict("Capacity changed concurrently, please retry") from exc
    except OperationalError as exc:
        message = str(exc).lower()
        if any(marker in message for marker in _CONFLICT_MARKERS):
            logger.warning("inventory.store.lock_conflict", error=str(exc))
            raise ConcurrencyConflict("Capacity is locked by another request, please retry") from exc
        logger.error("inventory.store.unavailable", error=str(exc))
        raise StoreUnavailable("Inventory storage is unavailable") from exc
    except DatabaseError as exc:
        logger.error("inventory.store.unavailable", error=str(exc))
        raise StoreUnavailable("Inventory storage is unavailable") from exc


def _money(amount, currency) -> Money | None:
    return Money(amount, currency) if amount is not None else None


def slot_capacity(row: ExcursionSlot) -> SlotCapacity:
    return SlotCapacity(
        item_id=row.excursion_id,
        slot_id=row.id,
        dates=DateRange(row.start_date, row.end_date),
        total=row.total_capacity,
        remaining=row.remaining_capacity,
        price=_money(row.price, row.currency),
        is_active=row.is_active,
    )


def night_capacity(row: RoomNight) -> NightlyRoomCapacity:
    return NightlyRoomCapacity(
        item_id=row.lodging_id,
        room_type_id=row.room_type_id,
        night=row.night,
        total=row.total_rooms,
        remaining=row.remaining_rooms,
        price=_money(row.price, row.currency),
    )


class DjangoInventoryStore(InventoryStore):

    def _existing(self, request_id: UUID) -> HoldResult | None:
        row = (
            InventoryHold.objects.filter(request_id=request_id)
            .exclude(status=InventoryHold.Status.RELEASED)
            .first()
        )
        return replace(self._result_for(row), replayed=True) if row else None

    def _create_hold(self, request_id: UUID, item: ItemRef, dates: DateRange) -> InventoryHold:
        # A released hold keeps its request_id; a retried request starts over
        InventoryHold.objects.filter(request_id=request_id, status=InventoryHold.Status.RELEASED).delete()
        return InventoryHold.objects.create(
            request_id=request_id,
            item_kind=item.kind.value,
            item_id=item.item_id,
            start_date=dates.start_date,
            end_date=dates.end_date,
        )

    def _open_slots(self, item: ItemRef, party_size: int):
        rows = ExcursionSlot.objects.filter(
            excursion_id=item.item_id, is_active=True, remaining_capacity__gte=party_size
        )
        return [self._slot_window(item, slot_capacity(row)) for row in rows]

    def _hold_slot(self, item, dates, party_size, request_id):
        with storage_errors(), transaction.atomic():
            existing = self._existing(request_id)
            if existing is not None:
                return existing

            candidates = list(
                ExcursionSlot.objects.filter(
                    excursion_id=item.item_id,
                    is_active=True,
                    start_date__lte=dates.start_date,
                    end_date__gte=dates.end_date,
                ).order_by("start_date", "id")
            )
            if candidates and all(slot.total_capacity < party_size for slot in candidates):
                raise ImpossibleRequest(
                    f"Party of {party_size} exceeds the total capacity of every departure on {dates}",
                    party_size=party_size,
                )

            for slot in candidates:
                if slot.total_capacity < party_size:
                    continue
                taken = ExcursionSlot.objects.filter(
                    pk=slot.pk, remaining_capacity__gte=party_size
                ).update(remaining_capacity=F("remaining_capacity") - party_size)
                if taken:
                    hold = self._create_hold(request_id, item, dates)
                    InventoryHoldLine.objects.create(hold=hold, slot=slot, quantity=party_size)
                    return self._result_for(hold)

        raise InsufficientCapacity(
            f"No departure covering {dates} has {party_size} seats left",
            slot_id=candidates[0].pk if candidates else None,
            alternatives=self._open_slots(item, party_size),
        )

    def _hold_nights(self, item, dates, room_type_id, rooms, request_id):
        with storage_errors(), transaction.atomic():
            existing = self._existing(request_id)
            if existing is not None:
                return existing

            cells = {
                row.night: row
                for row in RoomNight.objects.filter(
                    lodging_id=item.item_id,
                    room_type_id=room_type_id,
                    night__gte=dates.start_date,
                    night__lt=dates.end_date,
                )
            }
            for night in dates.nights():
                cell = cells.get(night)
                if cell is None:
                    raise InsufficientCapacity(f"No rooms on sale for {night}", night=night)
                if cell.total_rooms < rooms:
                    raise ImpossibleRequest(
                        f"{rooms} rooms requested but only {cell.total_rooms} exist on {night}",
                        night=night,
                    )

            hold = self._create_hold(request_id, item, dates)
            for night in dates.nights():
                taken = RoomNight.objects.filter(
                    pk=cells[night].pk, remaining_rooms__gte=rooms
                ).update(remaining_rooms=F("remaining_rooms") - rooms)
                if not taken:
                    # Leaving the atomic block undoes the nights already taken
                    raise InsufficientCapacity(f"Not enough rooms left on {night}", night=night)
                InventoryHoldLine.objects.create(hold=hold, room_night=cells[night], quantity=rooms)
            return self._result_for(hold)

    def confirm(self, hold_id: UUID) -> Hold:
        with storage_errors(), transaction.atomic():
            InventoryHold.objects.filter(pk=hold_id, status=InventoryHold.Status.HELD).update(
                status=InventoryHold.Status.CONFIRMED, confirmed_at=timezone.now()
            )
            row = InventoryHold.objects.filter(pk=hold_id).first()
        if row is None:
            raise HoldNotFound(f"Hold {hold_id} does not exist", hold_id=hold_id)
        if row.status == InventoryHold.Status.RELEASED:
            raise HoldAlreadyReleased(f"Hold {hold_id} was released and cannot be confirmed", hold_id=hold_id)
        logger.info("inventory.hold.confirmed", hold_id=str(hold_id))
        return self._hold(row)

    def release(self, hold_id: UUID) -> bool:
        with storage_errors(), transaction.atomic():
            flipped = (
                InventoryHold.objects.filter(pk=hold_id)
                .exclude(status=InventoryHold.Status.RELEASED)
                .update(status=InventoryHold.Status.RELEASED, released_at=timezone.now())
            )
            if not flipped:
                if not InventoryHold.objects.filter(pk=hold_id).exists():
                    raise HoldNotFound(f"Hold {hold_id} does not exist", hold_id=hold_id)
                logger.info("inventory.hold.already_released", hold_id=str(hold_id))
                return False

            lines = list(InventoryHoldLine.objects.filter(hold_id=hold_id))
            for line in lines:
                if line.slot_id is not None:
                    ExcursionSlot.objects.filter(pk=line.slot_id).update(
                        remaining_capacity=F("remaining_capacity") + line.quantity
                    )
                else:
                    RoomNight.objects.filter(pk=line.room_night_id).update(
                        remaining_rooms=F("remaining_rooms") + line.quantity
                    )
        logger.info("inventory.hold.released", hold_id=str(hold_id), cells=len(lines))
        return True

    def get_hold(self, hold_id: UUID) -> Hold:
        with storage_errors():
            row = InventoryHold.objects.filter(pk=hold_id).first()
            if row is None:
                raise HoldNotFound(f"Hold {hold_id} does not exist", hold_id=hold_id)
            return self._hold(row)

    def query_availability(self, item, dates, party_size=1, room_type_id=None):
        with storage_errors():
            if item.kind is ItemKind.EXCURSION:
                rows = ExcursionSlot.objects.filter(
                    excursion_id=item.item_id,
                    is_active=True,
                    start_date__lt=dates.end_date,
                    end_date__gt=dates.start_date,
                    remaining_capacity__gte=party_size,
                )
                return [self._slot_window(item, slot_capacity(row)) for row in rows]

            rows = RoomNight.objects.filter(
                lodging_id=item.item_id, night__gte=dates.start_date, night__lt=dates.end_date
            )
            if room_type_id is not None:
                rows = rows.filter(room_type_id=room_type_id)
            by_room_type: dict[UUID, list[NightlyRoomCapacity]] = {}
            for row in rows:
                by_room_type.setdefault(row.room_type_id, []).append(night_capacity(row))

        windows = []
        for room_type, cells in sorted(by_room_type.items(), key=lambda pair: str(pair[0])):
            windows.extend(night_windows(item, room_type, cells, min_remaining=1))
        return windows

    # Row mapping

    def _hold(self, row: InventoryHold) -> Hold:
        item = ItemRef(ItemKind(row.item_kind), row.item_id)
        lines = []
        for line in row.lines.select_related("slot", "room_night").all():
            if line.slot_id is not None:
                key = SlotKey(line.slot.excursion_id, line.slot_id)
            else:
                cell = line.room_night
                key = NightKey(cell.lodging_id, cell.room_type_id, cell.night)
            lines.append(HoldLine(key, line.quantity))
        return Hold(
            hold_id=row.id,
            request_id=row.request_id,
            item=item,
            dates=DateRange(row.start_date, row.end_date),
            lines=tuple(lines),
            status=HoldStatus(row.status),
            created_at=row.created_at,
            confirmed_at=row.confirmed_at,
            released_at=row.released_at,
        )

    def _result_for(self, row: InventoryHold) -> HoldResult:
        hold = self._hold(row)
        if hold.slot_id is not None:
            slot = slot_capacity(ExcursionSlot.objects.get(pk=hold.slot_id))
            return HoldResult(hold=hold, slot_dates=slot.dates, slot_price=slot.price)
        nights = RoomNight.objects.filter(
            lodging_id=hold.item.item_id,
            room_type_id=hold.room_type_id,
            night__gte=hold.dates.start_date,
            night__lt=hold.dates.end_date,
        ).order_by("night")
        return HoldResult(
            hold=hold,
            nightly_prices=tuple((row.night, _money(row.price, row.currency)) for row in nights),
        )
