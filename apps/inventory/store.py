"""
InventoryStore contract and the in-memory implementation.

All capacity changes go through check_and_hold() and release(). A hold is
all-or-nothing: an excursion hold decrements exactly one slot, a lodging
hold decrements every night of the stay or none of them.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import replace
from uuid import UUID, uuid4

import structlog

from apps.catalog.domain import ItemKind, ItemRef
from shared.domain.base import utcnow
from shared.domain.exceptions import (
    CapacityInvariantViolated,
    ConcurrencyConflict,
    HoldAlreadyReleased,
    HoldNotFound,
    ImpossibleRequest,
    InsufficientCapacity,
    ValidationError,
)
from shared.domain.value_objects import DateRange

from .domain import (
    AvailabilityWindow,
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

logger = structlog.get_logger(__name__)


def validate_hold_request(item: ItemRef, dates: DateRange, party_size: int, room_type_id, rooms: int):
    if not isinstance(dates, DateRange):
        raise ValidationError("A date range is required", field='dates')
    if isinstance(party_size, bool) or not isinstance(party_size, int) or party_size < 1:
        raise ValidationError(f"Party size must be a positive integer, got {party_size!r}", field='party_size')
    if item.kind is ItemKind.LODGING:
        if room_type_id is None:
            raise ValidationError("A room type is required for lodging", field='room_type_id')
        if isinstance(rooms, bool) or not isinstance(rooms, int) or rooms < 1:
            raise ValidationError(f"Rooms must be a positive integer, got {rooms!r}", field='rooms')


class InventoryStore(ABC):
    """Owner of every capacity cell. Nothing else writes capacity."""

    def check_and_hold(
        self,
        item: ItemRef,
        dates: DateRange,
        party_size: int,
        room_type_id: UUID | None = None,
        *,
        rooms: int = 1,
        request_id: UUID | None = None,
    ) -> HoldResult:
        """
        Reserve capacity for one booking request.

        Excursions take `party_size` seats from one slot that covers the
        dates. Lodging takes `rooms` rooms of `room_type_id` on every night
        of the stay. Repeating a call with the same `request_id` returns the
        existing live hold instead of reserving twice.
        """
        validate_hold_request(item, dates, party_size, room_type_id, rooms)
        request_id = request_id or uuid4()

        if item.kind is ItemKind.EXCURSION:
            result = self._hold_slot(item, dates, party_size, request_id)
        else:
            result = self._hold_nights(item, dates, room_type_id, rooms, request_id)

        logger.info(
            "inventory.hold.created",
            hold_id=str(result.hold_id),
            request_id=str(request_id),
            item=str(item),
            quantity=result.hold.quantity,
            cells=len(result.hold.lines),
        )
        return result

    @abstractmethod
    def _hold_slot(self, item: ItemRef, dates: DateRange, party_size: int, request_id: UUID) -> HoldResult:
        ...

    @abstractmethod
    def _hold_nights(
        self, item: ItemRef, dates: DateRange, room_type_id: UUID, rooms: int, request_id: UUID
    ) -> HoldResult:
        ...

    @abstractmethod
    def confirm(self, hold_id: UUID) -> Hold:
        """Mark a hold permanent. Capacity does not change."""

    @abstractmethod
    def release(self, hold_id: UUID) -> bool:
        """
        Credit a hold's capacity back.

        Returns False, without touching capacity, when the hold was
        already released.
        """

    @abstractmethod
    def get_hold(self, hold_id: UUID) -> Hold:
        ...

    @abstractmethod
    def query_availability(
        self,
        item: ItemRef,
        dates: DateRange,
        party_size: int = 1,
        room_type_id: UUID | None = None,
    ) -> list[AvailabilityWindow]:
        """
        Open windows overlapping `dates`, for browsing only.

        For excursions, slots with at least `party_size` seats left. For
        lodging, runs of consecutive nights with at least one room left.
        """

    @staticmethod
    def _slot_window(item: ItemRef, slot: SlotCapacity) -> AvailabilityWindow:
        return AvailabilityWindow(
            item=item,
            dates=slot.dates,
            remaining=slot.remaining,
            slot_id=slot.slot_id,
            price=slot.price,
        )


class InMemoryInventoryStore(InventoryStore):
    """
    Thread-safe store for tests and single-process deployments.

    Each cell has its own lock, so holds on different cells never wait on
    each other. A multi-night hold decrements night by night and, when a
    night fails, credits back what it already took for that request.
    """

    def __init__(self, lock_timeout: float = 5.0):
        self._lock_timeout = lock_timeout
        self._slots: dict[SlotKey, SlotCapacity] = {}
        self._nights: dict[NightKey, NightlyRoomCapacity] = {}
        self._cell_locks: dict[SlotKey | NightKey, threading.Lock] = {}
        self._holds: dict[UUID, Hold] = {}
        self._holds_by_request: dict[UUID, UUID] = {}
        self._in_flight: set[UUID] = set()
        self._pending_lines: dict[UUID, list[HoldLine]] = {}
        self._registry_lock = threading.Lock()
        self._holds_lock = threading.Lock()

    # Seeding

    def add_slot(self, slot: SlotCapacity) -> SlotCapacity:
        with self._registry_lock:
            self._slots[slot.key] = slot
            self._cell_locks.setdefault(slot.key, threading.Lock())
        return slot

    def add_room_nights(self, item_id: UUID, room_type_id: UUID, dates: DateRange, total: int, price=None):
        cells = []
        with self._registry_lock:
            for night in dates.nights():
                cell = NightlyRoomCapacity(item_id, room_type_id, night, total, price=price)
                self._nights[cell.key] = cell
                self._cell_locks.setdefault(cell.key, threading.Lock())
                cells.append(cell)
        return cells

    def slot(self, item_id: UUID, slot_id: UUID) -> SlotCapacity | None:
        cell = self._slots.get(SlotKey(item_id, slot_id))
        return replace(cell) if cell else None

    def night(self, item_id: UUID, room_type_id: UUID, night) -> NightlyRoomCapacity | None:
        cell = self._nights.get(NightKey(item_id, room_type_id, night))
        return replace(cell) if cell else None

    # Cell primitives

    @contextmanager
    def _locked(self, key):
        lock = self._cell_locks[key]
        if not lock.acquire(timeout=self._lock_timeout):
            raise ConcurrencyConflict(f"Timed out waiting for capacity cell {key}")
        try:
            yield
        finally:
            lock.release()

    def _cell(self, key):
        return self._slots[key] if isinstance(key, SlotKey) else self._nights[key]

    def _take(self, key, quantity: int) -> bool:
        """remaining -= quantity, only if remaining >= quantity at write time"""
        with self._locked(key):
            cell = self._cell(key)
            if cell.remaining < quantity:
                return False
            cell.remaining -= quantity
            return True

    def _give_back(self, key, quantity: int):
        with self._locked(key):
            cell = self._cell(key)
            if cell.remaining + quantity > cell.total:
                raise CapacityInvariantViolated(
                    f"Crediting {quantity} to {key} would exceed its total capacity",
                    remaining=cell.remaining,
                    total=cell.total,
                    quantity=quantity,
                )
            cell.remaining += quantity

    # Request bookkeeping

    def _begin(self, request_id: UUID) -> HoldResult | None:
        with self._holds_lock:
            hold_id = self._holds_by_request.get(request_id)
            if hold_id is not None and not self._holds[hold_id].is_released:
                return replace(self._result_for(self._holds[hold_id]), replayed=True)
            if request_id in self._in_flight:
                raise ConcurrencyConflict(f"Request {request_id} is already being processed")
            self._in_flight.add(request_id)
            self._pending_lines[request_id] = []
        return None

    def _record(self, request_id: UUID, line: HoldLine):
        self._pending_lines[request_id].append(line)

    def _compensate(self, request_id: UUID):
        """Undo the cells already taken for a failed request, once"""
        with self._holds_lock:
            lines = self._pending_lines.pop(request_id, [])
            self._in_flight.discard(request_id)
        for line in reversed(lines):
            self._give_back(line.key, line.quantity)
        if lines:
            logger.info("inventory.hold.compensated", request_id=str(request_id), cells=len(lines))

    def _finish(self, request_id: UUID, item: ItemRef, dates: DateRange) -> Hold:
        with self._holds_lock:
            lines = self._pending_lines.pop(request_id)
            self._in_flight.discard(request_id)
            hold = Hold(request_id=request_id, item=item, dates=dates, lines=tuple(lines))
            self._holds[hold.hold_id] = hold
            self._holds_by_request[request_id] = hold.hold_id
        return hold

    def _result_for(self, hold: Hold) -> HoldResult:
        if hold.slot_id is not None:
            slot = self._slots[hold.lines[0].key]
            return HoldResult(hold=hold, slot_dates=slot.dates, slot_price=slot.price)
        return HoldResult(
            hold=hold,
            nightly_prices=tuple((line.key.night, self._nights[line.key].price) for line in hold.lines),
        )

    # Holds

    def _candidate_slots(self, item: ItemRef, dates: DateRange) -> list[SlotCapacity]:
        with self._registry_lock:
            slots = [
                slot for key, slot in self._slots.items()
                if key.item_id == item.item_id and slot.is_active and slot.dates.covers(dates)
            ]
        return sorted(slots, key=lambda slot: (slot.dates.start_date, str(slot.slot_id)))

    def _open_slots(self, item: ItemRef, party_size: int) -> list[AvailabilityWindow]:
        with self._registry_lock:
            slots = [
                slot for key, slot in self._slots.items()
                if key.item_id == item.item_id and slot.is_active and slot.remaining >= party_size
            ]
        slots.sort(key=lambda slot: slot.dates.start_date)
        return [self._slot_window(item, slot) for slot in slots]

    def _hold_slot(self, item, dates, party_size, request_id):
        candidates = self._candidate_slots(item, dates)
        if candidates and all(slot.total < party_size for slot in candidates):
            raise ImpossibleRequest(
                f"Party of {party_size} exceeds the total capacity of every departure on {dates}",
                party_size=party_size,
            )

        existing = self._begin(request_id)
        if existing is not None:
            return existing

        try:
            for slot in candidates:
                if slot.total < party_size:
                    continue
                if self._take(slot.key, party_size):
                    self._record(request_id, HoldLine(slot.key, party_size))
                    hold = self._finish(request_id, item, dates)
                    return self._result_for(hold)
        except BaseException:
            self._compensate(request_id)
            raise

        self._compensate(request_id)
        raise InsufficientCapacity(
            f"No departure covering {dates} has {party_size} seats left",
            slot_id=candidates[0].slot_id if candidates else None,
            alternatives=self._open_slots(item, party_size),
        )

    def _hold_nights(self, item, dates, room_type_id, rooms, request_id):
        keys = [NightKey(item.item_id, room_type_id, night) for night in dates.nights()]
        for key in keys:
            cell = self._nights.get(key)
            if cell is None:
                raise InsufficientCapacity(f"No rooms on sale for {key.night}", night=key.night)
            if cell.total < rooms:
                raise ImpossibleRequest(
                    f"{rooms} rooms requested but only {cell.total} exist on {key.night}",
                    night=key.night,
                )

        existing = self._begin(request_id)
        if existing is not None:
            return existing

        try:
            for key in keys:
                if not self._take(key, rooms):
                    raise InsufficientCapacity(f"Not enough rooms left on {key.night}", night=key.night)
                self._record(request_id, HoldLine(key, rooms))
        except BaseException:
            self._compensate(request_id)
            raise

        return self._result_for(self._finish(request_id, item, dates))

    def confirm(self, hold_id: UUID) -> Hold:
        with self._holds_lock:
            hold = self._holds.get(hold_id)
            if hold is None:
                raise HoldNotFound(f"Hold {hold_id} does not exist", hold_id=hold_id)
            if hold.status is HoldStatus.RELEASED:
                raise HoldAlreadyReleased(f"Hold {hold_id} was released and cannot be confirmed", hold_id=hold_id)
            if hold.status is HoldStatus.HELD:
                hold = replace(hold, status=HoldStatus.CONFIRMED, confirmed_at=utcnow())
                self._holds[hold_id] = hold
        logger.info("inventory.hold.confirmed", hold_id=str(hold_id))
        return hold

    def release(self, hold_id: UUID) -> bool:
        with self._holds_lock:
            hold = self._holds.get(hold_id)
            if hold is None:
                raise HoldNotFound(f"Hold {hold_id} does not exist", hold_id=hold_id)
            if hold.is_released:
                logger.info("inventory.hold.already_released", hold_id=str(hold_id))
                return False
            self._holds[hold_id] = replace(hold, status=HoldStatus.RELEASED, released_at=utcnow())

        for line in hold.lines:
            self._give_back(line.key, line.quantity)
        logger.info("inventory.hold.released", hold_id=str(hold_id), cells=len(hold.lines))
        return True

    def get_hold(self, hold_id: UUID) -> Hold:
        with self._holds_lock:
            hold = self._holds.get(hold_id)
        if hold is None:
            raise HoldNotFound(f"Hold {hold_id} does not exist", hold_id=hold_id)
        return hold

    def query_availability(self, item, dates, party_size=1, room_type_id=None):
        if item.kind is ItemKind.EXCURSION:
            with self._registry_lock:
                slots = [
                    replace(slot) for key, slot in self._slots.items()
                    if key.item_id == item.item_id
                    and slot.is_active
                    and slot.dates.overlaps_with(dates)
                    and slot.remaining >= party_size
                ]
            slots.sort(key=lambda slot: slot.dates.start_date)
            return [self._slot_window(item, slot) for slot in slots]

        by_room_type: dict[UUID, list[NightlyRoomCapacity]] = {}
        with self._registry_lock:
            for key, cell in self._nights.items():
                if key.item_id != item.item_id or not dates.contains(key.night):
                    continue
                if room_type_id is not None and key.room_type_id != room_type_id:
                    continue
                by_room_type.setdefault(key.room_type_id, []).append(replace(cell))

        windows = []
        for room_type, cells in sorted(by_room_type.items(), key=lambda pair: str(pair[0])):
            windows.extend(night_windows(item, room_type, cells, min_remaining=1))
        return windows
