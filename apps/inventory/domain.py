"""
Inventory domain types

Two kinds of capacity cells:
- SlotCapacity: one departure slot of an excursion, sold per person
- NightlyRoomCapacity: one room type on one night of a lodging, sold per room

Invariant for every cell at every observable point: 0 <= remaining <= total.

A Hold records which cells a booking request decremented and by how much,
so the exact amounts can be credited back on release.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import NamedTuple
from uuid import UUID, uuid4

from apps.catalog.domain import ItemRef
from shared.domain.base import ValueObject, utcnow
from shared.domain.value_objects import DateRange, Money


class SlotKey(NamedTuple):
    item_id: UUID
    slot_id: UUID


class NightKey(NamedTuple):
    item_id: UUID
    room_type_id: UUID
    night: date


def _check_counts(total: int, remaining: int):
    if total < 0:
        raise ValueError(f"Total capacity cannot be negative ({total})")
    if not 0 <= remaining <= total:
        raise ValueError(f"Remaining capacity {remaining} must be between 0 and total {total}")


@dataclass
class SlotCapacity:
    """Fixed-capacity departure window of an excursion"""
    item_id: UUID
    dates: DateRange
    total: int
    remaining: int | None = None
    slot_id: UUID = field(default_factory=uuid4)
    price: Money | None = None
    is_active: bool = True

    def __post_init__(self):
        if self.remaining is None:
            self.remaining = self.total
        _check_counts(self.total, self.remaining)

    @property
    def key(self) -> SlotKey:
        return SlotKey(self.item_id, self.slot_id)


@dataclass
class NightlyRoomCapacity:
    """Rooms of one type on one calendar night"""
    item_id: UUID
    room_type_id: UUID
    night: date
    total: int
    remaining: int | None = None
    price: Money | None = None

    def __post_init__(self):
        if self.remaining is None:
            self.remaining = self.total
        _check_counts(self.total, self.remaining)

    @property
    def key(self) -> NightKey:
        return NightKey(self.item_id, self.room_type_id, self.night)


class HoldStatus(Enum):
    HELD = 'held'
    CONFIRMED = 'confirmed'
    RELEASED = 'released'


@dataclass(frozen=True)
class HoldLine(ValueObject):
    """One decremented cell and the amount taken from it"""
    key: SlotKey | NightKey
    quantity: int


@dataclass(frozen=True, kw_only=True)
class Hold(ValueObject):
    hold_id: UUID = field(default_factory=uuid4)
    request_id: UUID
    item: ItemRef
    dates: DateRange
    lines: tuple[HoldLine, ...]
    status: HoldStatus = HoldStatus.HELD
    created_at: datetime = field(default_factory=utcnow)
    confirmed_at: datetime | None = None
    released_at: datetime | None = None

    @property
    def is_released(self) -> bool:
        return self.status is HoldStatus.RELEASED

    @property
    def slot_id(self) -> UUID | None:
        first = self.lines[0].key if self.lines else None
        return first.slot_id if isinstance(first, SlotKey) else None

    @property
    def room_type_id(self) -> UUID | None:
        first = self.lines[0].key if self.lines else None
        return first.room_type_id if isinstance(first, NightKey) else None

    @property
    def quantity(self) -> int:
        return self.lines[0].quantity if self.lines else 0


@dataclass(frozen=True, kw_only=True)
class HoldResult(ValueObject):
    """
    Outcome of a successful check-and-hold.

    Carries the price overrides of the held cells so pricing can run
    without another trip to the store.
    """
    hold: Hold
    slot_dates: DateRange | None = None
    slot_price: Money | None = None
    nightly_prices: tuple[tuple[date, Money | None], ...] = ()
    # True when a repeated request_id got back a hold taken by an earlier call
    replayed: bool = False

    @property
    def hold_id(self) -> UUID:
        return self.hold.hold_id


@dataclass(frozen=True, kw_only=True)
class AvailabilityWindow(ValueObject):
    """
    An open window for browsing: a departure slot with seats left, or a
    run of consecutive nights on which a room type has rooms left.
    """
    item: ItemRef
    dates: DateRange
    remaining: int
    slot_id: UUID | None = None
    room_type_id: UUID | None = None
    price: Money | None = None

    def to_dict(self) -> dict:
        return {
            'item': self.item.to_dict(),
            'start_date': self.dates.start_date.isoformat(),
            'end_date': self.dates.end_date.isoformat(),
            'remaining': self.remaining,
            'slot_id': str(self.slot_id) if self.slot_id else None,
            'room_type_id': str(self.room_type_id) if self.room_type_id else None,
            'price': self.price.to_dict() if self.price else None,
        }


def night_windows(item: ItemRef, room_type_id: UUID, cells: list[NightlyRoomCapacity], min_remaining: int):
    """
    Group nightly cells into runs of consecutive nights that each have at
    least `min_remaining` rooms. Each run becomes one window whose
    remaining count is the tightest night in the run.
    """
    windows: list[AvailabilityWindow] = []
    run: list[NightlyRoomCapacity] = []

    def close_run():
        if run:
            windows.append(AvailabilityWindow(
                item=item,
                dates=DateRange(run[0].night, run[-1].night + timedelta(days=1)),
                remaining=min(cell.remaining for cell in run),
                room_type_id=room_type_id,
            ))
            run.clear()

    for cell in sorted(cells, key=lambda c: c.night):
        open_night = cell.remaining >= min_remaining
        contiguous = bool(run) and cell.night == run[-1].night + timedelta(days=1)
        if open_night and (contiguous or not run):
            run.append(cell)
            continue
        close_run()
        if open_night:
            run.append(cell)
    close_run()
    return windows
