"""
Listing Catalog reference data

Read-only view of the two kinds of bookable listings as the booking
engine sees them: guided excursions sold per departure slot, and lodging
sold per room type and night.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from apps.bookings.domain.cancellation import CancellationPolicy
from shared.domain.base import ValueObject
from shared.domain.exceptions import InvalidPolicy
from shared.domain.value_objects import Money, to_decimal


class ItemKind(Enum):
    EXCURSION = 'excursion'
    LODGING = 'lodging'


class ListingStatus(Enum):
    DRAFT = 'draft'
    PUBLISHED = 'published'
    SUSPENDED = 'suspended'
    ARCHIVED = 'archived'


@dataclass(frozen=True)
class ItemRef(ValueObject):
    """Tagged reference to one listing"""
    kind: ItemKind
    item_id: UUID

    def to_dict(self) -> dict:
        return {'kind': self.kind.value, 'item_id': str(self.item_id)}

    def __str__(self):
        return f"{self.kind.value}:{self.item_id}"


@dataclass(frozen=True)
class GroupDiscount(ValueObject):
    """Percentage off the base when the party has at least `min_guests` people"""
    min_guests: int
    percentage: Decimal
    name: str = 'group'

    def __post_init__(self):
        if self.min_guests < 1:
            raise InvalidPolicy(f"Group discount min_guests must be positive ({self.min_guests})")
        percentage = to_decimal(self.percentage)
        if not Decimal('0') < percentage <= Decimal('100'):
            raise InvalidPolicy(f"Group discount percentage must be in (0, 100], got {percentage}")
        object.__setattr__(self, 'percentage', percentage)


@dataclass(frozen=True)
class SeasonalRate(ValueObject):
    """
    Declared seasonal multiplier for lodging.

    Carried as data only. Pricing applies it through a SeasonalRateHook,
    and the default hook leaves nightly rates untouched.
    """
    season: str
    start_date: date
    end_date: date
    multiplier: Decimal = Decimal('1')

    def applies_to(self, night: date) -> bool:
        return self.start_date <= night <= self.end_date


@dataclass(frozen=True)
class ExtraService(ValueObject):
    """Optional add-on sold with a listing (airport shuttle, guided tour, ...)"""
    service_id: str
    name: str
    unit_price: Money


@dataclass(frozen=True)
class RoomType(ValueObject):
    room_type_id: UUID
    name: str
    max_guests: int
    price_per_night: Money | None = None


@dataclass(frozen=True, kw_only=True)
class Listing(ValueObject):
    item_id: UUID
    title: str
    owner_id: UUID
    status: ListingStatus
    base_price: Money
    extras: tuple[ExtraService, ...] = ()
    cancellation_policy: CancellationPolicy = field(default_factory=CancellationPolicy)

    kind = None

    @property
    def ref(self) -> ItemRef:
        return ItemRef(self.kind, self.item_id)

    @property
    def currency(self) -> str:
        return self.base_price.currency

    @property
    def is_bookable(self) -> bool:
        return self.status is ListingStatus.PUBLISHED

    def extra(self, service_id: str) -> ExtraService | None:
        return next((extra for extra in self.extras if extra.service_id == service_id), None)


@dataclass(frozen=True, kw_only=True)
class ExcursionItem(Listing):
    """Multi-day guided excursion with fixed-capacity departure slots"""
    group_discounts: tuple[GroupDiscount, ...] = ()

    kind = ItemKind.EXCURSION


@dataclass(frozen=True, kw_only=True)
class LodgingItem(Listing):
    """Lodging with per-night, per-room-type capacity"""
    room_types: tuple[RoomType, ...] = ()
    seasonal_rates: tuple[SeasonalRate, ...] = ()

    kind = ItemKind.LODGING

    def room_type(self, room_type_id: UUID | None) -> RoomType | None:
        """Find a room type by id; with no id, the first room type is the default"""
        if room_type_id is None:
            return self.room_types[0] if self.room_types else None
        return next((room for room in self.room_types if room.room_type_id == room_type_id), None)
