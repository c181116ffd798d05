"""Listing catalog ports used by the booking engine."""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from decimal import Decimal

from apps.bookings.domain.cancellation import CancellationPolicy
from shared.domain.value_objects import Money

from .domain import (
    ExcursionItem,
    ExtraService,
    GroupDiscount,
    ItemKind,
    ItemRef,
    Listing,
    ListingStatus,
    LodgingItem,
    RoomType,
    SeasonalRate,
)


class ListingCatalog(ABC):
    """Read-only access to listing reference data."""

    @abstractmethod
    def get(self, ref: ItemRef) -> Listing | None:
        """Return the listing or None when it does not exist"""

    @abstractmethod
    def owned_by(self, owner_id) -> list[ItemRef]:
        """References of every listing the owner manages, in any status"""


class InMemoryListingCatalog(ListingCatalog):
    def __init__(self, listings=()):
        self._listings: dict[ItemRef, Listing] = {}
        self._lock = threading.Lock()
        for listing in listings:
            self.add(listing)

    def add(self, listing: Listing) -> Listing:
        with self._lock:
            self._listings[listing.ref] = listing
        return listing

    def get(self, ref: ItemRef) -> Listing | None:
        with self._lock:
            return self._listings.get(ref)

    def owned_by(self, owner_id) -> list[ItemRef]:
        with self._lock:
            return [ref for ref, listing in self._listings.items() if listing.owner_id == owner_id]


class DjangoListingCatalog(ListingCatalog):
    """Builds immutable listing snapshots from catalog rows."""

    def get(self, ref: ItemRef) -> Listing | None:
        from . import models

        if ref.kind is ItemKind.EXCURSION:
            row = (
                models.Excursion.objects.prefetch_related("group_discounts", "extras")
                .filter(pk=ref.item_id)
                .first()
            )
            return self._excursion(row) if row else None

        row = (
            models.Lodging.objects.prefetch_related("room_types", "seasonal_rates", "extras")
            .filter(pk=ref.item_id)
            .first()
        )
        return self._lodging(row) if row else None

    def owned_by(self, owner_id) -> list[ItemRef]:
        from . import models

        refs = [
            ItemRef(ItemKind.EXCURSION, item_id)
            for item_id in models.Excursion.objects.filter(owner_id=owner_id).values_list("id", flat=True)
        ]
        refs += [
            ItemRef(ItemKind.LODGING, item_id)
            for item_id in models.Lodging.objects.filter(owner_id=owner_id).values_list("id", flat=True)
        ]
        return refs

    @staticmethod
    def _common(row) -> dict:
        currency = row.currency
        return {
            "item_id": row.id,
            "title": row.title,
            "owner_id": row.owner_id,
            "status": ListingStatus(row.status),
            "base_price": Money(row.base_price, currency),
            "extras": tuple(
                ExtraService(extra.code, extra.name, Money(extra.unit_price, currency))
                for extra in row.extras.all()
            ),
            "cancellation_policy": CancellationPolicy.from_document(row.cancellation_policy or None),
        }

    def _excursion(self, row) -> ExcursionItem:
        return ExcursionItem(
            **self._common(row),
            group_discounts=tuple(
                GroupDiscount(discount.min_guests, discount.percentage, discount.name)
                for discount in row.group_discounts.all()
            ),
        )

    def _lodging(self, row) -> LodgingItem:
        currency = row.currency
        return LodgingItem(
            **self._common(row),
            room_types=tuple(
                RoomType(
                    room_type_id=room.id,
                    name=room.name,
                    max_guests=room.max_guests,
                    price_per_night=(
                        Money(room.price_per_night, currency) if room.price_per_night is not None else None
                    ),
                )
                for room in row.room_types.all()
            ),
            seasonal_rates=tuple(
                SeasonalRate(rate.season, rate.start_date, rate.end_date, Decimal(rate.multiplier))
                for rate in row.seasonal_rates.all()
            ),
        )
