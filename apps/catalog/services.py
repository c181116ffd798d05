"""Catalog services.

Listing statistics are recalculated only when asked to. Nothing
recomputes them as a side effect of saving a booking or a listing.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import structlog
from django.utils import timezone  # type: ignore

from apps.bookings.domain.state_machine import BookingStatus

from .domain import ItemKind, ItemRef
from .models import Excursion, Lodging

logger = structlog.get_logger(__name__)

REVENUE_STATUSES = frozenset({BookingStatus.CONFIRMED, BookingStatus.COMPLETED})


@dataclass(frozen=True)
class ListingStats:
    item: ItemRef
    total_bookings: int
    total_revenue: Decimal
    updated_at: datetime


def recalculate_listing_stats(ref: ItemRef, bookings=None) -> ListingStats | None:
    """
    Recount confirmed and completed bookings of one listing and store the
    count and revenue (in the listing's currency) on the listing row.

    Returns None when the listing does not exist.
    """
    if bookings is None:
        from apps.bookings.repositories import DjangoBookingRepository

        bookings = DjangoBookingRepository()

    model = Excursion if ref.kind is ItemKind.EXCURSION else Lodging
    listing = model.objects.filter(pk=ref.item_id).only("id", "currency").first()
    if listing is None:
        logger.warning("catalog.stats.listing_missing", item=str(ref))
        return None

    count, totals = bookings.stats_for_item(ref, REVENUE_STATUSES)
    revenue = totals.get(listing.currency, Decimal("0.00"))
    now = timezone.now()
    model.objects.filter(pk=ref.item_id).update(
        total_bookings=count,
        total_revenue=revenue,
        stats_updated_at=now,
    )
    logger.info("catalog.stats.recalculated", item=str(ref), total_bookings=count, total_revenue=str(revenue))
    return ListingStats(item=ref, total_bookings=count, total_revenue=revenue, updated_at=now)
