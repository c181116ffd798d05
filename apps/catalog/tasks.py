"""Celery tasks for the catalog."""

from __future__ import annotations

from uuid import UUID

from celery import shared_task  # type: ignore

from .domain import ItemKind, ItemRef
from .services import recalculate_listing_stats


@shared_task(name="catalog.recalculate_listing_stats")
def recalculate_listing_stats_task(item_kind: str, item_id: str) -> dict | None:
    """Recalculate booking count and revenue of one listing on request."""
    stats = recalculate_listing_stats(ItemRef(ItemKind(item_kind), UUID(str(item_id))))
    if stats is None:
        return None
    return {
        "item": stats.item.to_dict(),
        "total_bookings": stats.total_bookings,
        "total_revenue": str(stats.total_revenue),
    }
