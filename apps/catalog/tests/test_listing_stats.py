"""Tests for listing snapshots and explicit stats recalculation."""

from __future__ import annotations

import random
from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

from django.test import TestCase

from apps.bookings.services import build_default_engine
from apps.catalog.domain import ItemKind, ItemRef, ListingStatus
from apps.catalog.models import Excursion
from apps.catalog.repository import DjangoListingCatalog
from apps.catalog.services import recalculate_listing_stats
from apps.catalog.tasks import recalculate_listing_stats_task
from apps.inventory.models import ExcursionSlot


class ListingStatsTests(TestCase):
    def setUp(self) -> None:
        self.excursion = Excursion.objects.create(
            owner_id=uuid4(),
            title="Source of the Nile",
            status=Excursion.Status.PUBLISHED,
            base_price=Decimal("50.00"),
            cancellation_policy="flexible",
        )
        ExcursionSlot.objects.create(
            excursion_id=self.excursion.id,
            start_date=date(2030, 2, 1),
            end_date=date(2030, 2, 3),
            total_capacity=10,
            remaining_capacity=10,
        )
        self.ref = ItemRef(ItemKind.EXCURSION, self.excursion.id)
        self.engine = build_default_engine(
            clock=lambda: datetime(2030, 1, 1, tzinfo=timezone.utc),
            rng=random.Random(9),
        )

    def _book(self, adults: int):
        return self.engine.create({
            "item_kind": "excursion",
            "item_id": str(self.excursion.id),
            "requester_id": str(uuid4()),
            "start_date": "2030-02-01",
            "end_date": "2030-02-03",
            "adults": adults,
        })

    def test_snapshot_reads_preset_policy(self) -> None:
        listing = DjangoListingCatalog().get(self.ref)

        self.assertIs(listing.status, ListingStatus.PUBLISHED)
        self.assertEqual(listing.cancellation_policy.free_cancellation_days, 3)
        self.assertIsNone(DjangoListingCatalog().get(ItemRef(ItemKind.LODGING, self.excursion.id)))

    def test_saving_bookings_does_not_touch_stats(self) -> None:
        booking = self._book(2)
        self.engine.transition(booking.id, "confirmed", "payments")

        self.excursion.refresh_from_db()
        self.assertEqual(self.excursion.total_bookings, 0)
        self.assertIsNone(self.excursion.stats_updated_at)

    def test_recalculation_counts_confirmed_and_completed_only(self) -> None:
        confirmed = self._book(2)
        self.engine.transition(confirmed.id, "confirmed", "payments")
        completed = self._book(1)
        self.engine.transition(completed.id, "confirmed", "payments")
        self.engine.transition(completed.id, "completed", "system")
        self._book(3)
        cancelled = self._book(1)
        self.engine.cancel(cancelled.id, "support")

        stats = recalculate_listing_stats(self.ref)

        self.assertEqual(stats.total_bookings, 2)
        self.assertEqual(stats.total_revenue, confirmed.pricing.total.amount + completed.pricing.total.amount)
        self.excursion.refresh_from_db()
        self.assertEqual(self.excursion.total_bookings, 2)
        self.assertEqual(self.excursion.total_revenue, stats.total_revenue)
        self.assertIsNotNone(self.excursion.stats_updated_at)

    def test_task_reports_missing_listing(self) -> None:
        self.assertIsNone(recalculate_listing_stats_task("excursion", str(uuid4())))
        result = recalculate_listing_stats_task("excursion", str(self.excursion.id))
        self.assertEqual(result["total_bookings"], 0)
