"""Capacity cells and holds.

Rows here are written only by DjangoInventoryStore through conditional
updates. The check constraints are the last line of defence for
0 <= remaining <= total.
"""

from __future__ import annotations

import uuid

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class ExcursionSlot(models.Model):
    """Departure window of an excursion, sold per seat."""

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    excursion_id = models.UUIDField(db_index=True)
    start_date = models.DateField()
    end_date = models.DateField()
    total_capacity = models.PositiveIntegerField()
    remaining_capacity = models.PositiveIntegerField()
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_("Per-person price for this departure; the excursion base price applies when empty."),
    )
    currency = models.CharField(max_length=3, default="USD")
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ["start_date", "id"]
        indexes = [models.Index(fields=["excursion_id", "start_date"])]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_date__gt=models.F("start_date")),
                name="excursion_slot_valid_dates",
            ),
            models.CheckConstraint(
                condition=models.Q(remaining_capacity__gte=0)
                & models.Q(remaining_capacity__lte=models.F("total_capacity")),
                name="excursion_slot_remaining_within_total",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.excursion_id} {self.start_date}..{self.end_date} ({self.remaining_capacity}/{self.total_capacity})"


class RoomNight(models.Model):
    """One room type of a lodging on one calendar night."""

    id = models.BigAutoField(primary_key=True)
    lodging_id = models.UUIDField()
    room_type_id = models.UUIDField()
    night = models.DateField()
    total_rooms = models.PositiveIntegerField()
    remaining_rooms = models.PositiveIntegerField()
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_("Nightly rate override for this date."),
    )
    currency = models.CharField(max_length=3, default="USD")

    class Meta:
        ordering = ["night"]
        constraints = [
            models.UniqueConstraint(
                fields=["lodging_id", "room_type_id", "night"],
                name="room_night_unique_cell",
            ),
            models.CheckConstraint(
                condition=models.Q(remaining_rooms__gte=0)
                & models.Q(remaining_rooms__lte=models.F("total_rooms")),
                name="room_night_remaining_within_total",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.room_type_id} {self.night} ({self.remaining_rooms}/{self.total_rooms})"


class InventoryHold(models.Model):
    class Status(models.TextChoices):
        HELD = "held", _("Held")
        CONFIRMED = "confirmed", _("Confirmed")
        RELEASED = "released", _("Released")

    class Kind(models.TextChoices):
        EXCURSION = "excursion", _("Excursion")
        LODGING = "lodging", _("Lodging")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    request_id = models.UUIDField(unique=True)
    item_kind = models.CharField(max_length=20, choices=Kind.choices)
    item_id = models.UUIDField(db_index=True)
    start_date = models.DateField()
    end_date = models.DateField()
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.HELD, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    confirmed_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"Hold {self.id} ({self.status})"


class InventoryHoldLine(models.Model):
    """Amount taken from exactly one cell."""

    hold = models.ForeignKey(InventoryHold, on_delete=models.CASCADE, related_name="lines")
    slot = models.ForeignKey(ExcursionSlot, null=True, blank=True, on_delete=models.PROTECT)
    room_night = models.ForeignKey(RoomNight, null=True, blank=True, on_delete=models.PROTECT)
    quantity = models.PositiveIntegerField()

    class Meta:
        ordering = ["id"]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(slot__isnull=False, room_night__isnull=True)
                    | models.Q(slot__isnull=True, room_night__isnull=False)
                ),
                name="hold_line_single_cell",
            ),
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="hold_line_positive_quantity"),
        ]
