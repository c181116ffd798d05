"""Booking persistence models.

Rows are written only through DjangoBookingRepository. Status changes are
stored as an append-only history table; the booking row carries a version
counter for optimistic concurrency.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Booking(models.Model):
    """Reservation of one excursion departure or one lodging stay."""

    class Kind(models.TextChoices):
        EXCURSION = "excursion", _("Excursion")
        LODGING = "lodging", _("Lodging")

    class Status(models.TextChoices):
        PENDING = "pending", _("Pending")
        PAYMENT_PENDING = "payment_pending", _("Payment pending")
        CONFIRMED = "confirmed", _("Confirmed")
        CHECKED_IN = "checked_in", _("Checked in")
        IN_PROGRESS = "in_progress", _("In progress")
        COMPLETED = "completed", _("Completed")
        CANCELLED = "cancelled", _("Cancelled")
        NO_SHOW = "no_show", _("No show")
        REFUNDED = "refunded", _("Refunded")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    kind = models.CharField(max_length=20, choices=Kind.choices)
    item_id = models.UUIDField()
    requester_id = models.UUIDField(db_index=True)
    booking_number = models.CharField(max_length=16, unique=True, editable=False)
    confirmation_code = models.CharField(max_length=8, unique=True, editable=False)
    status = models.CharField(max_length=32, choices=Status.choices, default=Status.PENDING)

    start_date = models.DateField()
    end_date = models.DateField()
    adults = models.PositiveSmallIntegerField(default=1)
    children = models.PositiveSmallIntegerField(default=0)
    participants = models.JSONField(default=list, blank=True)

    # Excursion bookings
    slot_id = models.UUIDField(null=True, blank=True)
    # Lodging bookings
    room_type_id = models.UUIDField(null=True, blank=True)
    rooms = models.PositiveSmallIntegerField(default=1)

    extras = models.JSONField(default=list, blank=True)
    special_requests = models.TextField(blank=True)

    pricing = models.JSONField(help_text=_("Price breakdown locked at creation."))
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    currency = models.CharField(max_length=3, default="USD")
    cancellation_policy = models.JSONField(default=dict, blank=True)

    hold_id = models.UUIDField(unique=True, help_text=_("Inventory hold taken when the booking was created."))
    payment_due_at = models.DateTimeField(
        null=True, blank=True, help_text=_("Unpaid bookings are swept after this moment.")
    )
    version = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField()
    updated_at = models.DateTimeField()
    confirmed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    no_show_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("Booking")
        verbose_name_plural = _("Bookings")
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_date__gt=models.F("start_date")),
                name="booking_valid_dates",
            ),
            models.CheckConstraint(condition=models.Q(rooms__gte=1), name="booking_positive_rooms"),
        ]
        indexes = [
            models.Index(fields=["kind", "item_id", "status"]),
            models.Index(fields=["status", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"Booking {self.booking_number} ({self.status})"


class BookingStatusHistory(models.Model):
    """One lifecycle step. Rows are inserted, never updated."""

    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="status_history")
    sequence = models.PositiveIntegerField()
    from_status = models.CharField(max_length=32, choices=Booking.Status.choices, blank=True)
    to_status = models.CharField(max_length=32, choices=Booking.Status.choices)
    actor = models.CharField(max_length=100)
    reason = models.CharField(max_length=255, blank=True)
    changed_at = models.DateTimeField()

    class Meta:
        ordering = ["booking", "sequence"]
        constraints = [
            models.UniqueConstraint(fields=["booking", "sequence"], name="booking_history_unique_sequence"),
        ]

    def __str__(self) -> str:
        return f"{self.booking_id}: {self.from_status or '-'} -> {self.to_status}"


class Cancellation(models.Model):
    class RefundStatus(models.TextChoices):
        PENDING = "pending", _("Pending")
        PROCESSED = "processed", _("Processed")
        FAILED = "failed", _("Failed")

    booking = models.OneToOneField(Booking, on_delete=models.CASCADE, related_name="cancellation")
    cancelled_by = models.CharField(max_length=100)
    cancelled_at = models.DateTimeField()
    reason = models.CharField(max_length=255, blank=True)
    refund_percentage = models.DecimalField(max_digits=5, decimal_places=2)
    refund_amount = models.DecimalField(max_digits=14, decimal_places=2)
    days_until_start = models.IntegerField()
    refund_status = models.CharField(max_length=20, choices=RefundStatus.choices, default=RefundStatus.PENDING)

    def __str__(self) -> str:
        return f"Cancellation of {self.booking_id} ({self.refund_percentage}%)"
