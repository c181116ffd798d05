"""Listing catalog models.

The booking engine only reads these rows. Capacity does not live here:
departure slots and room-night cells belong to the inventory app and are
changed only through the inventory store.
"""

from __future__ import annotations

import uuid
from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator  # type: ignore
from django.db import models  # type: ignore
from django.utils.translation import gettext_lazy as _  # type: ignore


class Currency(models.TextChoices):
    USD = "USD", "USD"
    UGX = "UGX", "UGX"
    EUR = "EUR", "EUR"
    GBP = "GBP", "GBP"


class Listing(models.Model):
    """Fields shared by excursions and lodgings."""

    class Status(models.TextChoices):
        DRAFT = "draft", _("Draft")
        PUBLISHED = "published", _("Published")
        SUSPENDED = "suspended", _("Suspended")
        ARCHIVED = "archived", _("Archived")

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    owner_id = models.UUIDField(db_index=True)
    title = models.CharField(max_length=255)
    status = models.CharField(max_length=20, choices=Status.choices, default=Status.DRAFT)
    base_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0"))],
    )
    currency = models.CharField(max_length=3, choices=Currency.choices, default=Currency.USD)
    cancellation_policy = models.JSONField(
        default=dict,
        blank=True,
        help_text=_(
            'Either a preset name ("flexible", "moderate", "strict", "no_refund") or '
            '{"free_cancellation": {"days_before": N}, "refund_policy": [{"days_before": N, "refund_percentage": P}]}.'
        ),
    )

    # Maintained by recalculate_listing_stats(), never by save hooks
    total_bookings = models.PositiveIntegerField(default=0)
    total_revenue = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0.00"))
    stats_updated_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        abstract = True

    def __str__(self) -> str:
        return f"{self.title} ({self.status})"


class Excursion(Listing):
    """Multi-day guided excursion."""

    class Meta:
        verbose_name = _("Excursion")
        verbose_name_plural = _("Excursions")
        ordering = ["title"]


class Lodging(Listing):
    """Lodging property with several room types."""

    class Meta:
        verbose_name = _("Lodging")
        verbose_name_plural = _("Lodgings")
        ordering = ["title"]


class RoomType(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    lodging = models.ForeignKey(Lodging, on_delete=models.CASCADE, related_name="room_types")
    name = models.CharField(max_length=100)
    max_guests = models.PositiveSmallIntegerField(default=2, validators=[MinValueValidator(1)])
    price_per_night = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text=_("Overrides the lodging base price when set."),
    )
    position = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["position", "name"]
        constraints = [
            models.UniqueConstraint(fields=["lodging", "name"], name="room_type_unique_name"),
        ]

    def __str__(self) -> str:
        return f"{self.lodging.title}: {self.name}"


class GroupDiscount(models.Model):
    """Ordered group discount tiers; the first satisfied tier applies."""

    excursion = models.ForeignKey(Excursion, on_delete=models.CASCADE, related_name="group_discounts")
    name = models.CharField(max_length=50, default="group")
    min_guests = models.PositiveSmallIntegerField(validators=[MinValueValidator(1)])
    percentage = models.DecimalField(
        max_digits=5,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01")), MaxValueValidator(Decimal("100"))],
    )
    position = models.PositiveSmallIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self) -> str:
        return f"{self.percentage}% from {self.min_guests} guests"


class SeasonalRate(models.Model):
    class Season(models.TextChoices):
        HIGH = "high", _("High")
        PEAK = "peak", _("Peak")
        LOW = "low", _("Low")
        SHOULDER = "shoulder", _("Shoulder")

    lodging = models.ForeignKey(Lodging, on_delete=models.CASCADE, related_name="seasonal_rates")
    season = models.CharField(max_length=20, choices=Season.choices)
    start_date = models.DateField()
    end_date = models.DateField()
    multiplier = models.DecimalField(
        max_digits=4,
        decimal_places=2,
        default=Decimal("1.00"),
        validators=[MinValueValidator(Decimal("0.5")), MaxValueValidator(Decimal("5"))],
    )

    class Meta:
        ordering = ["start_date"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(end_date__gte=models.F("start_date")),
                name="seasonal_rate_valid_dates",
            ),
        ]


class ExtraService(models.Model):
    """Optional paid add-on attached to exactly one listing."""

    excursion = models.ForeignKey(
        Excursion, null=True, blank=True, on_delete=models.CASCADE, related_name="extras"
    )
    lodging = models.ForeignKey(
        Lodging, null=True, blank=True, on_delete=models.CASCADE, related_name="extras"
    )
    code = models.SlugField(max_length=50)
    name = models.CharField(max_length=100)
    unit_price = models.DecimalField(max_digits=12, decimal_places=2, validators=[MinValueValidator(Decimal("0"))])

    class Meta:
        ordering = ["code"]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(excursion__isnull=False, lodging__isnull=True)
                    | models.Q(excursion__isnull=True, lodging__isnull=False)
                ),
                name="extra_service_single_listing",
            ),
        ]

    def __str__(self) -> str:
        return self.name
