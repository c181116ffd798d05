"""Booking engine settings read from ``settings.BOOKING_ENGINE``."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from django.conf import settings  # type: ignore

from apps.pricing.calculator import PricingPolicy

DEFAULTS = {
    "PLATFORM_FEE_RATE": "0.05",
    "TAX_RATE": "0.18",
    "REFERENCE_MAX_ATTEMPTS": 5,
    "CONFLICT_RETRY_ATTEMPTS": 3,
    "CONFLICT_RETRY_BASE_DELAY": 0.05,
    "CELL_LOCK_TIMEOUT": 5.0,
    "PENDING_HOLD_TTL_MINUTES": 24 * 60,
    "DEFAULT_CURRENCY": "USD",
}


@dataclass(frozen=True)
class EngineSettings:
    platform_fee_rate: Decimal
    tax_rate: Decimal
    reference_max_attempts: int
    conflict_retry_attempts: int
    conflict_retry_base_delay: float
    cell_lock_timeout: float
    pending_hold_ttl_minutes: int
    default_currency: str

    @property
    def pricing_policy(self) -> PricingPolicy:
        return PricingPolicy(platform_fee_rate=self.platform_fee_rate, tax_rate=self.tax_rate)

    @classmethod
    def from_mapping(cls, overrides=None) -> "EngineSettings":
        values = {**DEFAULTS, **(overrides or {})}
        return cls(
            platform_fee_rate=Decimal(str(values["PLATFORM_FEE_RATE"])),
            tax_rate=Decimal(str(values["TAX_RATE"])),
            reference_max_attempts=int(values["REFERENCE_MAX_ATTEMPTS"]),
            conflict_retry_attempts=int(values["CONFLICT_RETRY_ATTEMPTS"]),
            conflict_retry_base_delay=float(values["CONFLICT_RETRY_BASE_DELAY"]),
            cell_lock_timeout=float(values["CELL_LOCK_TIMEOUT"]),
            pending_hold_ttl_minutes=int(values["PENDING_HOLD_TTL_MINUTES"]),
            default_currency=str(values["DEFAULT_CURRENCY"]),
        )


def engine_settings() -> EngineSettings:
    return EngineSettings.from_mapping(getattr(settings, "BOOKING_ENGINE", None))
