"""Celery tasks for the booking domain."""

from __future__ import annotations

import structlog
from celery import shared_task  # type: ignore

from .services import build_default_engine

logger = structlog.get_logger(__name__)


# ============================================================================
# PERIODIC TASKS (run by Celery Beat)
# ============================================================================

@shared_task(name="bookings.release_abandoned_holds")
def release_abandoned_holds() -> dict[str, int]:
    """
    Cancel PENDING bookings whose payment window has passed.

    Stands in for the payment collaborator's timeout: bookings created
    more than PENDING_HOLD_TTL_MINUTES ago and still PENDING are cancelled
    with actor "system", which releases their inventory holds.

    Returns:
        dict: {"cancelled": number of bookings cancelled}
    """
    cancelled = build_default_engine().release_abandoned_holds()
    if cancelled:
        logger.info("booking.sweep.task_finished", cancelled=cancelled)
    return {"cancelled": cancelled}
