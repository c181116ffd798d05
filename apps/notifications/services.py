"""Notification delivery to the configured webhook."""

from __future__ import annotations

import logging

import requests
from django.conf import settings  # type: ignore

logger = logging.getLogger(__name__)


def webhook_url() -> str:
    return getattr(settings, "NOTIFICATIONS_WEBHOOK_URL", "") or ""


def send_webhook_notification(payload: dict, *, url: str | None = None, timeout: float | None = None) -> bool:
    """
    POST one event payload as JSON.

    Delivery is fire-and-forget: failures are logged and reported as
    False, never raised, so a lost notification cannot undo a booking
    change.

    Returns:
        bool: True if the receiver answered with a 2xx status
    """
    url = url if url is not None else webhook_url()
    if not url:
        logger.debug("Notification webhook not configured, dropping %s", payload.get("event_type"))
        return False

    timeout = timeout if timeout is not None else getattr(settings, "NOTIFICATIONS_WEBHOOK_TIMEOUT", 5)
    try:
        response = requests.post(url, json=payload, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        logger.error(
            "Failed to deliver %s for booking %s: %s",
            payload.get("event_type"),
            payload.get("booking_id"),
            exc,
        )
        return False

    logger.info("Delivered %s for booking %s", payload.get("event_type"), payload.get("booking_id"))
    return True
