"""Celery tasks for notification delivery."""

from __future__ import annotations

from celery import shared_task  # type: ignore

from .services import send_webhook_notification


@shared_task(name="notifications.deliver_booking_event")
def deliver_booking_event(payload: dict) -> bool:
    """Send one booking event to the notification webhook."""
    return send_webhook_notification(payload)
