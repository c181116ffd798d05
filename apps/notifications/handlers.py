"""
Message bus subscribers for the notification collaborator.

Every status change, every new booking and every computed refund is
handed to a Celery task as a plain payload.
"""

from __future__ import annotations

import structlog

from apps.bookings.domain.events import BookingCreated, BookingStatusChanged, RefundComputed
from shared.application.message_bus import MessageBus, message_bus
from shared.domain.base import DomainEvent

logger = structlog.get_logger(__name__)

NOTIFIED_EVENTS = (BookingCreated, BookingStatusChanged, RefundComputed)


def enqueue_booking_notification(event: DomainEvent):
    from .tasks import deliver_booking_event

    payload = event.to_dict()
    try:
        deliver_booking_event.delay(payload)
    except Exception as exc:  # noqa: BLE001 - broker errors must not reach the booking flow
        logger.error(
            "notification.enqueue_failed",
            event_type=payload["event_type"],
            booking_id=payload.get("booking_id"),
            error=str(exc),
        )
        return
    logger.info("notification.enqueued", event_type=payload["event_type"], booking_id=payload.get("booking_id"))


def register_handlers(bus: MessageBus = message_bus):
    for event_type in NOTIFIED_EVENTS:
        bus.register_event_handler(event_type, enqueue_booking_notification)
