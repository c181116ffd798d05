"""
Unit of Work Pattern

Manages transactions and ensures that domain events are published only
after the work has been committed. A rolled-back unit of work discards
its events, so collaborators are never told about changes that did not
happen.
"""

from abc import ABC, abstractmethod
from typing import List
import logging

from django.db import transaction

from shared.application.message_bus import MessageBus
from shared.domain.base import DomainEvent

logger = logging.getLogger(__name__)


class AbstractUnitOfWork(ABC):
    """Collects aggregate events and hands them to the bus once the work is durable"""

    def __init__(self, bus: MessageBus | None = None):
        self._events: List[DomainEvent] = []
        self._bus = bus

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            self.commit()
        else:
            self.rollback()

    @abstractmethod
    def commit(self):
        """Commit the transaction"""

    def rollback(self):
        """Rollback changes and discard events"""
        if self._events:
            logger.warning(f"Rolling back unit of work, discarding {len(self._events)} events")
        self._events.clear()

    def collect_events(self, aggregate):
        """Move pending events off the aggregate into this unit of work"""
        new_events = aggregate.events
        if new_events:
            self._events.extend(new_events)
            aggregate.clear_events()
            logger.debug(
                f"Collected {len(new_events)} events from "
                f"{aggregate.__class__.__name__} (ID: {aggregate.id})"
            )

    def _take_events(self) -> List[DomainEvent]:
        events = self._events.copy()
        self._events.clear()
        return events

    def _publish_events(self, events: List[DomainEvent]):
        if self._bus is None:
            from shared.application.message_bus import message_bus
            bus = message_bus
        else:
            bus = self._bus

        logger.info(f"Publishing {len(events)} domain events after commit")

        try:
            bus.publish_events(events)
        except Exception as e:
            # Work is already committed; delivery failures are for monitoring
            logger.error(f"Error publishing events: {e}", exc_info=True)


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Unit of Work for in-memory repositories

    There is no transaction to manage; events are published as soon as the
    block exits cleanly.
    """

    def commit(self):
        events = self._take_events()
        if events:
            self._publish_events(events)


class DjangoUnitOfWork(AbstractUnitOfWork):
    """
    Wraps transaction.atomic(); events go out through on_commit(), so a
    rolled-back booking write never notifies anyone.

    Usage:
        with DjangoUnitOfWork() as uow:
            booking = booking_repo.get(booking_id)
            booking.apply_transition(BookingStatus.CONFIRMED, actor, now)
            uow.collect_events(booking)
            booking_repo.save(booking)
        # Events are published after commit
    """

    def __init__(self, bus: MessageBus | None = None):
        super().__init__(bus)
        self._transaction = None

    def __enter__(self):
        self._transaction = transaction.atomic()
        self._transaction.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                self.commit()
            else:
                self.rollback()
        finally:
            if self._transaction:
                self._transaction.__exit__(exc_type, exc_val, exc_tb)

    def commit(self):
        events = self._take_events()
        logger.debug(f"Committing transaction with {len(events)} events")
        if events:
            transaction.on_commit(lambda: self._publish_events(events))
