"""
Building blocks shared by the catalog, inventory, pricing and booking code:

- Entity: identified by id, mutable (bookings)
- ValueObject: frozen, compared field by field (money, date ranges, holds)
- Aggregate: entity that records events until a unit of work takes them
- DomainEvent: plain-data record of a booking change for collaborators

All timestamps are timezone-aware UTC.
"""

from abc import ABC
from dataclasses import dataclass, field, fields
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List
from uuid import UUID, uuid4


def utcnow() -> datetime:
    """Timezone-aware current time in UTC"""
    return datetime.now(timezone.utc)


@dataclass(kw_only=True)
class Entity(ABC):
    """Identity-based equality: two bookings are the same booking if their ids match"""
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __eq__(self, other):
        if not isinstance(other, self.__class__):
            return False
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)


@dataclass(frozen=True)
class ValueObject(ABC):
    """Frozen, identity-free, equal when every field is equal"""


@dataclass(kw_only=True, eq=False)
class Aggregate(Entity):
    """
    Root of a consistency boundary.

    Events raised while the aggregate changes stay here until a unit of
    work collects them; they reach the message bus only after commit.
    """
    _events: List['DomainEvent'] = field(default_factory=list, repr=False, init=False)

    def add_event(self, event: 'DomainEvent'):
        self._events.append(event)

    def clear_events(self):
        self._events.clear()

    @property
    def events(self) -> List['DomainEvent']:
        return self._events.copy()


def _plain(value):
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if hasattr(value, 'to_dict'):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


@dataclass(kw_only=True)
class DomainEvent:
    """
    Something that happened to a booking.

    Subclasses add their own fields; to_dict() flattens them to JSON-safe
    values so the payload can cross a Celery queue or a webhook.
    """
    event_id: UUID = field(default_factory=uuid4)
    occurred_at: datetime = field(default_factory=utcnow)
    aggregate_id: UUID | None = None

    def to_dict(self) -> dict:
        """Convert event to dictionary for serialization"""
        payload = {
            'event_id': str(self.event_id),
            'event_type': self.__class__.__name__,
            'occurred_at': self.occurred_at.isoformat(),
            'aggregate_id': str(self.aggregate_id) if self.aggregate_id else None,
        }
        for f in fields(self):
            if f.name not in payload:
                payload[f.name] = _plain(getattr(self, f.name))
        return payload
