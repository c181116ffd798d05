"""
Booking repositories

Both implementations save with optimistic concurrency: a save succeeds
only if the stored version still equals the version the booking was
loaded with, and bumps it by one.
"""

from __future__ import annotations

import copy
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

import structlog
from django.db import DatabaseError, IntegrityError, transaction  # type: ignore
from django.db.models import F, Q  # type: ignore

from apps.bookings.domain.cancellation import CancellationPolicy
from apps.bookings.domain.entities import (
    Booking,
    BookingStatus,
    CancellationRecord,
    ExcursionBooking,
    LodgingBooking,
    Participant,
    PartyComposition,
    RefundStatus,
    StatusChange,
)
from apps.catalog.domain import ItemKind, ItemRef
from apps.pricing.calculator import PricingBreakdown, SelectedExtra
from shared.domain.exceptions import (
    BookingNotFound,
    ConcurrencyConflict,
    HoldAlreadyBooked,
    ReferenceCollision,
    StoreUnavailable,
)
from shared.domain.value_objects import DateRange, Money

logger = structlog.get_logger(__name__)


def _loaded(queryset):
    return queryset.prefetch_related("status_history").select_related("cancellation")


@dataclass(frozen=True, kw_only=True)
class BookingCriteria:
    """Filters for booking listings. A field left as None does not filter."""
    requester_id: UUID | None = None
    items: tuple[ItemRef, ...] | None = None
    statuses: frozenset[BookingStatus] | None = None
    kind: ItemKind | None = None
    starts_from: date | None = None
    starts_until: date | None = None
    newest_first: bool = True

    def matches(self, booking: Booking) -> bool:
        if self.requester_id is not None and booking.requester_id != self.requester_id:
            return False
        if self.items is not None and booking.item not in self.items:
            return False
        if self.statuses is not None and booking.status not in self.statuses:
            return False
        if self.kind is not None and booking.kind is not self.kind:
            return False
        if self.starts_from is not None and booking.dates.start_date < self.starts_from:
            return False
        if self.starts_until is not None and booking.dates.start_date > self.starts_until:
            return False
        return True


class BookingRepository(ABC):

    @abstractmethod
    def add(self, booking: Booking):
        """
        Insert a new booking.

        ReferenceCollision if its references are taken, HoldAlreadyBooked if
        another booking already sits on its hold.
        """

    @abstractmethod
    def save(self, booking: Booking):
        """Persist changes; ConcurrencyConflict if someone saved first"""

    @abstractmethod
    def get(self, booking_id: UUID) -> Booking:
        ...

    @abstractmethod
    def find_by_reference(self, reference: str) -> Booking | None:
        """Booking number or confirmation code, case-insensitive"""

    @abstractmethod
    def find_by_hold(self, hold_id: UUID) -> Booking | None:
        ...

    @abstractmethod
    def reference_taken(self, booking_number: str, confirmation_code: str) -> bool:
        ...

    @abstractmethod
    def pending_created_before(self, cutoff: datetime) -> list[Booking]:
        ...

    @abstractmethod
    def stats_for_item(self, item: ItemRef, statuses) -> tuple[int, dict[str, Decimal]]:
        """Booking count and total per currency over bookings in `statuses`"""

    @abstractmethod
    def search(self, criteria: BookingCriteria, *, offset: int, limit: int) -> tuple[list[Booking], int]:
        """One page of matching bookings ordered by creation time, and the total match count"""


class InMemoryBookingRepository(BookingRepository):
    """Stores deep copies, so callers never share state with the store."""

    def __init__(self):
        self._bookings: dict[UUID, Booking] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _detached(booking: Booking) -> Booking:
        stored = copy.deepcopy(booking)
        stored.clear_events()
        return stored

    def add(self, booking: Booking):
        with self._lock:
            if any(stored.hold_id == booking.hold_id for stored in self._bookings.values()):
                raise HoldAlreadyBooked(f"Hold {booking.hold_id} already has a booking", hold_id=booking.hold_id)
            if self._taken(booking.booking_number, booking.confirmation_code):
                raise ReferenceCollision(f"Reference {booking.booking_number} is already used")
            self._bookings[booking.id] = self._detached(booking)

    def save(self, booking: Booking):
        with self._lock:
            stored = self._bookings.get(booking.id)
            if stored is None:
                raise BookingNotFound(f"Booking {booking.id} does not exist", booking_id=booking.id)
            if stored.version != booking.version:
                raise ConcurrencyConflict(
                    f"Booking {booking.id} was modified concurrently",
                    booking_id=booking.id,
                )
            booking.version += 1
            self._bookings[booking.id] = self._detached(booking)

    def get(self, booking_id: UUID) -> Booking:
        with self._lock:
            stored = self._bookings.get(booking_id)
            if stored is None:
                raise BookingNotFound(f"Booking {booking_id} does not exist", booking_id=booking_id)
            return copy.deepcopy(stored)

    def find_by_reference(self, reference: str) -> Booking | None:
        reference = reference.strip().upper()
        with self._lock:
            for stored in self._bookings.values():
                if reference in (stored.booking_number.upper(), stored.confirmation_code.upper()):
                    return copy.deepcopy(stored)
        return None

    def find_by_hold(self, hold_id: UUID) -> Booking | None:
        with self._lock:
            for stored in self._bookings.values():
                if stored.hold_id == hold_id:
                    return copy.deepcopy(stored)
        return None

    def _taken(self, booking_number: str, confirmation_code: str) -> bool:
        return any(
            stored.booking_number == booking_number or stored.confirmation_code == confirmation_code
            for stored in self._bookings.values()
        )

    def reference_taken(self, booking_number: str, confirmation_code: str) -> bool:
        with self._lock:
            return self._taken(booking_number, confirmation_code)

    def pending_created_before(self, cutoff: datetime) -> list[Booking]:
        with self._lock:
            return [
                copy.deepcopy(stored)
                for stored in self._bookings.values()
                if stored.status is BookingStatus.PENDING and stored.created_at < cutoff
            ]

    def stats_for_item(self, item: ItemRef, statuses):
        count = 0
        totals: dict[str, Decimal] = {}
        with self._lock:
            for stored in self._bookings.values():
                if stored.item != item or stored.status not in statuses:
                    continue
                count += 1
                total = stored.pricing.total
                totals[total.currency] = totals.get(total.currency, Decimal('0')) + total.amount
        return count, totals

    def search(self, criteria: BookingCriteria, *, offset: int, limit: int):
        with self._lock:
            matched = [stored for stored in self._bookings.values() if criteria.matches(stored)]
        matched.sort(key=lambda stored: (stored.created_at, str(stored.id)), reverse=criteria.newest_first)
        return [copy.deepcopy(stored) for stored in matched[offset:offset + limit]], len(matched)


class DjangoBookingRepository(BookingRepository):

    def add(self, booking: Booking):
        from .models import Booking as BookingModel

        try:
            with transaction.atomic():
                row = BookingModel(id=booking.id, version=booking.version, **self._columns(booking))
                row.save(force_insert=True)
                self._write_history(row, booking, start=0)
        except IntegrityError as exc:
            message = str(exc).lower()
            if "hold_id" in message:
                raise HoldAlreadyBooked(
                    f"Hold {booking.hold_id} already has a booking", hold_id=booking.hold_id
                ) from exc
            if "booking_number" in message or "confirmation_code" in message:
                raise ReferenceCollision(f"Reference {booking.booking_number} is already used") from exc
            logger.error("booking.store.integrity_error", booking_id=str(booking.id), error=str(exc))
            raise StoreUnavailable("Booking storage rejected the write") from exc
        except DatabaseError as exc:
            logger.error("booking.store.unavailable", booking_id=str(booking.id), error=str(exc))
            raise StoreUnavailable("Booking storage is unavailable") from exc

    def save(self, booking: Booking):
        from .models import Booking as BookingModel
        from .models import BookingStatusHistory, Cancellation

        try:
            with transaction.atomic():
                columns = self._columns(booking)
                for immutable in ("booking_number", "confirmation_code", "created_at", "pricing"):
                    columns.pop(immutable)
                updated = BookingModel.objects.filter(pk=booking.id, version=booking.version).update(
                    version=F("version") + 1, **columns
                )
                if not updated:
                    if not BookingModel.objects.filter(pk=booking.id).exists():
                        raise BookingNotFound(f"Booking {booking.id} does not exist", booking_id=booking.id)
                    raise ConcurrencyConflict(
                        f"Booking {booking.id} was modified concurrently",
                        booking_id=booking.id,
                    )
                row = BookingModel(pk=booking.id)
                persisted = BookingStatusHistory.objects.filter(booking_id=booking.id).count()
                self._write_history(row, booking, start=persisted)
                if booking.cancellation is not None:
                    record = booking.cancellation
                    Cancellation.objects.update_or_create(
                        booking_id=booking.id,
                        defaults={
                            "cancelled_by": record.cancelled_by,
                            "cancelled_at": record.cancelled_at,
                            "reason": record.reason,
                            "refund_percentage": record.refund_percentage,
                            "refund_amount": record.refund_amount.amount,
                            "days_until_start": record.days_until_start,
                            "refund_status": record.refund_status.value,
                        },
                    )
        except DatabaseError as exc:
            logger.error("booking.store.unavailable", booking_id=str(booking.id), error=str(exc))
            raise StoreUnavailable("Booking storage is unavailable") from exc
        booking.version += 1

    def get(self, booking_id: UUID) -> Booking:
        from .models import Booking as BookingModel

        row = self._query(lambda qs: _loaded(qs).filter(pk=booking_id).first(), BookingModel)
        if row is None:
            raise BookingNotFound(f"Booking {booking_id} does not exist", booking_id=booking_id)
        return self._to_domain(row)

    def find_by_reference(self, reference: str) -> Booking | None:
        from .models import Booking as BookingModel

        reference = reference.strip()
        row = self._query(
            lambda qs: _loaded(qs).filter(
                Q(booking_number__iexact=reference) | Q(confirmation_code__iexact=reference)
            ).first(),
            BookingModel,
        )
        return self._to_domain(row) if row else None

    def find_by_hold(self, hold_id: UUID) -> Booking | None:
        from .models import Booking as BookingModel

        row = self._query(lambda qs: _loaded(qs).filter(hold_id=hold_id).first(), BookingModel)
        return self._to_domain(row) if row else None

    def reference_taken(self, booking_number: str, confirmation_code: str) -> bool:
        from .models import Booking as BookingModel

        return self._query(
            lambda qs: qs.filter(
                Q(booking_number=booking_number) | Q(confirmation_code=confirmation_code)
            ).exists(),
            BookingModel,
        )

    def pending_created_before(self, cutoff: datetime) -> list[Booking]:
        from .models import Booking as BookingModel

        rows = self._query(
            lambda qs: list(_loaded(qs).filter(status=BookingModel.Status.PENDING, created_at__lt=cutoff)),
            BookingModel,
        )
        return [self._to_domain(row) for row in rows]

    def stats_for_item(self, item: ItemRef, statuses):
        from django.db.models import Count, Sum  # type: ignore

        from .models import Booking as BookingModel

        rows = self._query(
            lambda qs: list(
                qs.filter(kind=item.kind.value, item_id=item.item_id, status__in=[s.value for s in statuses])
                .values("currency")
                .annotate(bookings=Count("id"), revenue=Sum("total_amount"))
            ),
            BookingModel,
        )
        count = sum(row["bookings"] for row in rows)
        return count, {row["currency"]: row["revenue"] or Decimal("0") for row in rows}

    def search(self, criteria: BookingCriteria, *, offset: int, limit: int):
        from .models import Booking as BookingModel

        if criteria.items is not None and not criteria.items:
            return [], 0

        def run(qs):
            if criteria.requester_id is not None:
                qs = qs.filter(requester_id=criteria.requester_id)
            if criteria.items is not None:
                owned = Q()
                for item in criteria.items:
                    owned |= Q(kind=item.kind.value, item_id=item.item_id)
                qs = qs.filter(owned)
            if criteria.statuses is not None:
                qs = qs.filter(status__in=[status.value for status in criteria.statuses])
            if criteria.kind is not None:
                qs = qs.filter(kind=criteria.kind.value)
            if criteria.starts_from is not None:
                qs = qs.filter(start_date__gte=criteria.starts_from)
            if criteria.starts_until is not None:
                qs = qs.filter(start_date__lte=criteria.starts_until)
            ordering = ("-created_at", "-id") if criteria.newest_first else ("created_at", "id")
            return list(_loaded(qs).order_by(*ordering)[offset:offset + limit]), qs.count()

        rows, total = self._query(run, BookingModel)
        return [self._to_domain(row) for row in rows], total

    # Mapping

    @staticmethod
    def _query(run, model):
        try:
            return run(model.objects.all())
        except DatabaseError as exc:
            logger.error("booking.store.unavailable", error=str(exc))
            raise StoreUnavailable("Booking storage is unavailable") from exc

    @staticmethod
    def _columns(booking: Booking) -> dict:
        return {
            "kind": booking.kind.value,
            "item_id": booking.item_id,
            "requester_id": booking.requester_id,
            "booking_number": booking.booking_number,
            "confirmation_code": booking.confirmation_code,
            "status": booking.status.value,
            "start_date": booking.dates.start_date,
            "end_date": booking.dates.end_date,
            "adults": booking.party.adults,
            "children": booking.party.children,
            "participants": [participant.to_dict() for participant in booking.party.participants],
            "slot_id": getattr(booking, "slot_id", None),
            "room_type_id": getattr(booking, "room_type_id", None),
            "rooms": getattr(booking, "rooms", 1),
            "extras": [{"service_id": extra.service_id, "quantity": extra.quantity} for extra in booking.extras],
            "special_requests": booking.special_requests,
            "pricing": booking.pricing.to_dict(),
            "total_amount": booking.pricing.total.amount,
            "currency": booking.pricing.currency,
            "cancellation_policy": booking.cancellation_policy.to_document(),
            "hold_id": booking.hold_id,
            "payment_due_at": booking.payment_due_at,
            "created_at": booking.created_at,
            "updated_at": booking.updated_at,
            "confirmed_at": booking.confirmed_at,
            "cancelled_at": booking.cancelled_at,
            "completed_at": booking.completed_at,
            "no_show_at": booking.no_show_at,
        }

    @staticmethod
    def _write_history(row, booking: Booking, start: int):
        from .models import BookingStatusHistory

        BookingStatusHistory.objects.bulk_create([
            BookingStatusHistory(
                booking=row,
                sequence=sequence,
                from_status=change.from_status.value if change.from_status else "",
                to_status=change.to_status.value,
                actor=change.actor,
                reason=change.reason,
                changed_at=change.changed_at,
            )
            for sequence, change in enumerate(booking.history)
            if sequence >= start
        ])

    @staticmethod
    def _to_domain(row) -> Booking:
        pricing = PricingBreakdown.from_dict(row.pricing)
        common = dict(
            id=row.id,
            item_id=row.item_id,
            requester_id=row.requester_id,
            dates=DateRange(row.start_date, row.end_date),
            party=PartyComposition(
                adults=row.adults,
                children=row.children,
                participants=tuple(Participant(p["name"], p.get("age")) for p in row.participants),
            ),
            extras=tuple(SelectedExtra(extra["service_id"], extra["quantity"]) for extra in row.extras),
            pricing=pricing,
            cancellation_policy=CancellationPolicy.from_document(row.cancellation_policy or None),
            hold_id=row.hold_id,
            booking_number=row.booking_number,
            confirmation_code=row.confirmation_code,
            special_requests=row.special_requests,
            payment_due_at=row.payment_due_at,
            status=BookingStatus(row.status),
            history=tuple(
                StatusChange(
                    BookingStatus(entry.from_status) if entry.from_status else None,
                    BookingStatus(entry.to_status),
                    entry.actor,
                    entry.changed_at,
                    entry.reason,
                )
                for entry in sorted(row.status_history.all(), key=lambda entry: entry.sequence)
            ),
            cancellation=None,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
            confirmed_at=row.confirmed_at,
            cancelled_at=row.cancelled_at,
            completed_at=row.completed_at,
            no_show_at=row.no_show_at,
        )
        # Reverse one-to-one raises an AttributeError subclass when missing
        cancellation = getattr(row, "cancellation", None)
        if cancellation is not None:
            common["cancellation"] = CancellationRecord(
                cancelled_by=cancellation.cancelled_by,
                cancelled_at=cancellation.cancelled_at,
                refund_percentage=cancellation.refund_percentage,
                refund_amount=Money(cancellation.refund_amount, pricing.currency),
                days_until_start=cancellation.days_until_start,
                reason=cancellation.reason,
                refund_status=RefundStatus(cancellation.refund_status),
            )

        if ItemKind(row.kind) is ItemKind.EXCURSION:
            return ExcursionBooking(slot_id=row.slot_id, **common)
        return LodgingBooking(room_type_id=row.room_type_id, rooms=row.rooms, **common)
