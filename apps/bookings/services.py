"""Booking engine facade.

The four operations exposed to collaborators (create, transition, cancel,
query availability) plus reference lookup, paged booking listings and
the abandoned-hold sweep.
Inputs may be commands or plain dicts; plain dicts go through the DRF
serializers first.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Callable
from uuid import UUID

from apps.catalog.domain import ItemRef
from apps.catalog.repository import DjangoListingCatalog, InMemoryListingCatalog, ListingCatalog
from apps.inventory.django_store import DjangoInventoryStore
from apps.inventory.store import InMemoryInventoryStore, InventoryStore
from apps.pricing.calculator import no_seasonal_adjustment
from shared.application.message_bus import MessageBus
from shared.application.uow import DjangoUnitOfWork, InMemoryUnitOfWork
from shared.domain.base import utcnow
from shared.domain.exceptions import BookingNotFound

from .application.command_handlers import (
    DEFAULT_PAGE_SIZE,
    AvailabilityQuery,
    AvailabilityQueryHandler,
    BookingPage,
    CancelBookingCommand,
    CancelBookingHandler,
    CreateBookingCommand,
    CreateBookingHandler,
    ListBookingsHandler,
    ListBookingsQuery,
    ReleaseAbandonedHoldsHandler,
    TransitionBookingCommand,
    TransitionBookingHandler,
)
from .conf import EngineSettings, engine_settings
from .domain.entities import Booking, CancellationRecord
from .domain.references import ReferenceGenerator
from .domain.state_machine import BookingStatus
from .repositories import BookingRepository, DjangoBookingRepository, InMemoryBookingRepository


class BookingEngine:
    """Wires the handlers to one catalog, one inventory store and one booking repository."""

    def __init__(
        self,
        *,
        catalog: ListingCatalog,
        inventory: InventoryStore,
        bookings: BookingRepository,
        uow_factory: Callable,
        settings: EngineSettings,
        clock=utcnow,
        rng=None,
        seasonal_hook=no_seasonal_adjustment,
    ):
        self.catalog = catalog
        self.inventory = inventory
        self.bookings = bookings
        self.settings = settings
        self._clock = clock

        retry = dict(
            clock=clock,
            retry_attempts=settings.conflict_retry_attempts,
            retry_base_delay=settings.conflict_retry_base_delay,
        )
        self.references = ReferenceGenerator(
            bookings.reference_taken,
            max_attempts=settings.reference_max_attempts,
            clock=clock,
            rng=rng,
        )
        self._create = CreateBookingHandler(
            catalog=catalog,
            inventory=inventory,
            bookings=bookings,
            uow_factory=uow_factory,
            references=self.references,
            policy=settings.pricing_policy,
            seasonal_hook=seasonal_hook,
            payment_window=timedelta(minutes=settings.pending_hold_ttl_minutes),
            **retry,
        )
        self._transition = TransitionBookingHandler(
            inventory=inventory, bookings=bookings, uow_factory=uow_factory, **retry
        )
        self._cancel = CancelBookingHandler(
            inventory=inventory, bookings=bookings, uow_factory=uow_factory, **retry
        )
        self._availability = AvailabilityQueryHandler(catalog=catalog, inventory=inventory)
        self._listings = ListBookingsHandler(catalog=catalog, bookings=bookings)
        self._sweeper = ReleaseAbandonedHoldsHandler(
            bookings=bookings,
            cancel_handler=self._cancel,
            ttl=timedelta(minutes=settings.pending_hold_ttl_minutes),
            clock=clock,
        )

    def create(self, request) -> Booking:
        if not isinstance(request, CreateBookingCommand):
            from .serializers import parse_create_request

            request = parse_create_request(request)
        return self._create.handle(request)

    def transition(self, booking_id: UUID, target_status, actor: str, reason: str = "") -> Booking:
        return self._transition.handle(TransitionBookingCommand(
            booking_id=booking_id, target_status=target_status, actor=actor, reason=reason or ""
        ))

    def cancel(self, booking_id: UUID, actor: str, reason: str = "") -> tuple[Booking, CancellationRecord]:
        return self._cancel.handle(CancelBookingCommand(booking_id=booking_id, actor=actor, reason=reason or ""))

    def query_availability(self, item: ItemRef, start_date, end_date, party_size: int = 1, room_type_id=None):
        return self._availability.handle(AvailabilityQuery(
            item=item,
            start_date=start_date,
            end_date=end_date,
            party_size=party_size,
            room_type_id=room_type_id,
        ))

    def bookings_for_requester(
        self, requester_id: UUID, status=None, kind=None, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> BookingPage:
        """The requester's bookings, newest first"""
        return self._listings.handle(ListBookingsQuery(
            requester_id=requester_id, status=status, kind=kind, page=page, limit=limit
        ))

    def upcoming_bookings(self, requester_id: UUID, days: int = 30, limit: int = DEFAULT_PAGE_SIZE) -> BookingPage:
        """Confirmed or checked-in bookings starting between today and `days` from now"""
        today = self._clock().date()
        return self._listings.handle(ListBookingsQuery(
            requester_id=requester_id,
            status=(BookingStatus.CONFIRMED, BookingStatus.CHECKED_IN),
            starts_from=today,
            starts_until=today + timedelta(days=days),
            limit=limit,
        ))

    def bookings_for_owner(
        self, owner_id: UUID, status=None, kind=None, page: int = 1, limit: int = DEFAULT_PAGE_SIZE
    ) -> BookingPage:
        """Bookings made on any of the owner's listings, newest first"""
        return self._listings.handle(ListBookingsQuery(
            owner_id=owner_id, status=status, kind=kind, page=page, limit=limit
        ))

    def get(self, booking_id: UUID) -> Booking:
        return self.bookings.get(booking_id)

    def find_by_reference(self, reference: str) -> Booking:
        booking = self.bookings.find_by_reference(reference or "")
        if booking is None:
            raise BookingNotFound(f"No booking with reference '{reference}'", reference=reference)
        return booking

    def voucher(self, reference: str) -> dict:
        return self.find_by_reference(reference).voucher()

    def release_abandoned_holds(self) -> int:
        return self._sweeper.handle()


def build_default_engine(**overrides) -> BookingEngine:
    """Engine over the Django catalog, inventory and booking tables"""
    settings = engine_settings()
    return BookingEngine(
        catalog=overrides.pop("catalog", None) or DjangoListingCatalog(),
        inventory=overrides.pop("inventory", None) or DjangoInventoryStore(),
        bookings=overrides.pop("bookings", None) or DjangoBookingRepository(),
        uow_factory=overrides.pop("uow_factory", None) or DjangoUnitOfWork,
        settings=settings,
        **overrides,
    )


def build_in_memory_engine(
    *,
    catalog: InMemoryListingCatalog | None = None,
    inventory: InMemoryInventoryStore | None = None,
    bus: MessageBus | None = None,
    settings: EngineSettings | None = None,
    **kwargs,
) -> BookingEngine:
    settings = settings or EngineSettings.from_mapping()
    return BookingEngine(
        catalog=catalog or InMemoryListingCatalog(),
        inventory=inventory or InMemoryInventoryStore(lock_timeout=settings.cell_lock_timeout),
        bookings=InMemoryBookingRepository(),
        uow_factory=lambda: InMemoryUnitOfWork(bus),
        settings=settings,
        **kwargs,
    )


__all__ = [
    "BookingEngine",
    "build_default_engine",
    "build_in_memory_engine",
]
