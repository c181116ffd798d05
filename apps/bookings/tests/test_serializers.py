from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from apps.bookings.serializers import (
    AvailabilityWindowSerializer,
    BookingSerializer,
    parse_availability_query,
    parse_cancel_request,
    parse_create_request,
)
from apps.bookings.services import build_in_memory_engine
from apps.catalog.domain import ExcursionItem, ItemKind, ListingStatus
from apps.catalog.repository import InMemoryListingCatalog
from apps.inventory.domain import SlotCapacity
from apps.inventory.store import InMemoryInventoryStore
from shared.application.message_bus import MessageBus
from shared.domain.exceptions import ValidationError
from shared.domain.value_objects import DateRange, Money

TRIP = DateRange(date(2030, 5, 10), date(2030, 5, 12))


def create_payload(**overrides) -> dict:
    payload = {
        "item_kind": "excursion",
        "item_id": str(uuid4()),
        "requester_id": str(uuid4()),
        "start_date": "2030-05-10",
        "end_date": "2030-05-12",
        "adults": 2,
    }
    payload.update(overrides)
    return payload


def test_create_request_becomes_command():
    request_id = uuid4()

    command = parse_create_request(create_payload(
        children=1,
        extras=[{"service_id": "lunch"}],
        request_id=str(request_id),
    ))

    assert command.item.kind is ItemKind.EXCURSION
    assert command.start_date == date(2030, 5, 10)
    assert command.adults + command.children == 3
    assert command.extras[0].quantity == 1
    assert command.request_id == request_id


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"end_date": "2030-05-10"}, "end_date"),
        ({"adults": 0}, "adults"),
        ({"item_kind": "cruise"}, "item_kind"),
        ({"start_date": "tomorrow"}, "start_date"),
        ({"rooms": 0}, "rooms"),
    ],
)
def test_malformed_create_requests(overrides, field):
    with pytest.raises(ValidationError) as excinfo:
        parse_create_request(create_payload(**overrides))

    assert excinfo.value.field == field


def test_cancel_request_requires_actor():
    assert parse_cancel_request({"actor": "support"}) == {"actor": "support", "reason": ""}
    with pytest.raises(ValidationError):
        parse_cancel_request({})


def test_availability_query_defaults_party_size():
    query = parse_availability_query({
        "item_kind": "lodging",
        "item_id": str(uuid4()),
        "start_date": "2030-05-10",
        "end_date": "2030-05-12",
    })

    assert query.party_size == 1
    assert query.room_type_id is None


def test_booking_and_window_render_to_plain_data():
    excursion = ExcursionItem(
        item_id=uuid4(),
        title="Crater lakes",
        owner_id=uuid4(),
        status=ListingStatus.PUBLISHED,
        base_price=Money(Decimal("80"), "USD"),
    )
    inventory = InMemoryInventoryStore()
    slot = inventory.add_slot(SlotCapacity(excursion.item_id, TRIP, total=4))
    engine = build_in_memory_engine(
        catalog=InMemoryListingCatalog([excursion]),
        inventory=inventory,
        bus=MessageBus(),
        clock=lambda: datetime(2030, 5, 1, tzinfo=timezone.utc),
    )
    booking = engine.create(create_payload(item_id=str(excursion.item_id)))

    data = BookingSerializer(booking).data

    assert data["kind"] == "excursion"
    assert data["status"] == "pending"
    assert data["slot_id"] == str(slot.slot_id)
    assert data["rooms"] is None
    assert data["pricing"]["total"] == "198.24"
    assert data["status_history"][0]["from_status"] is None
    assert data["cancellation"] is None
    assert data["payment"] == {"amount": "198.24", "currency": "USD", "due_at": "2030-05-02T00:00:00+00:00"}
    assert data["payment_due_at"].startswith("2030-05-02T00:00:00")

    window = engine.query_availability(excursion.ref, TRIP.start_date, TRIP.end_date)[0]
    assert AvailabilityWindowSerializer(window).data["remaining"] == 2
