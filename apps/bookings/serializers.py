"""Serializers for the booking engine's plain-data surface.

Input serializers turn request dicts into commands; output serializers
turn domain objects (bookings, breakdowns, cancellation records,
availability windows) into plain dicts.
"""

from __future__ import annotations

from rest_framework import serializers  # type: ignore

from apps.catalog.domain import ItemKind, ItemRef
from apps.pricing.calculator import SelectedExtra
from shared.domain.exceptions import ValidationError

from .application.command_handlers import AvailabilityQuery, CreateBookingCommand
from .domain.entities import Participant


def _validated(serializer: serializers.Serializer) -> dict:
    """Run DRF validation, reporting failures in the engine's taxonomy"""
    if serializer.is_valid():
        return serializer.validated_data
    errors = serializer.errors
    field = next(iter(errors), None)
    detail = errors[field] if field else "invalid request"
    message = detail[0] if isinstance(detail, list) and detail and isinstance(detail[0], str) else str(detail)
    raise ValidationError(str(message), field=None if field == "non_field_errors" else field, errors=errors)


class ParticipantSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=150)
    age = serializers.IntegerField(min_value=0, required=False, allow_null=True, default=None)


class ExtraSelectionSerializer(serializers.Serializer):
    service_id = serializers.CharField(max_length=50)
    quantity = serializers.IntegerField(min_value=1, default=1)


class ItemReferenceMixin(serializers.Serializer):
    item_kind = serializers.ChoiceField(choices=[kind.value for kind in ItemKind])
    item_id = serializers.UUIDField()

    @staticmethod
    def item_ref(attrs) -> ItemRef:
        return ItemRef(ItemKind(attrs["item_kind"]), attrs["item_id"])


class CreateBookingSerializer(ItemReferenceMixin):
    """Booking request from the requester."""

    requester_id = serializers.UUIDField()
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    adults = serializers.IntegerField(min_value=0, default=1)
    children = serializers.IntegerField(min_value=0, default=0)
    participants = ParticipantSerializer(many=True, required=False)
    room_type_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    rooms = serializers.IntegerField(min_value=1, default=1)
    extras = ExtraSelectionSerializer(many=True, required=False)
    special_requests = serializers.CharField(required=False, allow_blank=True, default="")
    request_id = serializers.UUIDField(required=False)

    def validate(self, attrs):  # type: ignore
        if attrs["end_date"] <= attrs["start_date"]:
            raise serializers.ValidationError({"end_date": "End date must be after start date."})
        if attrs["adults"] + attrs["children"] < 1:
            raise serializers.ValidationError({"adults": "At least one guest is required."})
        return attrs

    def to_command(self) -> CreateBookingCommand:
        data = self.validated_data
        optional = {"request_id": data["request_id"]} if data.get("request_id") else {}
        return CreateBookingCommand(
            item=self.item_ref(data),
            requester_id=data["requester_id"],
            start_date=data["start_date"],
            end_date=data["end_date"],
            adults=data["adults"],
            children=data["children"],
            participants=tuple(
                Participant(participant["name"], participant.get("age"))
                for participant in data.get("participants", [])
            ),
            room_type_id=data.get("room_type_id"),
            rooms=data["rooms"],
            extras=tuple(
                SelectedExtra(extra["service_id"], extra["quantity"]) for extra in data.get("extras", [])
            ),
            special_requests=data["special_requests"],
            **optional,
        )


class TransitionRequestSerializer(serializers.Serializer):
    target_status = serializers.CharField(max_length=32)
    actor = serializers.CharField(max_length=100)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class CancelRequestSerializer(serializers.Serializer):
    actor = serializers.CharField(max_length=100)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default="")


class AvailabilityQuerySerializer(ItemReferenceMixin):
    start_date = serializers.DateField()
    end_date = serializers.DateField()
    party_size = serializers.IntegerField(min_value=1, default=1)
    room_type_id = serializers.UUIDField(required=False, allow_null=True, default=None)

    def to_query(self) -> AvailabilityQuery:
        data = self.validated_data
        return AvailabilityQuery(
            item=self.item_ref(data),
            start_date=data["start_date"],
            end_date=data["end_date"],
            party_size=data["party_size"],
            room_type_id=data.get("room_type_id"),
        )


def parse_create_request(data) -> CreateBookingCommand:
    serializer = CreateBookingSerializer(data=data)
    _validated(serializer)
    return serializer.to_command()


def parse_transition_request(data) -> dict:
    return dict(_validated(TransitionRequestSerializer(data=data)))


def parse_cancel_request(data) -> dict:
    return dict(_validated(CancelRequestSerializer(data=data)))


def parse_availability_query(data) -> AvailabilityQuery:
    serializer = AvailabilityQuerySerializer(data=data)
    _validated(serializer)
    return serializer.to_query()


# ===== Output =====


class AdjustmentSerializer(serializers.Serializer):
    name = serializers.CharField()
    kind = serializers.CharField()
    percentage = serializers.CharField(allow_null=True)
    amount = serializers.CharField(source="amount.amount")
    quantity = serializers.IntegerField(allow_null=True)


class PricingBreakdownSerializer(serializers.Serializer):
    currency = serializers.CharField()
    unit_price = serializers.CharField(source="unit_price.amount")
    quantity = serializers.IntegerField()
    nights = serializers.IntegerField(allow_null=True)
    gross = serializers.CharField(source="gross.amount")
    discounts = AdjustmentSerializer(many=True)
    base = serializers.CharField(source="base.amount")
    fees = AdjustmentSerializer(many=True)
    fees_total = serializers.CharField(source="fees_total.amount")
    tax_rate = serializers.CharField()
    tax = serializers.CharField(source="tax.amount")
    total = serializers.CharField(source="total.amount")


class StatusChangeSerializer(serializers.Serializer):
    from_status = serializers.CharField(source="from_status.value", allow_null=True)
    to_status = serializers.CharField(source="to_status.value")
    actor = serializers.CharField()
    reason = serializers.CharField()
    changed_at = serializers.DateTimeField()


class CancellationRecordSerializer(serializers.Serializer):
    cancelled_by = serializers.CharField()
    cancelled_at = serializers.DateTimeField()
    reason = serializers.CharField()
    refund_percentage = serializers.CharField()
    refund_amount = serializers.CharField(source="refund_amount.amount")
    currency = serializers.CharField(source="refund_amount.currency")
    days_until_start = serializers.IntegerField()
    refund_status = serializers.CharField(source="refund_status.value")


class BookingSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    kind = serializers.CharField(source="kind.value")
    item_id = serializers.UUIDField()
    requester_id = serializers.UUIDField()
    booking_number = serializers.CharField()
    confirmation_code = serializers.CharField()
    status = serializers.CharField(source="status.value")
    start_date = serializers.DateField(source="dates.start_date")
    end_date = serializers.DateField(source="dates.end_date")
    adults = serializers.IntegerField(source="party.adults")
    children = serializers.IntegerField(source="party.children")
    participants = ParticipantSerializer(source="party.participants", many=True)
    slot_id = serializers.SerializerMethodField()
    room_type_id = serializers.SerializerMethodField()
    rooms = serializers.SerializerMethodField()
    extras = ExtraSelectionSerializer(many=True)
    special_requests = serializers.CharField()
    pricing = PricingBreakdownSerializer()
    status_history = StatusChangeSerializer(source="history", many=True)
    cancellation = CancellationRecordSerializer(allow_null=True)
    payment_due_at = serializers.DateTimeField(allow_null=True)
    payment = serializers.SerializerMethodField()
    created_at = serializers.DateTimeField()
    confirmed_at = serializers.DateTimeField(allow_null=True)
    cancelled_at = serializers.DateTimeField(allow_null=True)
    completed_at = serializers.DateTimeField(allow_null=True)
    no_show_at = serializers.DateTimeField(allow_null=True)

    def get_slot_id(self, booking):
        slot_id = getattr(booking, "slot_id", None)
        return str(slot_id) if slot_id else None

    def get_room_type_id(self, booking):
        room_type_id = getattr(booking, "room_type_id", None)
        return str(room_type_id) if room_type_id else None

    def get_rooms(self, booking):
        return getattr(booking, "rooms", None)

    def get_payment(self, booking):
        return booking.payment_instructions()


class AvailabilityWindowSerializer(serializers.Serializer):
    item_kind = serializers.CharField(source="item.kind.value")
    item_id = serializers.UUIDField(source="item.item_id")
    start_date = serializers.DateField(source="dates.start_date")
    end_date = serializers.DateField(source="dates.end_date")
    remaining = serializers.IntegerField()
    slot_id = serializers.UUIDField(allow_null=True)
    room_type_id = serializers.UUIDField(allow_null=True)
    price = serializers.CharField(source="price.amount", allow_null=True)
