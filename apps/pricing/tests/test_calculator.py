from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from apps.catalog.domain import (
    ExcursionItem,
    ExtraService,
    GroupDiscount,
    ListingStatus,
    LodgingItem,
    RoomType,
    SeasonalRate,
)
from apps.pricing.calculator import (
    PricingBreakdown,
    PricingPolicy,
    SelectedExtra,
    multiplier_seasonal_adjustment,
    price,
)
from shared.domain.exceptions import ImpossibleRequest, InvalidPolicy, ValidationError
from shared.domain.value_objects import DateRange, Money

STAY = DateRange(date(2024, 12, 1), date(2024, 12, 3))
TRIP = DateRange(date(2024, 6, 1), date(2024, 6, 4))


def usd(amount: str) -> Money:
    return Money(Decimal(amount), "USD")


def make_excursion(**overrides) -> ExcursionItem:
    values = dict(
        item_id=uuid4(),
        title="Gorilla trek",
        owner_id=uuid4(),
        status=ListingStatus.PUBLISHED,
        base_price=usd("100"),
        group_discounts=(GroupDiscount(5, Decimal("10")),),
        extras=(ExtraService("transfer", "Airport transfer", usd("40")),),
    )
    values.update(overrides)
    return ExcursionItem(**values)


def make_lodging(**overrides) -> LodgingItem:
    room_type_id = uuid4()
    values = dict(
        item_id=uuid4(),
        title="Lake lodge",
        owner_id=uuid4(),
        status=ListingStatus.PUBLISHED,
        base_price=usd("250"),
        room_types=(RoomType(room_type_id, "Double", max_guests=2),),
    )
    values.update(overrides)
    return LodgingItem(**values)


def test_group_discount_breakdown():
    breakdown = price(make_excursion(), TRIP, 5)

    assert breakdown.gross == usd("500")
    assert breakdown.discount_total == usd("50")
    assert breakdown.base == usd("450")
    assert breakdown.fees_total == usd("22.50")
    assert breakdown.tax == usd("85.05")
    assert breakdown.total == usd("557.55")


def test_two_night_lodging_breakdown():
    breakdown = price(make_lodging(), STAY, 2)

    assert breakdown.nights == 2
    assert breakdown.base == usd("500")
    assert breakdown.fees_total == usd("25")
    assert breakdown.tax == usd("94.50")
    assert breakdown.total == usd("619.50")


def test_components_add_up():
    breakdown = price(make_excursion(), TRIP, 6, (SelectedExtra("transfer", 2),))

    assert breakdown.base + breakdown.fees_total + breakdown.tax == breakdown.total
    assert [line.name for line in breakdown.fees] == ["platform_fee", "transfer"]
    assert breakdown.fees[1].amount == usd("80")


def test_pricing_is_deterministic():
    item = make_excursion()
    extras = (SelectedExtra("transfer"),)

    assert price(item, TRIP, 7, extras) == price(item, TRIP, 7, extras)


def test_first_satisfied_tier_wins_in_listing_order():
    item = make_excursion(group_discounts=(
        GroupDiscount(3, Decimal("5"), "small group"),
        GroupDiscount(6, Decimal("20"), "large group"),
    ))

    breakdown = price(item, TRIP, 8)

    assert [line.name for line in breakdown.discounts] == ["small group"]
    assert breakdown.discount_total == usd("40")


def test_no_discount_below_threshold():
    assert price(make_excursion(), TRIP, 4).discounts == ()


def test_slot_price_overrides_base_price():
    breakdown = price(make_excursion(group_discounts=()), TRIP, 2, slot_price=usd("150"))

    assert breakdown.unit_price == usd("150")
    assert breakdown.gross == usd("300")


def test_nightly_rate_precedence():
    room = RoomType(uuid4(), "Suite", max_guests=3, price_per_night=usd("300"))
    item = make_lodging(room_types=(room,))

    breakdown = price(
        item,
        STAY,
        2,
        room_type_id=room.room_type_id,
        rooms=2,
        nightly_prices={date(2024, 12, 1): usd("400"), date(2024, 12, 2): None},
    )

    assert breakdown.gross == usd("1400")
    assert breakdown.unit_price == usd("350")


def test_seasonal_hook_is_opt_in():
    item = make_lodging(seasonal_rates=(
        SeasonalRate("peak", date(2024, 12, 1), date(2024, 12, 31), Decimal("1.5")),
    ))

    assert price(item, STAY, 2).base == usd("500")
    assert price(item, STAY, 2, seasonal_hook=multiplier_seasonal_adjustment).base == usd("750")


def test_too_many_guests_for_rooms_is_impossible():
    with pytest.raises(ImpossibleRequest):
        price(make_lodging(), STAY, 3, rooms=1)


def test_unknown_extra_is_rejected():
    with pytest.raises(ValidationError):
        price(make_excursion(), TRIP, 2, (SelectedExtra("helicopter"),))


def test_policy_rates_are_validated():
    with pytest.raises(InvalidPolicy):
        PricingPolicy(platform_fee_rate=Decimal("1.5"))


def test_ugx_has_no_minor_unit():
    item = make_excursion(base_price=Money(Decimal("150000"), "UGX"), group_discounts=(), extras=())

    breakdown = price(item, TRIP, 1)

    assert breakdown.fees_total == Money(Decimal("7500"), "UGX")
    assert breakdown.tax == Money(Decimal("28350"), "UGX")
    assert breakdown.total.amount == Decimal("185850")


def test_breakdown_survives_plain_dict():
    breakdown = price(make_excursion(), TRIP, 5, (SelectedExtra("transfer"),))

    assert PricingBreakdown.from_dict(breakdown.to_dict()) == breakdown
