from datetime import date
from decimal import Decimal

import pytest

from shared.domain.exceptions import InsufficientCapacity, StoreUnavailable, ValidationError
from shared.domain.value_objects import DateRange, Money


def test_money_rounds_half_up_to_minor_unit():
    assert Money(Decimal("10.005"), "USD").amount == Decimal("10.01")
    assert Money(Decimal("10.004"), "USD").amount == Decimal("10.00")
    assert Money(Decimal("1500.5"), "UGX").amount == Decimal("1501")


def test_money_from_float_does_not_drift():
    assert Money(0.1, "USD") + Money(0.2, "USD") == Money(Decimal("0.30"), "USD")


def test_money_rejects_mixed_currencies():
    with pytest.raises(ValueError):
        Money(Decimal("1"), "USD") + Money(Decimal("1"), "EUR")


def test_money_rejects_negative_and_unknown_currency():
    with pytest.raises(ValueError):
        Money(Decimal("-1"), "USD")
    with pytest.raises(ValueError):
        Money(Decimal("1"), "KZT")


def test_money_percentage():
    assert Money(Decimal("450"), "USD").percentage(Decimal("5")) == Money(Decimal("22.50"), "USD")


def test_date_range_is_end_exclusive():
    stay = DateRange(date(2024, 12, 1), date(2024, 12, 3))

    assert len(stay) == 2
    assert list(stay.nights()) == [date(2024, 12, 1), date(2024, 12, 2)]
    assert stay.contains(date(2024, 12, 1))
    assert not stay.contains(date(2024, 12, 3))


def test_adjacent_ranges_do_not_overlap():
    first = DateRange(date(2024, 12, 25), date(2024, 12, 28))

    assert first.overlaps_with(DateRange(date(2024, 12, 27), date(2024, 12, 30)))
    assert not first.overlaps_with(DateRange(date(2024, 12, 28), date(2024, 12, 31)))


def test_covers():
    slot = DateRange(date(2024, 6, 1), date(2024, 6, 5))

    assert slot.covers(DateRange(date(2024, 6, 1), date(2024, 6, 5)))
    assert slot.covers(DateRange(date(2024, 6, 2), date(2024, 6, 4)))
    assert not slot.covers(DateRange(date(2024, 5, 31), date(2024, 6, 4)))


def test_date_range_rejects_empty_range():
    with pytest.raises(ValueError):
        DateRange(date(2024, 6, 1), date(2024, 6, 1))


def test_errors_render_actionable_payload():
    error = InsufficientCapacity("sold out", night=date(2024, 12, 2))
    payload = error.to_dict()

    assert payload["code"] == "insufficient_capacity"
    assert payload["night"] == "2024-12-02"
    assert payload["retryable"] is False
    assert ValidationError("bad", field="rooms").to_dict()["field"] == "rooms"
    assert StoreUnavailable("down").retryable is True
