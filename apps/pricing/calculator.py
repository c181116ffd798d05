"""
Pricing Calculator

Pure functions turning (item, dates, party, extras) into a PricingBreakdown:

    gross    = unit price * party size              (excursion)
             = sum of nightly rates * rooms         (lodging)
    base     = gross - discounts
    fees     = platform fee (rate * base) + extras (unit price * quantity)
    tax      = tax rate * (base + fees)
    total    = base + fees + tax

Every component is rounded half-up to the currency's minor unit as it is
produced, so a breakdown always adds up exactly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Callable, Iterable, Mapping

from apps.catalog.domain import ExcursionItem, Listing, LodgingItem, SeasonalRate
from shared.domain.base import ValueObject
from shared.domain.exceptions import ImpossibleRequest, InvalidPolicy, ValidationError
from shared.domain.value_objects import HUNDRED, DateRange, Money, to_decimal

PLATFORM_FEE = 'platform_fee'


@dataclass(frozen=True)
class PricingPolicy(ValueObject):
    """Platform-wide rates, expressed as fractions (0.05 is 5%)"""
    platform_fee_rate: Decimal = Decimal('0.05')
    tax_rate: Decimal = Decimal('0.18')

    def __post_init__(self):
        for name in ('platform_fee_rate', 'tax_rate'):
            rate = to_decimal(getattr(self, name))
            if not Decimal('0') <= rate < Decimal('1'):
                raise InvalidPolicy(f"{name} must be a fraction in [0, 1), got {rate}")
            object.__setattr__(self, name, rate)


@dataclass(frozen=True)
class Adjustment(ValueObject):
    """One itemized discount or fee line"""
    name: str
    amount: Money
    percentage: Decimal | None = None
    quantity: int | None = None

    @property
    def kind(self) -> str:
        return 'percentage' if self.percentage is not None else 'fixed'

    def to_dict(self) -> dict:
        payload = {'name': self.name, 'kind': self.kind, 'amount': str(self.amount.amount)}
        if self.percentage is not None:
            payload['percentage'] = str(self.percentage)
        if self.quantity is not None:
            payload['quantity'] = self.quantity
        return payload


@dataclass(frozen=True)
class SelectedExtra(ValueObject):
    service_id: str
    quantity: int = 1

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int) or self.quantity < 1:
            raise ValidationError(
                f"Quantity for extra '{self.service_id}' must be a positive integer",
                field='extras',
            )


@dataclass(frozen=True, kw_only=True)
class PricingBreakdown(ValueObject):
    """Price snapshot locked onto a booking at creation time"""
    currency: str
    unit_price: Money
    quantity: int
    gross: Money
    discounts: tuple[Adjustment, ...]
    base: Money
    fees: tuple[Adjustment, ...]
    fees_total: Money
    tax_rate: Decimal
    tax: Money
    total: Money
    nights: int | None = None

    @property
    def discount_total(self) -> Money:
        return sum((line.amount for line in self.discounts), Money.zero(self.currency))

    def to_dict(self) -> dict:
        return {
            'currency': self.currency,
            'unit_price': str(self.unit_price.amount),
            'quantity': self.quantity,
            'nights': self.nights,
            'gross': str(self.gross.amount),
            'discounts': [line.to_dict() for line in self.discounts],
            'base': str(self.base.amount),
            'fees': [line.to_dict() for line in self.fees],
            'fees_total': str(self.fees_total.amount),
            'tax_rate': str(self.tax_rate),
            'tax': str(self.tax.amount),
            'total': str(self.total.amount),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> 'PricingBreakdown':
        currency = data['currency']

        def money(value) -> Money:
            return Money(Decimal(value), currency)

        def lines(raw) -> tuple[Adjustment, ...]:
            return tuple(
                Adjustment(
                    name=line['name'],
                    amount=money(line['amount']),
                    percentage=Decimal(line['percentage']) if 'percentage' in line else None,
                    quantity=line.get('quantity'),
                )
                for line in raw
            )

        return cls(
            currency=currency,
            unit_price=money(data['unit_price']),
            quantity=data['quantity'],
            nights=data.get('nights'),
            gross=money(data['gross']),
            discounts=lines(data['discounts']),
            base=money(data['base']),
            fees=lines(data['fees']),
            fees_total=money(data['fees_total']),
            tax_rate=Decimal(data['tax_rate']),
            tax=money(data['tax']),
            total=money(data['total']),
        )


# Seasonal-rate extension point: receives one night, its rate before any
# seasonal adjustment and the listing's declared seasonal rates.
SeasonalRateHook = Callable[[date, Money, tuple[SeasonalRate, ...]], Money]


def no_seasonal_adjustment(night: date, rate: Money, seasonal_rates: tuple[SeasonalRate, ...]) -> Money:
    return rate


def multiplier_seasonal_adjustment(night: date, rate: Money, seasonal_rates: tuple[SeasonalRate, ...]) -> Money:
    """Opt-in hook: apply the multiplier of the first seasonal rate covering the night"""
    for season in seasonal_rates:
        if season.applies_to(night):
            return rate * to_decimal(season.multiplier)
    return rate


def _extras_fees(item: Listing, extras: Iterable[SelectedExtra]) -> list[Adjustment]:
    lines = []
    for selected in extras:
        service = item.extra(selected.service_id)
        if service is None:
            raise ValidationError(f"Unknown extra service '{selected.service_id}'", field='extras')
        if service.unit_price.currency != item.currency:
            raise InvalidPolicy(f"Extra '{service.service_id}' is priced in {service.unit_price.currency}")
        lines.append(Adjustment(
            name=service.service_id,
            amount=service.unit_price * selected.quantity,
            quantity=selected.quantity,
        ))
    return lines


def _group_discount(item: ExcursionItem, party_size: int, gross: Money) -> list[Adjustment]:
    # First satisfied tier in listing order wins, even if a later tier is larger
    for discount in item.group_discounts:
        if party_size >= discount.min_guests:
            return [Adjustment(
                name=discount.name,
                amount=gross.percentage(discount.percentage),
                percentage=discount.percentage,
            )]
    return []


def _assemble(
    *,
    item: Listing,
    unit_price: Money,
    quantity: int,
    gross: Money,
    discounts: list[Adjustment],
    extras: Iterable[SelectedExtra],
    policy: PricingPolicy,
    nights: int | None = None,
) -> PricingBreakdown:
    currency = item.currency
    base = gross
    for line in discounts:
        base = base - line.amount

    platform_percentage = policy.platform_fee_rate * HUNDRED
    fees = [Adjustment(name=PLATFORM_FEE, amount=base.percentage(platform_percentage), percentage=platform_percentage)]
    fees.extend(_extras_fees(item, extras))
    fees_total = sum((line.amount for line in fees), Money.zero(currency))

    tax = (base + fees_total) * policy.tax_rate
    return PricingBreakdown(
        currency=currency,
        unit_price=unit_price,
        quantity=quantity,
        nights=nights,
        gross=gross,
        discounts=tuple(discounts),
        base=base,
        fees=tuple(fees),
        fees_total=fees_total,
        tax_rate=policy.tax_rate,
        tax=tax,
        total=base + fees_total + tax,
    )


def price_excursion(
    item: ExcursionItem,
    party_size: int,
    extras: Iterable[SelectedExtra] = (),
    *,
    policy: PricingPolicy = PricingPolicy(),
    slot_price: Money | None = None,
) -> PricingBreakdown:
    unit_price = slot_price or item.base_price
    if unit_price.currency != item.currency:
        raise InvalidPolicy(f"Slot price currency {unit_price.currency} differs from listing {item.currency}")
    gross = unit_price * party_size
    return _assemble(
        item=item,
        unit_price=unit_price,
        quantity=party_size,
        gross=gross,
        discounts=_group_discount(item, party_size, gross),
        extras=extras,
        policy=policy,
    )


def price_lodging(
    item: LodgingItem,
    dates: DateRange,
    extras: Iterable[SelectedExtra] = (),
    *,
    room_type_id=None,
    rooms: int = 1,
    policy: PricingPolicy = PricingPolicy(),
    nightly_prices: Mapping[date, Money | None] | None = None,
    seasonal_hook: SeasonalRateHook = no_seasonal_adjustment,
) -> PricingBreakdown:
    """
    Nightly rate precedence: the night's own price, then the room type's
    price, then the listing base price. The seasonal hook sees each
    resolved rate last.
    """
    room_type = item.room_type(room_type_id)
    if room_type is None:
        raise ValidationError(f"Unknown room type {room_type_id}", field='room_type_id')
    nightly_prices = nightly_prices or {}

    rates = []
    for night in dates.nights():
        rate = nightly_prices.get(night) or room_type.price_per_night or item.base_price
        rates.append(seasonal_hook(night, rate, item.seasonal_rates))
    per_room = sum(rates, Money.zero(item.currency))

    nights = len(dates)
    return _assemble(
        item=item,
        unit_price=rates[0] if len(set(rates)) == 1 else Money(per_room.amount / nights, item.currency),
        quantity=rooms,
        gross=per_room * rooms,
        discounts=[],
        extras=extras,
        policy=policy,
        nights=nights,
    )


def price(
    item: Listing,
    dates: DateRange,
    party_size: int,
    extras: Iterable[SelectedExtra] = (),
    *,
    policy: PricingPolicy = PricingPolicy(),
    room_type_id=None,
    rooms: int = 1,
    slot_price: Money | None = None,
    nightly_prices: Mapping[date, Money | None] | None = None,
    seasonal_hook: SeasonalRateHook = no_seasonal_adjustment,
) -> PricingBreakdown:
    """
    Price one booking request. Deterministic: identical inputs give an
    identical breakdown.
    """
    if isinstance(party_size, bool) or not isinstance(party_size, int) or party_size < 1:
        raise ValidationError(f"Party size must be a positive integer, got {party_size!r}", field='party_size')
    extras = tuple(extras)

    if isinstance(item, ExcursionItem):
        return price_excursion(item, party_size, extras, policy=policy, slot_price=slot_price)
    if isinstance(item, LodgingItem):
        room_type = item.room_type(room_type_id)
        if room_type is not None and party_size > room_type.max_guests * rooms:
            raise ImpossibleRequest(
                f"{party_size} guests exceed {rooms} x {room_type.name} (max {room_type.max_guests} each)",
                party_size=party_size,
            )
        return price_lodging(
            item,
            dates,
            extras,
            room_type_id=room_type_id,
            rooms=rooms,
            policy=policy,
            nightly_prices=nightly_prices,
            seasonal_hook=seasonal_hook,
        )
    raise InvalidPolicy(f"Cannot price listing of type {type(item).__name__}")
