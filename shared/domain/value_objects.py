"""
Common Value Objects

Value objects used across multiple domains:
- Money: Represents monetary amounts with currency
- DateRange: Represents a range of dates (start inclusive, end exclusive)
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterator

from shared.domain.base import ValueObject

# Minor-unit exponent per supported currency (UGX has no minor unit in circulation)
CURRENCY_EXPONENTS = {
    'USD': 2,
    'EUR': 2,
    'GBP': 2,
    'UGX': 0,
}

HUNDRED = Decimal('100')


def quantize_amount(amount: Decimal, currency: str) -> Decimal:
    """Round half-up to the currency's minor unit"""
    exponent = CURRENCY_EXPONENTS[currency]
    return amount.quantize(Decimal(1).scaleb(-exponent), rounding=ROUND_HALF_UP)


def to_decimal(value) -> Decimal:
    """Convert a number or numeric string to Decimal without going through binary floats"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


@dataclass(frozen=True)
class Money(ValueObject):
    """
    Money value object

    Represents a monetary amount with currency.
    The amount is always a Decimal held at the currency's minor unit, so
    arithmetic never drifts the way binary floats do.
    """
    amount: Decimal
    currency: str = 'USD'

    def __post_init__(self):
        if not self.currency:
            raise ValueError("Currency is required")
        if self.currency not in CURRENCY_EXPONENTS:
            raise ValueError(f"Unsupported currency: {self.currency}")
        amount = quantize_amount(to_decimal(self.amount), self.currency)
        if amount < 0:
            raise ValueError("Amount cannot be negative")
        object.__setattr__(self, 'amount', amount)

    @classmethod
    def zero(cls, currency: str = 'USD') -> 'Money':
        return cls(Decimal('0'), currency)

    def _check_currency(self, other: 'Money', operation: str):
        if not isinstance(other, Money):
            raise TypeError(f"Can only {operation} Money and Money")
        if self.currency != other.currency:
            raise ValueError(
                f"Cannot {operation} different currencies: {self.currency} and {other.currency}"
            )

    def __add__(self, other: 'Money') -> 'Money':
        """Add two money objects"""
        self._check_currency(other, 'add')
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: 'Money') -> 'Money':
        """Subtract two money objects"""
        self._check_currency(other, 'subtract')
        return Money(self.amount - other.amount, self.currency)

    def __mul__(self, factor) -> 'Money':
        """Multiply money by a factor, rounding half-up to the minor unit"""
        if isinstance(factor, bool) or not isinstance(factor, (int, float, Decimal)):
            raise TypeError("Can only multiply Money by number")
        return Money(self.amount * to_decimal(factor), self.currency)

    __rmul__ = __mul__

    def percentage(self, percent) -> 'Money':
        """Return `percent` percent of this amount"""
        return self * (to_decimal(percent) / HUNDRED)

    def __lt__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount < other.amount

    def __le__(self, other: 'Money') -> bool:
        self._check_currency(other, 'compare')
        return self.amount <= other.amount

    @property
    def minor_units(self) -> int:
        """Amount expressed as an integer count of minor units"""
        return int(self.amount.scaleb(CURRENCY_EXPONENTS[self.currency]))

    def to_dict(self) -> dict:
        return {'amount': str(self.amount), 'currency': self.currency}

    def __str__(self):
        return f"{self.amount:,} {self.currency}"

    def __repr__(self):
        return f"Money({self.amount}, '{self.currency}')"


@dataclass(frozen=True)
class DateRange(ValueObject):
    """
    Date range value object

    Represents a range from start_date (inclusive) to end_date (exclusive).
    Used for booking periods, departure slots and availability windows.
    """
    start_date: date
    end_date: date

    def __post_init__(self):
        if self.start_date >= self.end_date:
            raise ValueError(f"Start date ({self.start_date}) must be before end date ({self.end_date})")

    def overlaps_with(self, other: 'DateRange') -> bool:
        """
        Check if this range overlaps with another

        Two ranges overlap if they share any dates.
        Note: end_date is exclusive, so adjacent ranges don't overlap.

        Examples:
            - DateRange(25, 28) overlaps with DateRange(27, 30) -> True
            - DateRange(25, 28) overlaps with DateRange(28, 31) -> False (adjacent)
        """
        if not isinstance(other, DateRange):
            raise TypeError("Can only check overlap with another DateRange")

        # Overlap formula: start1 < end2 AND end1 > start2
        return (self.start_date < other.end_date and
                self.end_date > other.start_date)

    def covers(self, other: 'DateRange') -> bool:
        """Check if `other` lies entirely within this range"""
        return self.start_date <= other.start_date and other.end_date <= self.end_date

    def contains(self, check_date: date) -> bool:
        """
        Check if a date is within this range

        Note: start_date is inclusive, end_date is exclusive
        """
        return self.start_date <= check_date < self.end_date

    def nights(self) -> Iterator[date]:
        """Iterate every night (calendar date) in [start_date, end_date)"""
        current = self.start_date
        while current < self.end_date:
            yield current
            current += timedelta(days=1)

    def __len__(self) -> int:
        """
        Return the number of days (nights) in this range

        This is the number of nights for a lodging booking.
        """
        return (self.end_date - self.start_date).days

    def to_dict(self) -> dict:
        return {'start_date': self.start_date.isoformat(), 'end_date': self.end_date.isoformat()}

    def __str__(self):
        return f"{self.start_date.strftime('%d.%m.%Y')} - {self.end_date.strftime('%d.%m.%Y')}"

    def __repr__(self):
        return f"DateRange({self.start_date}, {self.end_date})"
