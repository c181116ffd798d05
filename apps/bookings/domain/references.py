"""
Booking reference generation

booking_number:    BK + YYMMDD of creation + 4 random digits (BK2412010427)
confirmation_code: 6 random characters from A-Z and 0-9 (K7Q2ZD)

Both are checked against persisted bookings before being handed out.
"""

from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from shared.domain.base import ValueObject, utcnow
from shared.domain.exceptions import ReferenceCollision

CODE_ALPHABET = string.ascii_uppercase + string.digits
CODE_LENGTH = 6
NUMBER_SUFFIX_DIGITS = 4


@dataclass(frozen=True)
class BookingReferences(ValueObject):
    booking_number: str
    confirmation_code: str


class ReferenceGenerator:
    """
    Args:
        is_taken: returns True when either reference is already used
        max_attempts: candidates tried before giving up
        clock: source of the creation date in the booking number
        rng: anything with randrange() and choice(); a CSPRNG by default
    """

    def __init__(
        self,
        is_taken: Callable[[str, str], bool],
        *,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utcnow,
        rng=None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._is_taken = is_taken
        self.max_attempts = max_attempts
        self._clock = clock
        self._rng = rng or secrets.SystemRandom()

    def booking_number(self) -> str:
        suffix = self._rng.randrange(10 ** NUMBER_SUFFIX_DIGITS)
        return f"BK{self._clock():%y%m%d}{suffix:0{NUMBER_SUFFIX_DIGITS}d}"

    def confirmation_code(self) -> str:
        return ''.join(self._rng.choice(CODE_ALPHABET) for _ in range(CODE_LENGTH))

    def assign(self) -> BookingReferences:
        for _ in range(self.max_attempts):
            candidate = BookingReferences(self.booking_number(), self.confirmation_code())
            if not self._is_taken(candidate.booking_number, candidate.confirmation_code):
                return candidate
        raise ReferenceCollision(
            f"No unique booking reference after {self.max_attempts} attempts",
            attempts=self.max_attempts,
        )
