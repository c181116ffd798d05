"""Bounded retry with exponential backoff for lost capacity races."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, TypeVar

from shared.domain.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)

T = TypeVar("T")


def retry_on_conflict(
    operation: Callable[[], T],
    *,
    attempts: int = 3,
    base_delay: float = 0.05,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `operation`, retrying only on ConcurrencyConflict.

    Delay doubles on every attempt with up to 50% jitter. The last
    conflict is re-raised once the budget is spent; every other error
    propagates immediately.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except ConcurrencyConflict:
            if attempt == attempts:
                logger.warning("Concurrency conflict persisted after %s attempts", attempts)
                raise
            delay = base_delay * (2 ** (attempt - 1))
            delay += random.uniform(0, delay / 2)
            logger.info("Concurrency conflict on attempt %s/%s, retrying in %.3fs", attempt, attempts, delay)
            sleep(delay)
    raise AssertionError("unreachable")
