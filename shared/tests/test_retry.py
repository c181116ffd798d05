import pytest

from shared.application.retry import retry_on_conflict
from shared.domain.exceptions import ConcurrencyConflict, InsufficientCapacity


def test_retries_conflict_until_success():
    calls = []
    delays = []

    def operation():
        calls.append(1)
        if len(calls) < 3:
            raise ConcurrencyConflict("lost race")
        return "held"

    assert retry_on_conflict(operation, attempts=3, base_delay=0.01, sleep=delays.append) == "held"
    assert len(calls) == 3
    assert len(delays) == 2
    assert delays[1] >= 0.02


def test_gives_up_after_budget():
    def operation():
        raise ConcurrencyConflict("lost race")

    with pytest.raises(ConcurrencyConflict):
        retry_on_conflict(operation, attempts=2, base_delay=0, sleep=lambda _: None)


def test_business_rejections_are_not_retried():
    calls = []

    def operation():
        calls.append(1)
        raise InsufficientCapacity("sold out")

    with pytest.raises(InsufficientCapacity):
        retry_on_conflict(operation, attempts=5, sleep=lambda _: None)
    assert len(calls) == 1
