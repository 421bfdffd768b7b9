from __future__ import annotations

import pytest
from hypothesis import given
from hypothesis import strategies as st

from flowdesk.bridge.breaker import CircuitBreaker

categories = st.sampled_from(["epics", "tasks", "show", "start", "status"])


@pytest.mark.unit
class TestCircuitBreaker:
    def test_opens_on_third_consecutive_failure(self) -> None:
        breaker = CircuitBreaker()

        assert [breaker.record_failure("epics") for _ in range(3)] == [False, False, True]
        assert breaker.is_open("epics")

    def test_reset_closes_the_category(self) -> None:
        breaker = CircuitBreaker()
        for _ in range(3):
            breaker.record_failure("epics")

        breaker.reset("epics")

        assert not breaker.is_open("epics")
        assert breaker.failure_count("epics") == 0

    def test_categories_are_independent(self) -> None:
        breaker = CircuitBreaker()
        for _ in range(3):
            breaker.record_failure("tasks")

        assert breaker.is_open("tasks")
        assert not breaker.is_open("epics")
        assert breaker.snapshot() == {"tasks": 3}

    def test_reset_all(self) -> None:
        breaker = CircuitBreaker(threshold=1)
        breaker.record_failure("a")
        breaker.record_failure("b")

        breaker.reset_all()

        assert breaker.snapshot() == {}

    @pytest.mark.parametrize("threshold", [0, -1, True, 2.5])
    def test_rejects_invalid_threshold(self, threshold: object) -> None:
        with pytest.raises(ValueError):
            CircuitBreaker(threshold=threshold)  # type: ignore[arg-type]

    @given(
        threshold=st.integers(min_value=1, max_value=6),
        events=st.lists(st.tuples(categories, st.booleans()), max_size=40),
    )
    def test_open_iff_trailing_failures_reach_threshold(
        self, threshold: int, events: list[tuple[str, bool]]
    ) -> None:
        breaker = CircuitBreaker(threshold=threshold)
        streaks: dict[str, int] = {}

        for category, failed in events:
            if failed:
                streaks[category] = streaks.get(category, 0) + 1
                assert breaker.record_failure(category) == (streaks[category] >= threshold)
            else:
                streaks[category] = 0
                breaker.reset(category)

        for category in {category for category, _ in events}:
            assert breaker.failure_count(category) == streaks[category]
            assert breaker.is_open(category) == (streaks[category] >= threshold)
