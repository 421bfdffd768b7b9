"""Per-category consecutive failure counter that gates automatic retries."""

from __future__ import annotations

import logging

from flowdesk.constants import DEFAULT_BREAKER_THRESHOLD

logger = logging.getLogger(__name__)


class CircuitBreaker:
    """Counts consecutive failures per command category.

    A category is open once its count reaches ``threshold``. The breaker only
    answers questions; callers decide that an open category suppresses
    automatic retries while a manual retry still runs.
    """

    def __init__(self, *, threshold: int = DEFAULT_BREAKER_THRESHOLD) -> None:
        if isinstance(threshold, bool) or not isinstance(threshold, int):
            raise ValueError(f"threshold must be an integer, got {type(threshold).__name__}")
        if threshold <= 0:
            raise ValueError("threshold must be > 0")
        self._threshold = threshold
        self._failures: dict[str, int] = {}

    @property
    def threshold(self) -> int:
        return self._threshold

    def record_failure(self, category: str) -> bool:
        """Increment the count for ``category``; return whether it is now open."""

        count = self._failures.get(category, 0) + 1
        self._failures[category] = count
        opened = count >= self._threshold
        if count == self._threshold:
            logger.warning(
                "circuit opened; automatic retries suppressed",
                extra={"breaker_category": category, "failures": count},
            )
        return opened

    def reset(self, category: str) -> None:
        if self._failures.pop(category, None) is not None:
            logger.debug("circuit reset", extra={"breaker_category": category})

    def reset_all(self) -> None:
        self._failures.clear()

    def is_open(self, category: str) -> bool:
        return self._failures.get(category, 0) >= self._threshold

    def failure_count(self, category: str) -> int:
        return self._failures.get(category, 0)

    def snapshot(self) -> dict[str, int]:
        return dict(self._failures)


__all__ = ["CircuitBreaker"]
