"""Per-key trailing-edge debounce on the event loop's monotonic clock."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from flowdesk.constants import DEFAULT_DEBOUNCE_MS

logger = logging.getLogger(__name__)

Handler = Callable[[], object]


class DebounceRouter:
    """Collapse bursts of events per key into a single handler call.

    Each ``on_event`` for a key replaces that key's pending timer, so the
    handler runs once, ``window`` seconds after the last event of the burst.
    """

    def __init__(
        self,
        *,
        window_ms: int = DEFAULT_DEBOUNCE_MS,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        if window_ms < 0:
            raise ValueError("window_ms must be >= 0")
        self._window = window_ms / 1000.0
        self._loop = loop
        self._timers: dict[str, asyncio.TimerHandle] = {}

    @property
    def window_seconds(self) -> float:
        return self._window

    @property
    def pending(self) -> int:
        return len(self._timers)

    def is_pending(self, key: str) -> bool:
        return key in self._timers

    def on_event(self, key: str, handler: Handler) -> None:
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._timers[key] = loop.call_later(self._window, self._fire, key, handler)

    def cancel(self, key: str) -> bool:
        timer = self._timers.pop(key, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def cancel_all(self) -> int:
        cancelled = len(self._timers)
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        return cancelled

    def _fire(self, key: str, handler: Handler) -> None:
        self._timers.pop(key, None)
        try:
            handler()
        except Exception:
            logger.exception("debounced handler failed", extra={"debounce_key": key})


__all__ = ["DebounceRouter", "Handler"]
