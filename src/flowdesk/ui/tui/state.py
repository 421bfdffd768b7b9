"""Application state: pure data, NO Textual imports.

All mutations go through the controller; the view reads snapshots.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Final

from flowdesk.domain import WatcherState
from flowdesk.notifications import FlowNotification

MAX_ACTIVITY_LINES: Final[int] = 200
MAX_NOTIFICATIONS: Final[int] = 50


@dataclass(frozen=True, slots=True)
class ErrorView:
    """The most recent bridge failure, rendered with its recovery advice."""

    category: str
    kind: str
    title: str
    description: str
    actions: tuple[str, ...]
    auto_retry_disabled: bool = False
    raw_output: str | None = None


@dataclass(frozen=True, slots=True)
class ActivityLine:
    text: str
    timestamp: str = field(default_factory=lambda: datetime.now(UTC).strftime("%H:%M:%S"))


@dataclass
class AppState:
    """Root state object for the TUI: mutated only by the controller."""

    workspace_path: str = ""
    watcher_state: WatcherState = WatcherState.UNINITIALIZED

    epics: list[dict[str, Any]] = field(default_factory=list)
    selected_epic: str | None = None
    tasks: list[dict[str, Any]] = field(default_factory=list)

    last_error: ErrorView | None = None
    suppressed_reloads: int = 0
    busy: set[str] = field(default_factory=set)

    activity: deque[ActivityLine] = field(default_factory=lambda: deque(maxlen=MAX_ACTIVITY_LINES))
    notifications: deque[FlowNotification] = field(
        default_factory=lambda: deque(maxlen=MAX_NOTIFICATIONS)
    )

    @property
    def flow_missing(self) -> bool:
        return self.watcher_state is WatcherState.WATCHING_PARENT

    def status_text(self) -> str:
        parts = [self.workspace_path or "(no workspace)", self.watcher_state.value]
        if self.busy:
            parts.append("loading " + ", ".join(sorted(self.busy)))
        if self.suppressed_reloads:
            parts.append(f"{self.suppressed_reloads} automatic reloads suppressed")
        return "  |  ".join(parts)


__all__ = ["ActivityLine", "AppState", "ErrorView", "MAX_ACTIVITY_LINES", "MAX_NOTIFICATIONS"]
