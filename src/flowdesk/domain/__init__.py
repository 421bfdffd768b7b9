"""Domain value types: workspaces, commands, change events, watcher states."""

from flowdesk.domain.models import (
    ChangeCategory,
    ChangeEvent,
    Command,
    EpicStatus,
    JSONScalar,
    JSONValue,
    TaskStatus,
    WatcherState,
    Workspace,
)

__all__ = [
    "ChangeCategory",
    "ChangeEvent",
    "Command",
    "EpicStatus",
    "JSONScalar",
    "JSONValue",
    "TaskStatus",
    "WatcherState",
    "Workspace",
]
