"""Frozen value types shared by the bridge, watcher, and UI layers."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Final

from flowdesk.constants import DEFAULT_TIMEOUT_SECONDS, FLOW_DIR_NAME

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_MAX_CATEGORY_LENGTH: Final[int] = 64


class ChangeCategory(StrEnum):
    """Coarse routing label for a change under ``.flow/``."""

    EPIC = "epic"
    TASK = "task"
    CONFIG = "config"


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DONE = "done"


class EpicStatus(StrEnum):
    OPEN = "open"
    DONE = "done"


class WatcherState(StrEnum):
    UNINITIALIZED = "uninitialized"
    WATCHING_TARGET = "watching_target"
    WATCHING_PARENT = "watching_parent"


@dataclass(frozen=True, slots=True)
class Workspace:
    """One project root directory; identity is the resolved root path."""

    root: Path

    def __post_init__(self) -> None:
        if not isinstance(self.root, Path):
            object.__setattr__(self, "root", Path(self.root))
        object.__setattr__(self, "root", self.root.expanduser().resolve(strict=False))

    @property
    def id(self) -> str:
        return str(self.root)

    @property
    def flow_dir(self) -> Path:
        return self.root / FLOW_DIR_NAME


@dataclass(frozen=True, slots=True)
class Command:
    """One flowctl invocation. ``args`` excludes the binary and the JSON flag."""

    args: tuple[str, ...]
    category: str
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    stdin: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.args, (str, bytes)):
            raise ValueError("args must be a sequence of strings, not a single string")
        args = tuple(self.args)
        for index, item in enumerate(args):
            if not isinstance(item, str):
                raise ValueError(f"args[{index}] must be a string, got {type(item).__name__}")
        object.__setattr__(self, "args", args)

        category = self.category.strip() if isinstance(self.category, str) else ""
        if not category:
            raise ValueError("category must be a non-empty string")
        if len(category) > _MAX_CATEGORY_LENGTH:
            raise ValueError(f"category must be at most {_MAX_CATEGORY_LENGTH} characters")
        object.__setattr__(self, "category", category)

        timeout = float(self.timeout_seconds)
        if not math.isfinite(timeout) or timeout <= 0:
            raise ValueError("timeout_seconds must be a finite number > 0")
        object.__setattr__(self, "timeout_seconds", timeout)

        if self.stdin is not None and not isinstance(self.stdin, str):
            raise ValueError(f"stdin must be text, got {type(self.stdin).__name__}")

    def display(self, binary: str = "flowctl") -> str:
        return " ".join((binary, *self.args))


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Classified change under ``.flow/``; routed with a workspace id."""

    category: ChangeCategory
    id: str | None = field(default=None)

    def to_payload(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {"category": self.category.value}
        if self.id is not None:
            payload["id"] = self.id
        return payload


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
