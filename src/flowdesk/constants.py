"""Stable constants shared across the bridge and watcher layers."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# flowctl binary resolution.
DEFAULT_BINARY_NAME: Final[str] = "flowctl"
FLOW_DIR_NAME: Final[str] = ".flow"
LOCAL_BINARY_SUBPATH: Final[PurePosixPath] = PurePosixPath(".flow/bin/flowctl")

# Process invocation contract.
JSON_OUTPUT_FLAG: Final[str] = "--json"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 10.0
DEFAULT_MAX_OUTPUT_BYTES: Final[int] = 1024 * 1024
DEFAULT_SNIPPET_BYTES: Final[int] = 500

# Circuit breaker.
DEFAULT_BREAKER_THRESHOLD: Final[int] = 3

# Watcher.
DEFAULT_DEBOUNCE_MS: Final[int] = 100
DEFAULT_RESCAN_INTERVAL_MS: Final[int] = 1000
DEFAULT_POLL_DELAY_MS: Final[int] = 300

# Storage directories inside ``.flow/``.
EPIC_DIRS: Final[frozenset[str]] = frozenset({"epics", "specs"})
TASK_DIRS: Final[frozenset[str]] = frozenset({"tasks"})
BINARY_DIRS: Final[frozenset[str]] = frozenset({"bin"})
ID_SUFFIXES: Final[tuple[str, ...]] = (".json", ".md")

__all__ = [
    "BINARY_DIRS",
    "DEFAULT_BINARY_NAME",
    "DEFAULT_BREAKER_THRESHOLD",
    "DEFAULT_DEBOUNCE_MS",
    "DEFAULT_MAX_OUTPUT_BYTES",
    "DEFAULT_POLL_DELAY_MS",
    "DEFAULT_RESCAN_INTERVAL_MS",
    "DEFAULT_SNIPPET_BYTES",
    "DEFAULT_TIMEOUT_SECONDS",
    "EPIC_DIRS",
    "FLOW_DIR_NAME",
    "ID_SUFFIXES",
    "JSON_OUTPUT_FLAG",
    "LOCAL_BINARY_SUBPATH",
    "TASK_DIRS",
]
