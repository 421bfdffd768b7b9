"""
flowdesk: configuration schema and validation.

Purpose
- Define the built-in defaults for every ``flowdesk.toml`` section and the
  strict rules a merged config must satisfy.

What is included in this file
- ``TypedDict`` shapes for each section and the deterministic defaults.
- Validation into structured issues (dotted field path + message); unknown
  keys are rejected rather than ignored.
- Deterministic deep-merge helper used by the loader for layering.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Final, TypedDict

from flowdesk.constants import (
    DEFAULT_BINARY_NAME,
    DEFAULT_BREAKER_THRESHOLD,
    DEFAULT_DEBOUNCE_MS,
    DEFAULT_MAX_OUTPUT_BYTES,
    DEFAULT_POLL_DELAY_MS,
    DEFAULT_RESCAN_INTERVAL_MS,
    DEFAULT_SNIPPET_BYTES,
    DEFAULT_TIMEOUT_SECONDS,
    JSON_OUTPUT_FLAG,
    LOCAL_BINARY_SUBPATH,
)

LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")


class BridgeConfig(TypedDict):
    binary_name: str
    local_binary: str
    json_flag: str
    timeout_seconds: float
    max_output_bytes: int
    snippet_bytes: int


class BreakerConfig(TypedDict):
    threshold: int


class WatchConfig(TypedDict):
    debounce_ms: int
    rescan_interval_ms: int
    force_polling: bool
    poll_delay_ms: int


class ObservabilityConfig(TypedDict):
    log_level: str
    log_dir: str
    log_to_stderr: bool
    redact_secrets: bool


class FlowdeskConfig(TypedDict):
    bridge: BridgeConfig
    breaker: BreakerConfig
    watch: WatchConfig
    observability: ObservabilityConfig


DEFAULT_CONFIG: Final[FlowdeskConfig] = {
    "bridge": {
        "binary_name": DEFAULT_BINARY_NAME,
        "local_binary": LOCAL_BINARY_SUBPATH.as_posix(),
        "json_flag": JSON_OUTPUT_FLAG,
        "timeout_seconds": DEFAULT_TIMEOUT_SECONDS,
        "max_output_bytes": DEFAULT_MAX_OUTPUT_BYTES,
        "snippet_bytes": DEFAULT_SNIPPET_BYTES,
    },
    "breaker": {
        "threshold": DEFAULT_BREAKER_THRESHOLD,
    },
    "watch": {
        "debounce_ms": DEFAULT_DEBOUNCE_MS,
        "rescan_interval_ms": DEFAULT_RESCAN_INTERVAL_MS,
        "force_polling": False,
        "poll_delay_ms": DEFAULT_POLL_DELAY_MS,
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": "logs",
        "log_to_stderr": False,
        "redact_secrets": True,
    },
}

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (("observability", "log_dir"),)


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


def default_config() -> FlowdeskConfig:
    """Return a deep copy of the built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged: dict[str, Any] = copy.deepcopy(dict(base))
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> tuple[dict[str, Any] | None, tuple[ConfigValidationIssue, ...]]:
    """Validate a fully merged config; return ``(normalized, issues)``."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return None, issues.items()

    sections = {
        "bridge": _validate_bridge,
        "breaker": _validate_breaker,
        "watch": _validate_watch,
        "observability": _validate_observability,
    }
    _reject_unknown_keys(root, set(sections), "", issues)

    normalized: dict[str, Any] = {}
    for name, validator in sections.items():
        if name not in root:
            issues.add(name, "missing required section")
            continue
        section = _as_object(root[name], name, issues)
        if section is None:
            continue
        normalized[name] = validator(section, name, issues)

    if issues.has_issues:
        return None, issues.items()
    return normalized, ()


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    normalized, issues = validate_config(config)
    if normalized is None:
        raise ConfigValidationError(issues)
    return normalized


def _validate_bridge(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = set(BridgeConfig.__annotations__)
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    for key in ("binary_name", "json_flag"):
        if key in payload:
            parsed = _as_str(payload[key], _join(path, key), issues)
            if parsed is not None:
                out[key] = parsed

    if "local_binary" in payload:
        key_path = _join(path, "local_binary")
        parsed_local = _as_str(payload["local_binary"], key_path, issues)
        if parsed_local is not None:
            candidate = PurePosixPath(parsed_local)
            if candidate.is_absolute() or ".." in candidate.parts:
                issues.add(key_path, "must be a relative path inside the workspace")
            else:
                out["local_binary"] = candidate.as_posix()

    if "timeout_seconds" in payload:
        parsed_timeout = _as_float(
            payload["timeout_seconds"], _join(path, "timeout_seconds"), issues, exclusive_minimum=0.0
        )
        if parsed_timeout is not None:
            out["timeout_seconds"] = parsed_timeout

    for key in ("max_output_bytes", "snippet_bytes"):
        if key in payload:
            parsed_int = _as_int(payload[key], _join(path, key), issues, minimum=1)
            if parsed_int is not None:
                out[key] = parsed_int

    return out


def _validate_breaker(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = set(BreakerConfig.__annotations__)
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "threshold" in payload:
        parsed = _as_int(payload["threshold"], _join(path, "threshold"), issues, minimum=1)
        if parsed is not None:
            out["threshold"] = parsed
    return out


def _validate_watch(payload: Mapping[str, object], path: str, issues: _IssueCollector) -> dict[str, Any]:
    allowed = set(WatchConfig.__annotations__)
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "debounce_ms" in payload:
        parsed_debounce = _as_int(payload["debounce_ms"], _join(path, "debounce_ms"), issues, minimum=0)
        if parsed_debounce is not None:
            out["debounce_ms"] = parsed_debounce

    for key in ("rescan_interval_ms", "poll_delay_ms"):
        if key in payload:
            parsed_int = _as_int(payload[key], _join(path, key), issues, minimum=1)
            if parsed_int is not None:
                out[key] = parsed_int

    if "force_polling" in payload:
        parsed_bool = _as_bool(payload["force_polling"], _join(path, "force_polling"), issues)
        if parsed_bool is not None:
            out["force_polling"] = parsed_bool
    return out


def _validate_observability(
    payload: Mapping[str, object], path: str, issues: _IssueCollector
) -> dict[str, Any]:
    allowed = set(ObservabilityConfig.__annotations__)
    _reject_unknown_keys(payload, allowed, path, issues)
    _require_keys(payload, allowed, path, issues)

    out: dict[str, Any] = {}
    if "log_level" in payload:
        raw_level = payload["log_level"]
        level_value = raw_level.upper() if isinstance(raw_level, str) else raw_level
        parsed_level = _as_enum(level_value, _join(path, "log_level"), issues, allowed_values=LOG_LEVELS)
        if parsed_level is not None:
            out["log_level"] = parsed_level

    if "log_dir" in payload:
        parsed_dir = _as_str(payload["log_dir"], _join(path, "log_dir"), issues)
        if parsed_dir is not None:
            if "\x00" in parsed_dir:
                issues.add(_join(path, "log_dir"), "must not contain NUL bytes")
            else:
                out["log_dir"] = parsed_dir

    for key in ("log_to_stderr", "redact_secrets"):
        if key in payload:
            parsed_bool = _as_bool(payload[key], _join(path, key), issues)
            if parsed_bool is not None:
                out[key] = parsed_bool
    return out


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        elif isinstance(value, Mapping):
            target[key] = copy.deepcopy(dict(value))
        else:
            target[key] = copy.deepcopy(value)


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(value: object, path: str, issues: _IssueCollector, *, minimum: int | None = None) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    exclusive_minimum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if exclusive_minimum is not None and parsed <= exclusive_minimum:
        issues.add(path, f"must be > {exclusive_minimum:g}")
        return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(allowed_values)
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _require_keys(
    payload: Mapping[str, object],
    required: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(required):
        if key not in payload:
            issues.add(_join(path, key), "missing required field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


__all__ = [
    "BreakerConfig",
    "BridgeConfig",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG",
    "FlowdeskConfig",
    "LOG_LEVELS",
    "ObservabilityConfig",
    "PATH_FIELDS",
    "WatchConfig",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "validate_config",
]
