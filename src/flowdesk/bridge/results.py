"""Tagged command outcomes. Returned across the bridge boundary, never raised."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(StrEnum):
    BINARY_NOT_FOUND = "binary_not_found"
    TIMEOUT = "timeout"
    NON_ZERO_EXIT = "non_zero_exit"
    MALFORMED_OUTPUT = "malformed_output"
    SCHEMA_VIOLATION = "schema_violation"


@dataclass(frozen=True, slots=True)
class ShapeViolation:
    """One field-level mismatch between parsed output and its expected shape."""

    path: str
    expected: str
    actual: str

    def __str__(self) -> str:
        return f"{self.path}: expected {self.expected}, got {self.actual}"


@dataclass(frozen=True, slots=True)
class BinaryNotFound:
    binary: str

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.BINARY_NOT_FOUND

    @property
    def message(self) -> str:
        return f"{self.binary} not found"


@dataclass(frozen=True, slots=True)
class Timeout:
    command: str
    timeout_seconds: float

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.TIMEOUT

    @property
    def message(self) -> str:
        return f"{self.command} timed out after {self.timeout_seconds:g}s"


@dataclass(frozen=True, slots=True)
class NonZeroExit:
    stderr: str
    exit_code: int

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.NON_ZERO_EXIT

    @property
    def message(self) -> str:
        detail = self.stderr.strip()
        if detail:
            return detail
        return f"command exited with code {self.exit_code}"


@dataclass(frozen=True, slots=True)
class MalformedOutput:
    snippet: str

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.MALFORMED_OUTPUT

    @property
    def message(self) -> str:
        return "output could not be parsed as JSON"


@dataclass(frozen=True, slots=True)
class SchemaViolation:
    violations: tuple[ShapeViolation, ...]

    @property
    def kind(self) -> ErrorKind:
        return ErrorKind.SCHEMA_VIOLATION

    @property
    def message(self) -> str:
        if not self.violations:
            return "output did not match the expected shape"
        first = self.violations[0]
        more = len(self.violations) - 1
        suffix = f" (+{more} more)" if more > 0 else ""
        return f"output did not match the expected shape: {first}{suffix}"


BridgeError = BinaryNotFound | Timeout | NonZeroExit | MalformedOutput | SchemaViolation


@dataclass(frozen=True, slots=True)
class CommandResult(Generic[T]):
    """Either ``data`` (success) or exactly one classified ``error``."""

    data: T | None = None
    error: BridgeError | None = None

    def __post_init__(self) -> None:
        if self.error is not None and self.data is not None:
            raise ValueError("a command result carries data or an error, not both")

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, data: T) -> CommandResult[T]:
        return cls(data=data)

    @classmethod
    def failure(cls, error: BridgeError) -> CommandResult[T]:
        return cls(error=error)

    def to_payload(self) -> dict[str, object]:
        if self.error is None:
            return {"ok": True, "data": self.data}
        return {"ok": False, "error": error_payload(self.error)}


def error_payload(error: BridgeError) -> dict[str, object]:
    """Render an error as a JSON-friendly mapping tagged by ``type``."""

    payload: dict[str, object] = {"type": error.kind.value, "message": error.message}
    if isinstance(error, BinaryNotFound):
        payload["binary"] = error.binary
    elif isinstance(error, Timeout):
        payload["command"] = error.command
        payload["timeout_seconds"] = error.timeout_seconds
    elif isinstance(error, NonZeroExit):
        payload["stderr"] = error.stderr
        payload["exit_code"] = error.exit_code
    elif isinstance(error, MalformedOutput):
        payload["snippet"] = error.snippet
    elif isinstance(error, SchemaViolation):
        payload["violations"] = [
            {"path": item.path, "expected": item.expected, "actual": item.actual}
            for item in error.violations
        ]
    return payload


__all__ = [
    "BinaryNotFound",
    "BridgeError",
    "CommandResult",
    "ErrorKind",
    "MalformedOutput",
    "NonZeroExit",
    "SchemaViolation",
    "ShapeViolation",
    "Timeout",
    "error_payload",
]
