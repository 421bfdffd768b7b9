"""Bridge between asynchronous UI actions and the flowctl CLI."""

from flowdesk.bridge.breaker import CircuitBreaker
from flowdesk.bridge.client import FlowBridge
from flowdesk.bridge.executor import CommandExecutor
from flowdesk.bridge.recovery import Recovery, RecoveryAction, recovery_for
from flowdesk.bridge.resolver import BinaryResolver
from flowdesk.bridge.results import (
    BinaryNotFound,
    BridgeError,
    CommandResult,
    ErrorKind,
    MalformedOutput,
    NonZeroExit,
    SchemaViolation,
    ShapeViolation,
    Timeout,
    error_payload,
)
from flowdesk.bridge.serializer import WriteSerializer
from flowdesk.bridge.validator import ResponseValidator

__all__ = [
    "BinaryNotFound",
    "BinaryResolver",
    "BridgeError",
    "CircuitBreaker",
    "CommandExecutor",
    "CommandResult",
    "ErrorKind",
    "FlowBridge",
    "MalformedOutput",
    "NonZeroExit",
    "Recovery",
    "RecoveryAction",
    "ResponseValidator",
    "SchemaViolation",
    "ShapeViolation",
    "Timeout",
    "WriteSerializer",
    "error_payload",
    "recovery_for",
]
