"""User-facing recovery advice for each classified bridge error."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from flowdesk.bridge.results import (
    BinaryNotFound,
    BridgeError,
    MalformedOutput,
    NonZeroExit,
    SchemaViolation,
    Timeout,
)


class RecoveryAction(StrEnum):
    RETRY = "retry"
    SHOW_RAW_OUTPUT = "show_raw_output"
    INSTALL_GUIDANCE = "install_guidance"
    CHECK_PROCESS = "check_process"


@dataclass(frozen=True, slots=True)
class Recovery:
    title: str
    description: str
    actions: tuple[RecoveryAction, ...]
    auto_retry_disabled: bool = False
    raw_output: str | None = None

    def hint(self) -> str:
        text = f"{self.title}: {self.description}"
        if self.auto_retry_disabled:
            text += " Automatic retry is disabled after repeated failures; manual retry is still available."
        return text


def recovery_for(error: BridgeError, *, breaker_open: bool = False) -> Recovery:
    """Describe what went wrong and which actions a surface should offer."""

    if isinstance(error, BinaryNotFound):
        return Recovery(
            title="flowctl not found",
            description=(
                f"{error.binary!r} is not installed in .flow/bin/ and is not on PATH. "
                "Install flowctl or run `flowdesk init` in a workspace that vendors it."
            ),
            actions=(RecoveryAction.INSTALL_GUIDANCE, RecoveryAction.RETRY),
            auto_retry_disabled=breaker_open,
        )
    if isinstance(error, Timeout):
        return Recovery(
            title="Command timed out",
            description=(
                f"{error.command} did not respond within {error.timeout_seconds:g}s. "
                "This may indicate a stuck process or a system resource issue."
            ),
            actions=(RecoveryAction.RETRY, RecoveryAction.CHECK_PROCESS),
            auto_retry_disabled=breaker_open,
        )
    if isinstance(error, NonZeroExit):
        return Recovery(
            title="Command failed",
            description=f"flowctl exited with code {error.exit_code}: {error.message}",
            actions=(RecoveryAction.RETRY,),
            auto_retry_disabled=breaker_open,
        )
    if isinstance(error, MalformedOutput):
        return Recovery(
            title="Corrupt data detected",
            description="flowctl returned output that is not valid JSON.",
            actions=(RecoveryAction.RETRY, RecoveryAction.SHOW_RAW_OUTPUT),
            auto_retry_disabled=breaker_open,
            raw_output=error.snippet,
        )
    if isinstance(error, SchemaViolation):
        return Recovery(
            title="Corrupt data detected",
            description="flowctl data did not match the expected structure.",
            actions=(RecoveryAction.RETRY, RecoveryAction.SHOW_RAW_OUTPUT),
            auto_retry_disabled=breaker_open,
            raw_output="\n".join(str(item) for item in error.violations),
        )
    raise TypeError(f"unsupported bridge error: {type(error).__name__}")


__all__ = ["Recovery", "RecoveryAction", "recovery_for"]
