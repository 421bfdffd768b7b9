"""Parse captured flowctl stdout and check it against an expected shape."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from flowdesk.bridge.results import CommandResult, MalformedOutput, SchemaViolation
from flowdesk.constants import DEFAULT_SNIPPET_BYTES

if TYPE_CHECKING:
    from flowdesk.bridge.shapes import Shape

logger = logging.getLogger(__name__)


class ResponseValidator:
    """Turn raw output into validated data or a classified error."""

    def __init__(self, *, snippet_bytes: int = DEFAULT_SNIPPET_BYTES) -> None:
        if snippet_bytes <= 0:
            raise ValueError("snippet_bytes must be > 0")
        self._snippet_bytes = snippet_bytes

    @property
    def snippet_bytes(self) -> int:
        return self._snippet_bytes

    def validate(self, raw: bytes | str, shape: Shape) -> CommandResult[Any]:
        raw_bytes = raw.encode("utf-8") if isinstance(raw, str) else bytes(raw)
        try:
            parsed = json.loads(raw_bytes.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            snippet = self.snippet(raw_bytes)
            logger.warning(
                "flowctl output is not valid JSON",
                extra={"output_bytes": len(raw_bytes), "snippet": snippet},
            )
            return CommandResult.failure(MalformedOutput(snippet=snippet))

        violations = shape.check(parsed)
        if violations:
            logger.warning(
                "flowctl output failed shape validation",
                extra={"violations": [str(item) for item in violations[:10]]},
            )
            return CommandResult.failure(SchemaViolation(violations=violations))

        return CommandResult.success(parsed)

    def snippet(self, raw: bytes) -> str:
        return raw[: self._snippet_bytes].decode("utf-8", errors="replace")


__all__ = ["ResponseValidator"]
