"""Output rendering for the flowdesk CLI.

Results go to stdout as plain text; errors and recovery hints go to stderr.
Respects the ``NO_COLOR`` environment variable and the ``--no-color`` flag.
"""

from __future__ import annotations

import os
import sys
from typing import TextIO

_RED = "\x1b[31m"
_DIM = "\x1b[2m"
_RESET = "\x1b[0m"


def _color_allowed(no_color_flag: bool, stream: TextIO) -> bool:
    """Check whether color output should be attempted."""

    if no_color_flag:
        return False
    if os.environ.get("NO_COLOR", ""):
        return False
    return hasattr(stream, "isatty") and stream.isatty()


class CLIRenderer:
    """Thin CLI output renderer."""

    def __init__(self, *, no_color: bool = False) -> None:
        self._color = _color_allowed(no_color, sys.stderr)

    def text(self, line: str) -> None:
        print(line)

    def error(self, text: str, *, hint: str | None = None) -> None:
        """Print an error and optional recovery hint to stderr."""

        message = f"error: {text}"
        if self._color:
            message = f"{_RED}{message}{_RESET}"
        print(message, file=sys.stderr)
        if hint:
            print(f"  {_DIM}{hint}{_RESET}" if self._color else f"  {hint}", file=sys.stderr)


def create_renderer(*, no_color: bool = False) -> CLIRenderer:
    """Create a CLI renderer with the given settings."""

    return CLIRenderer(no_color=no_color)


__all__ = ["CLIRenderer", "create_renderer"]
