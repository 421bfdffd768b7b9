"""Terminal UI package: two layers (controller / view) over the bridge.

Exposes ``tui_available()`` and ``run_tui()`` for the CLI. Textual is an
optional dependency and is only imported when the TUI actually runs.
"""

from __future__ import annotations

import sys
from collections.abc import Mapping
from importlib.util import find_spec
from pathlib import Path
from typing import Any


def tui_available() -> bool:
    """Return whether optional TUI dependencies are available in this environment."""
    return find_spec("textual") is not None


def run_tui(
    workspace: str | Path,
    *,
    settings: Mapping[str, Any] | None = None,
    no_color: bool = False,
) -> int:
    """Run the interactive TUI, or exit with code 2 and install hint if unavailable."""
    if not tui_available():
        print(
            "TUI requires optional dependency. Install: pip install -e '.[tui]'",
            file=sys.stderr,
        )
        return 2

    from flowdesk.ui.tui.app import run_tui_app

    return run_tui_app(workspace, settings=settings, no_color=no_color)


__all__ = ["run_tui", "tui_available"]
