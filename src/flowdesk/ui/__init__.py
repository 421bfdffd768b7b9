"""UI package exports for the CLI and the optional TUI surface."""

from flowdesk.ui.cli import build_parser, main, run_cli
from flowdesk.ui.render import CLIRenderer, create_renderer
from flowdesk.ui.tui import run_tui, tui_available

__all__ = [
    "CLIRenderer",
    "build_parser",
    "create_renderer",
    "main",
    "run_cli",
    "run_tui",
    "tui_available",
]
