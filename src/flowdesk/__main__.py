"""Module entrypoint for ``python -m flowdesk``."""

from __future__ import annotations

from flowdesk.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
