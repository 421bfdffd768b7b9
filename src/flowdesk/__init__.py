"""
flowdesk: asynchronous bridge between a user interface and the flowctl CLI.

Package root. Importing it has no side effects: no config loading, no
logging setup, no watchers. Subsystems live in ``flowdesk.bridge``,
``flowdesk.watch``, ``flowdesk.config``, and ``flowdesk.observability``;
``flowdesk.workspace`` wires them together per workspace.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
