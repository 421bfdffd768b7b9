"""Main Textual App: view layer that renders state and emits intents.

This is the top-level Textual App. It:
- Composes the layout (banner, epic list, task table, error panel, activity, status)
- Wires key bindings and widget events to controller intents
- Re-renders widgets whenever the controller reports a state change
- Shows completion, review-ready and error notifications as toasts

All business logic lives in the controller; this file only does rendering.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from textual import work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.css.query import NoMatches
from textual.widgets import DataTable, Footer, OptionList, Static
from textual.widgets.option_list import Option

from flowdesk.notifications import FlowNotification, NotificationPriority
from flowdesk.ui.tui.controller import TUIController
from flowdesk.ui.tui.state import AppState
from flowdesk.workspace import WorkspaceRegistry

_CSS = """
#flow-banner { height: auto; background: $warning; color: $text; padding: 0 1; display: none; }
#flow-banner.visible { display: block; }
#main-area { height: 1fr; }
#epic-list { width: 36; border-right: solid $primary; }
#detail { width: 1fr; }
#task-table { height: 1fr; }
#error-panel { height: auto; max-height: 12; border: round $error; padding: 0 1; display: none; }
#error-panel.visible { display: block; }
#activity { height: 6; border-top: solid $primary; padding: 0 1; overflow-y: auto; }
#status-line { dock: bottom; height: 1; padding: 0 1; }
"""

_CSS_NO_COLOR = """
#flow-banner { height: auto; padding: 0 1; display: none; text-style: bold; }
#flow-banner.visible { display: block; }
#main-area { height: 1fr; }
#epic-list { width: 36; border-right: solid white; }
#detail { width: 1fr; }
#task-table { height: 1fr; }
#error-panel { height: auto; max-height: 12; border: round white; padding: 0 1; display: none; }
#error-panel.visible { display: block; }
#activity { height: 6; border-top: solid white; padding: 0 1; }
#status-line { dock: bottom; height: 1; padding: 0 1; }
"""

TASK_COLUMNS: tuple[str, ...] = ("id", "status", "title")
ACTIVITY_VISIBLE_LINES = 5


def _epic_label(epic: Mapping[str, Any]) -> str:
    title = epic.get("title") or ""
    status = epic.get("status") or "?"
    return f"{epic.get('id', '?')}  [{status}]  {title}".rstrip()


def _error_text(state: AppState) -> str:
    error = state.last_error
    if error is None:
        return ""
    lines = [f"{error.title} ({error.category})", error.description]
    if error.auto_retry_disabled:
        lines.append("Automatic reloads are paused for this category. Press r to retry.")
    if error.actions:
        lines.append("Actions: " + ", ".join(error.actions))
    if error.raw_output:
        lines.append("Raw output:")
        lines.append(error.raw_output)
    return "\n".join(lines)


class FlowdeskTUI(App[int]):
    """Terminal view of a single flow workspace."""

    TITLE = "flowdesk"
    CSS = _CSS
    BINDINGS = [
        Binding("r", "refresh", "Refresh", show=True),
        Binding("i", "init_workspace", "Init .flow", show=True),
        Binding("q", "quit_app", "Quit", show=True),
    ]

    def __init__(
        self,
        workspace: str | Path,
        *,
        settings: Mapping[str, Any] | None = None,
        registry: WorkspaceRegistry | None = None,
    ) -> None:
        super().__init__()
        self._workspace = Path(workspace)
        self._workspace_registry = registry or WorkspaceRegistry(settings=settings)
        self._state = AppState(workspace_path=str(self._workspace))
        self._controller: TUIController | None = None
        self._rendered_epics: list[str] = []

    @property
    def state(self) -> AppState:
        return self._state

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def compose(self) -> ComposeResult:
        yield Static(
            ".flow/ not found in this workspace. Press i to run flowctl init.",
            id="flow-banner",
            markup=False,
        )
        with Horizontal(id="main-area"):
            yield OptionList(id="epic-list")
            with Vertical(id="detail"):
                yield DataTable(id="task-table", cursor_type="row")
                yield Static("", id="error-panel", markup=False)
        yield Static("", id="activity", markup=False)
        yield Static("", id="status-line", markup=False)
        yield Footer()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def on_mount(self) -> None:
        self.query_one("#task-table", DataTable).add_columns(*TASK_COLUMNS)
        self._attach()

    @work(thread=False)
    async def _attach(self) -> None:
        session = await self._workspace_registry.activate(self._workspace)
        self._controller = TUIController(
            session,
            broadcaster=self._workspace_registry.broadcaster,
            state=self._state,
            on_state_change=self._on_state_change,
            on_notification=self._show_notification,
        )
        await self._controller.attach()

    async def on_unmount(self) -> None:
        if self._controller is not None:
            await self._controller.detach()
        await self._workspace_registry.close_all()

    # ------------------------------------------------------------------
    # State change callback: update all widgets
    # ------------------------------------------------------------------

    async def _on_state_change(self) -> None:
        try:
            self._render_banner()
            self._render_epics()
            self._render_tasks()
            self._render_error()
            self._render_activity()
            self.query_one("#status-line", Static).update(self._state.status_text())
        except NoMatches:
            # Called during shutdown after widgets are gone.
            pass

    def _show_notification(self, notification: FlowNotification) -> None:
        severity = "error" if notification.priority is NotificationPriority.HIGH else "information"
        self.notify(notification.body, title=notification.title, severity=severity, markup=False)

    def _render_banner(self) -> None:
        banner = self.query_one("#flow-banner", Static)
        banner.set_class(self._state.flow_missing, "visible")

    def _render_epics(self) -> None:
        ids = [str(epic.get("id", "")) for epic in self._state.epics]
        if ids == self._rendered_epics:
            return
        epic_list = self.query_one("#epic-list", OptionList)
        epic_list.clear_options()
        epic_list.add_options(
            [Option(_epic_label(epic), id=epic_id) for epic, epic_id in zip(self._state.epics, ids)]
        )
        self._rendered_epics = ids

    def _render_tasks(self) -> None:
        table = self.query_one("#task-table", DataTable)
        table.clear()
        for task in self._state.tasks:
            table.add_row(*(str(task.get(column) or "") for column in TASK_COLUMNS))

    def _render_error(self) -> None:
        panel = self.query_one("#error-panel", Static)
        text = _error_text(self._state)
        panel.update(text)
        panel.set_class(bool(text), "visible")

    def _render_activity(self) -> None:
        lines = list(self._state.activity)[-ACTIVITY_VISIBLE_LINES:]
        self.query_one("#activity", Static).update(
            "\n".join(f"{line.timestamp}  {line.text}" for line in lines)
        )

    # ------------------------------------------------------------------
    # Event handlers: translate widget events to controller intents
    # ------------------------------------------------------------------

    @work(thread=False, exclusive=True, group="select")
    async def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        if self._controller is not None:
            await self._controller.select_epic(event.option.id)

    @work(thread=False)
    async def action_refresh(self) -> None:
        if self._controller is not None:
            await self._controller.refresh()

    @work(thread=False)
    async def action_init_workspace(self) -> None:
        if self._controller is not None:
            await self._controller.init_workspace()

    def action_quit_app(self) -> None:
        self.exit(0)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def run_tui_app(
    workspace: str | Path,
    *,
    settings: Mapping[str, Any] | None = None,
    no_color: bool = False,
) -> int:
    """Create and run the TUI app, returning exit code."""

    if no_color or os.environ.get("NO_COLOR"):
        FlowdeskTUI.CSS = _CSS_NO_COLOR
    else:
        FlowdeskTUI.CSS = _CSS

    app = FlowdeskTUI(workspace, settings=settings)
    result = app.run()
    return result if isinstance(result, int) else 0


__all__ = ["FlowdeskTUI", "run_tui_app"]
