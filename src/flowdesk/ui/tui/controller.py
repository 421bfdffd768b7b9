"""Controller layer: owns AppState, translates intents to bridge calls.

NO widget/Textual imports. The controller:
1. Registers itself as a broadcaster surface for one workspace.
2. Turns change events into *automatic* reloads, which the circuit breaker
   may suppress, and user intents into *manual* calls, which always run.
3. Reduces bridge results into AppState mutations.
4. Diffs each reloaded epic and task list against the previous one and
   publishes completion, review-ready and error notifications.
5. Notifies the view layer via a callback when state changes.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from flowdesk.bridge.client import CATEGORY_EPICS, CATEGORY_INIT, CATEGORY_TASKS
from flowdesk.bridge.recovery import recovery_for
from flowdesk.domain import ChangeCategory, ChangeEvent, WatcherState
from flowdesk.notifications import (
    CompletionTracker,
    FlowNotification,
    flowctl_error_notification,
)
from flowdesk.ui.tui.state import ActivityLine, AppState, ErrorView

if TYPE_CHECKING:
    from flowdesk.bridge.results import CommandResult
    from flowdesk.watch.broadcaster import NotificationBroadcaster
    from flowdesk.workspace import WorkspaceSession

logger = logging.getLogger(__name__)

StateCallback = Callable[[], Awaitable[None] | None]
NotificationCallback = Callable[[FlowNotification], None]


class TUIController:
    """Application controller: manages state and dispatches bridge calls."""

    def __init__(
        self,
        session: WorkspaceSession,
        *,
        broadcaster: NotificationBroadcaster,
        state: AppState | None = None,
        on_state_change: StateCallback | None = None,
        on_notification: NotificationCallback | None = None,
    ) -> None:
        self.session = session
        self.state = state or AppState()
        self.state.workspace_path = session.workspace.id
        self._broadcaster = broadcaster
        self._on_state_change = on_state_change
        self._on_notification = on_notification
        self._tracker = CompletionTracker(session.workspace.id)
        # Snapshots of one category are diffed in the order they were taken.
        self._load_locks = {CATEGORY_EPICS: asyncio.Lock(), CATEGORY_TASKS: asyncio.Lock()}
        self._destroyed = False
        self._tasks: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Surface protocol
    # ------------------------------------------------------------------

    def is_destroyed(self) -> bool:
        return self._destroyed

    def deliver(self, workspace_id: str, event: ChangeEvent) -> None:
        if workspace_id != self.session.workspace.id or self._destroyed:
            return
        self._spawn(self.handle_change(event))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def attach(self) -> None:
        self._broadcaster.register(self.session.workspace.id, self)
        self.session.watcher.add_state_listener(self._on_watcher_state)
        self.state.watcher_state = self.session.watcher.state
        self._activity(f"opened {self.session.workspace.id}")
        await self.refresh()

    async def detach(self) -> None:
        self._destroyed = True
        self._broadcaster.unregister(self.session.workspace.id, self)
        self.session.watcher.remove_state_listener(self._on_watcher_state)
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def drain(self) -> None:
        """Wait for reloads scheduled by change events to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Intents
    # ------------------------------------------------------------------

    async def refresh(self) -> None:
        """Manual reload: runs even while a breaker category is open."""

        await self._load_epics(automatic=False)
        if self.state.selected_epic is not None:
            await self._load_tasks(automatic=False)

    async def select_epic(self, epic_id: str | None) -> None:
        self.state.selected_epic = epic_id
        self.state.tasks = []
        if epic_id is None:
            await self._notify()
            return
        await self._load_tasks(automatic=False)

    async def init_workspace(self) -> None:
        self._activity("running flowctl init")
        result = await self._tracked(CATEGORY_INIT, self.session.bridge.init())
        if self._apply_result(CATEGORY_INIT, result):
            self._activity("workspace initialized")
        await self._notify()

    async def handle_change(self, event: ChangeEvent) -> None:
        label = event.category.value + (f" {event.id}" if event.id else "")
        self._activity(f"change: {label}")
        if event.category in (ChangeCategory.EPIC, ChangeCategory.CONFIG):
            await self._load_epics(automatic=True)
        if self.state.selected_epic is not None and event.category in (
            ChangeCategory.TASK,
            ChangeCategory.CONFIG,
        ):
            await self._load_tasks(automatic=True)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _load_epics(self, *, automatic: bool) -> None:
        async with self._load_locks[CATEGORY_EPICS]:
            result = await self._tracked(
                CATEGORY_EPICS, self.session.bridge.list_epics(automatic=automatic)
            )
            if result is None:
                self._suppressed(CATEGORY_EPICS)
            elif self._apply_result(CATEGORY_EPICS, result):
                self.state.epics = list(result.data["epics"])
                self._publish(self._tracker.observe_epics(self.state.epics))
        await self._notify()

    async def _load_tasks(self, *, automatic: bool) -> None:
        epic_id = self.state.selected_epic
        if epic_id is None:
            return
        async with self._load_locks[CATEGORY_TASKS]:
            result = await self._tracked(
                CATEGORY_TASKS, self.session.bridge.list_tasks(epic_id, automatic=automatic)
            )
            if result is not None and result.error is None:
                # Diffed even when the selection moved on, so the baseline stays current.
                notifications = self._tracker.observe_tasks(epic_id, result.data["tasks"])
            else:
                notifications = []
            if self.state.selected_epic != epic_id:
                # Selection moved on while the call was in flight.
                self._publish(notifications)
                return
            if result is None:
                self._suppressed(CATEGORY_TASKS)
            elif self._apply_result(CATEGORY_TASKS, result, epic_id=epic_id):
                self.state.tasks = list(result.data["tasks"])
            self._publish(notifications)
        await self._notify()

    async def _tracked(
        self, category: str, call: Awaitable[CommandResult[Any] | None]
    ) -> CommandResult[Any] | None:
        self.state.busy.add(category)
        await self._notify()
        try:
            return await call
        finally:
            self.state.busy.discard(category)

    def _apply_result(
        self, category: str, result: CommandResult[Any], *, epic_id: str | None = None
    ) -> bool:
        if result.error is None:
            if self.state.last_error is not None and self.state.last_error.category == category:
                self.state.last_error = None
            return True
        breaker_open = self.session.bridge.breaker.is_open(category)
        advice = recovery_for(result.error, breaker_open=breaker_open)
        self.state.last_error = ErrorView(
            category=category,
            kind=result.error.kind.value,
            title=advice.title,
            description=advice.description,
            actions=tuple(action.value for action in advice.actions),
            auto_retry_disabled=advice.auto_retry_disabled,
            raw_output=advice.raw_output,
        )
        self._activity(f"{category} failed: {result.error.message}")
        self._publish(
            [
                flowctl_error_notification(
                    self.session.workspace.id, result.error.message, epic_id=epic_id
                )
            ]
        )
        return False

    def _suppressed(self, category: str) -> None:
        self.state.suppressed_reloads += 1
        self._activity(f"automatic {category} reload suppressed; press r to retry")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _on_watcher_state(self, watcher_state: WatcherState) -> None:
        self.state.watcher_state = watcher_state
        if watcher_state is WatcherState.WATCHING_PARENT:
            self._activity(".flow/ missing; press i to initialize")
        if not self._destroyed:
            self._spawn(self._notify())

    def _activity(self, text: str) -> None:
        self.state.activity.append(ActivityLine(text=text))

    def _publish(self, notifications: list[FlowNotification]) -> None:
        for notification in notifications:
            self.state.notifications.append(notification)
            self._activity(f"{notification.title}: {notification.body}")
            if self._on_notification is not None and not self._destroyed:
                self._on_notification(notification)

    def _spawn(self, coroutine: Awaitable[None]) -> None:
        task = asyncio.ensure_future(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("background reload failed", exc_info=task.exception())

    async def _notify(self) -> None:
        if self._on_state_change is not None:
            result = self._on_state_change()
            if asyncio.iscoroutine(result):
                await result


__all__ = ["NotificationCallback", "StateCallback", "TUIController"]
