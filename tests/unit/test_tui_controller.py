"""Unit tests for the TUI controller: change events and intents to AppState.

Runs against the scripted flowctl from ``conftest`` with watching disabled,
so every reload is triggered explicitly.
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from flowdesk.bridge.resolver import BinaryResolver
from flowdesk.domain import ChangeCategory, ChangeEvent, WatcherState
from flowdesk.notifications import FlowNotification, NotificationPriority, NotificationType
from flowdesk.ui.tui.controller import TUIController
from flowdesk.ui.tui.state import AppState
from flowdesk.workspace import WorkspaceRegistry

CallLog = Callable[[], list[dict[str, object]]]
SetStatuses = Callable[[dict[str, str]], None]


async def _controller(
    registry: WorkspaceRegistry, root: Path, **kwargs: object
) -> TUIController:
    session = await registry.activate(root, watch=False)
    controller = TUIController(session, broadcaster=registry.broadcaster, **kwargs)  # type: ignore[arg-type]
    await controller.attach()
    return controller


def _argvs(calls: CallLog) -> list[list[str]]:
    return [list(call["argv"]) for call in calls()]  # type: ignore[call-overload]


@pytest.mark.unit
class TestAttach:
    """Attaching registers the surface and performs the first load."""

    @pytest.mark.asyncio
    async def test_attach_loads_epics_and_registers(self, flow_root: Path, calls: CallLog) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        notifications: list[int] = []

        async def on_change() -> None:
            notifications.append(len(notifications))

        controller = await _controller(registry, flow_root, on_state_change=on_change)

        assert [epic["id"] for epic in controller.state.epics] == ["fn-1"]
        assert controller.state.workspace_path == str(flow_root.resolve())
        assert registry.broadcaster.surfaces(controller.session.workspace.id) == (controller,)
        assert notifications
        assert _argvs(calls) == [["epics"]]
        assert controller.state.busy == set()
        await controller.detach()
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_custom_state_is_kept(self, flow_root: Path) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        state = AppState(selected_epic="fn-1")

        controller = await _controller(registry, flow_root, state=state)

        assert controller.state is state
        assert [task["id"] for task in state.tasks] == ["fn-1.1", "fn-1.2"]
        await controller.detach()
        await registry.close_all()


@pytest.mark.unit
class TestIntents:
    """Manual intents always reach flowctl."""

    @pytest.mark.asyncio
    async def test_select_epic_loads_and_clears_tasks(self, flow_root: Path) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        controller = await _controller(registry, flow_root)

        await controller.select_epic("fn-1")
        assert [task["id"] for task in controller.state.tasks] == ["fn-1.1", "fn-1.2"]

        await controller.select_epic(None)
        assert controller.state.tasks == []
        assert controller.state.selected_epic is None
        await controller.detach()
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_init_workspace_runs_init(self, flow_root: Path, calls: CallLog) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        controller = await _controller(registry, flow_root)

        await controller.init_workspace()

        assert _argvs(calls)[-1] == ["init"]
        assert controller.state.activity[-1].text == "workspace initialized"
        await controller.detach()
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_missing_binary_offers_install_guidance(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("PATH", str(tmp_path / "empty-bin"))
        root = tmp_path / "bare"
        root.mkdir()
        registry = WorkspaceRegistry(resolver=BinaryResolver())

        controller = await _controller(registry, root)

        error = controller.state.last_error
        assert error is not None
        assert error.kind == "binary_not_found"
        assert "install_guidance" in error.actions
        assert controller.state.epics == []
        await controller.detach()
        await registry.close_all()


@pytest.mark.unit
class TestChangeEvents:
    """Change events become automatic reloads of the affected lists."""

    @pytest.mark.asyncio
    async def test_epic_change_reloads_epics_only(self, flow_root: Path, calls: CallLog) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        controller = await _controller(registry, flow_root)

        await controller.handle_change(ChangeEvent(ChangeCategory.EPIC, "fn-1"))

        assert _argvs(calls) == [["epics"], ["epics"]]
        await controller.detach()
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_task_change_reloads_selected_epic_tasks(
        self, flow_root: Path, calls: CallLog
    ) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        controller = await _controller(registry, flow_root)

        await controller.handle_change(ChangeEvent(ChangeCategory.TASK, "fn-1.1"))
        assert _argvs(calls) == [["epics"]]

        await controller.select_epic("fn-1")
        await controller.handle_change(ChangeEvent(ChangeCategory.TASK, "fn-1.1"))
        assert _argvs(calls)[-1] == ["tasks", "--epic", "fn-1"]
        assert len(_argvs(calls)) == 3
        await controller.detach()
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_config_change_reloads_both(self, flow_root: Path, calls: CallLog) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        controller = await _controller(registry, flow_root, state=AppState(selected_epic="fn-1"))

        await controller.handle_change(ChangeEvent(ChangeCategory.CONFIG))

        assert _argvs(calls)[-2:] == [["epics"], ["tasks", "--epic", "fn-1"]]
        await controller.detach()
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_broadcast_delivery_schedules_a_reload(
        self, flow_root: Path, calls: CallLog
    ) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        controller = await _controller(registry, flow_root)

        delivered = registry.broadcaster.broadcast(
            controller.session.workspace.id, ChangeEvent(ChangeCategory.EPIC, "fn-1")
        )
        await controller.drain()

        assert delivered == 1
        assert _argvs(calls) == [["epics"], ["epics"]]
        await controller.detach()
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_open_breaker_suppresses_automatic_reloads_but_not_refresh(
        self, flow_root: Path, calls: CallLog, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "fail")
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        controller = await _controller(registry, flow_root)
        event = ChangeEvent(ChangeCategory.EPIC, "fn-1")

        await controller.handle_change(event)
        await controller.handle_change(event)
        error = controller.state.last_error
        assert error is not None and error.kind == "non_zero_exit"
        assert error.auto_retry_disabled
        assert len(calls()) == 3

        await controller.handle_change(event)
        assert len(calls()) == 3
        assert controller.state.suppressed_reloads == 1
        assert "suppressed" in controller.state.status_text()

        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "ok")
        await controller.refresh()
        assert controller.state.last_error is None
        assert [epic["id"] for epic in controller.state.epics] == ["fn-1"]
        assert not registry.breaker.is_open("epics")
        await controller.detach()
        await registry.close_all()


@pytest.mark.unit
class TestLifecycle:
    @pytest.mark.asyncio
    async def test_watcher_state_is_mirrored(self, tmp_path: Path) -> None:
        root = tmp_path / "bare"
        root.mkdir()
        registry = WorkspaceRegistry(resolver=BinaryResolver(binary_name="flowctl-not-here-5d1e"))
        controller = await _controller(registry, root)

        await controller.session.watcher.start()

        assert controller.state.watcher_state is WatcherState.WATCHING_PARENT
        assert controller.state.flow_missing
        assert any("press i to initialize" in line.text for line in controller.state.activity)
        await controller.detach()
        await registry.close_all()
        assert controller.state.watcher_state is WatcherState.WATCHING_PARENT

    @pytest.mark.asyncio
    async def test_detach_stops_delivery(self, flow_root: Path, calls: CallLog) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        controller = await _controller(registry, flow_root)

        await controller.detach()
        controller.deliver(controller.session.workspace.id, ChangeEvent(ChangeCategory.EPIC))
        await controller.drain()

        assert controller.is_destroyed()
        assert registry.broadcaster.surfaces(controller.session.workspace.id) == ()
        assert _argvs(calls) == [["epics"]]
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_events_for_other_workspaces_are_ignored(
        self, flow_root: Path, calls: CallLog
    ) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        controller = await _controller(registry, flow_root)

        controller.deliver("/somewhere/else", ChangeEvent(ChangeCategory.EPIC))
        await controller.drain()

        assert _argvs(calls) == [["epics"]]
        await controller.detach()
        await registry.close_all()


@pytest.mark.unit
class TestNotifications:
    """Reloads are diffed against the previous lists and published."""

    @pytest.mark.asyncio
    async def test_task_completion_is_published(
        self, flow_root: Path, task_statuses: SetStatuses
    ) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        received: list[FlowNotification] = []
        controller = await _controller(
            registry, flow_root, state=AppState(selected_epic="fn-1"), on_notification=received.append
        )
        assert received == []

        task_statuses({"fn-1.1": "done"})
        await controller.handle_change(ChangeEvent(ChangeCategory.TASK, "fn-1.1"))

        assert [(n.type, n.task_id) for n in received] == [(NotificationType.TASK_COMPLETED, "fn-1.1")]
        assert list(controller.state.notifications) == received
        assert controller.state.activity[-1].text == "Task Completed: Task fn-1.1"
        await controller.detach()
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_finished_epic_is_announced_once(
        self, flow_root: Path, task_statuses: SetStatuses
    ) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        received: list[FlowNotification] = []
        controller = await _controller(
            registry, flow_root, state=AppState(selected_epic="fn-1"), on_notification=received.append
        )

        task_statuses({"fn-1.1": "done", "fn-1.2": "done"})
        await controller.handle_change(ChangeEvent(ChangeCategory.CONFIG))
        await controller.refresh()

        assert [n.type for n in received] == [
            NotificationType.EPIC_REVIEW_READY,
            NotificationType.TASK_COMPLETED,
            NotificationType.TASK_COMPLETED,
        ]
        assert received[0].body == "All tasks complete: First epic"
        await controller.detach()
        await registry.close_all()

    @pytest.mark.asyncio
    async def test_failed_reload_publishes_flowctl_error(
        self, flow_root: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        registry = WorkspaceRegistry(resolver=BinaryResolver())
        received: list[FlowNotification] = []
        controller = await _controller(registry, flow_root, on_notification=received.append)

        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "fail")
        await controller.refresh()

        assert len(received) == 1
        error = received[0]
        assert error.type is NotificationType.FLOWCTL_ERROR
        assert error.priority is NotificationPriority.HIGH
        assert "boom: epics" in error.body
        await controller.detach()
        await registry.close_all()
