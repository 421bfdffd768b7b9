"""Unit tests for FlowBridge: argv mapping, breaker gating, write routing."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from flowdesk.bridge.breaker import CircuitBreaker
from flowdesk.bridge.client import BLOCKED_GUIDANCE, DONE_SUMMARY, FlowBridge
from flowdesk.bridge.executor import CommandExecutor
from flowdesk.bridge.resolver import BinaryResolver
from flowdesk.bridge.results import NonZeroExit
from flowdesk.bridge.serializer import WriteSerializer
from flowdesk.domain import TaskStatus, Workspace

CallLog = Callable[[], list[dict[str, object]]]


def _bridge(workspace: Workspace, *, breaker: CircuitBreaker | None = None) -> FlowBridge:
    return FlowBridge(
        workspace,
        executor=CommandExecutor(resolver=BinaryResolver()),
        serializer=WriteSerializer(),
        breaker=breaker or CircuitBreaker(),
        timeout_seconds=5.0,
    )


@pytest.mark.unit
class TestCommandMapping:
    @pytest.mark.asyncio
    async def test_reads(self, workspace: Workspace, calls: CallLog) -> None:
        bridge = _bridge(workspace)

        epics = await bridge.list_epics()
        tasks = await bridge.list_tasks("fn-1")
        epic = await bridge.show_epic("fn-1")
        task = await bridge.show_task("fn-1.2")

        assert epics is not None and epics.ok
        assert tasks is not None and [t["id"] for t in tasks.data["tasks"]] == ["fn-1.1", "fn-1.2"]
        assert epic is not None and epic.data["id"] == "fn-1"
        assert task is not None and task.data["epic"] == "fn-1"
        assert [call["argv"] for call in calls()] == [
            ["epics"],
            ["tasks", "--epic", "fn-1"],
            ["show", "fn-1"],
            ["show", "fn-1.2"],
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("status", "argv"),
        [
            (TaskStatus.TODO, ["task", "reset", "fn-1.2"]),
            (TaskStatus.IN_PROGRESS, ["start", "fn-1.2"]),
            ("done", ["done", "fn-1.2", "--summary", DONE_SUMMARY, "--force"]),
        ],
    )
    async def test_status_changes(
        self, workspace: Workspace, calls: CallLog, status: str, argv: list[str]
    ) -> None:
        result = await _bridge(workspace).update_task_status("fn-1.2", status)

        assert result.ok
        assert calls()[-1]["argv"] == argv

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["blocked", "archived"])
    async def test_unsupported_status_fails_without_spawning(
        self, workspace: Workspace, calls: CallLog, status: str
    ) -> None:
        breaker = CircuitBreaker(threshold=1)
        result = await _bridge(workspace, breaker=breaker).update_task_status("fn-1.2", status)

        assert isinstance(result.error, NonZeroExit)
        assert result.error.exit_code == 1
        if status == "blocked":
            assert result.error.stderr == BLOCKED_GUIDANCE
        else:
            assert "archived" in result.error.stderr
        assert calls() == []
        assert breaker.snapshot() == {}

    @pytest.mark.asyncio
    async def test_plan_goes_through_stdin(self, workspace: Workspace, calls: CallLog) -> None:
        result = await _bridge(workspace).set_epic_plan("fn-1", "## Plan\nship it\n")

        assert result.ok
        (call,) = calls()
        assert call["argv"] == ["epic", "set-plan", "fn-1", "--file", "-"]
        assert call["stdin"] == "## Plan\nship it\n"

    @pytest.mark.asyncio
    async def test_start_and_init(self, workspace: Workspace, calls: CallLog) -> None:
        bridge = _bridge(workspace)

        assert (await bridge.start_task("fn-1.1")).ok
        assert (await bridge.init()).ok
        assert [call["argv"] for call in calls()] == [["start", "fn-1.1"], ["init"]]


@pytest.mark.unit
class TestBreakerGating:
    @pytest.mark.asyncio
    async def test_automatic_calls_are_suppressed_once_open(
        self, workspace: Workspace, calls: CallLog, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "fail")
        breaker = CircuitBreaker()
        bridge = _bridge(workspace, breaker=breaker)

        for _ in range(3):
            result = await bridge.list_epics(automatic=True)
            assert result is not None and not result.ok
        assert breaker.is_open("epics")

        assert await bridge.list_epics(automatic=True) is None
        assert len(calls()) == 3

    @pytest.mark.asyncio
    async def test_manual_call_runs_while_open_and_success_resets(
        self, workspace: Workspace, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        breaker = CircuitBreaker()
        for _ in range(3):
            breaker.record_failure("epics")
        bridge = _bridge(workspace, breaker=breaker)

        result = await bridge.list_epics()

        assert result is not None and result.ok
        assert not breaker.is_open("epics")

    @pytest.mark.asyncio
    async def test_open_category_does_not_gate_others(self, workspace: Workspace) -> None:
        breaker = CircuitBreaker()
        for _ in range(3):
            breaker.record_failure("epics")

        result = await _bridge(workspace, breaker=breaker).list_tasks("fn-1", automatic=True)

        assert result is not None and result.ok


@pytest.mark.unit
class TestWriteRouting:
    @pytest.mark.asyncio
    async def test_concurrent_writes_do_not_overlap(
        self, workspace: Workspace, calls: CallLog, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_DELAY", "0.3")
        bridge = _bridge(workspace)

        first, second = await asyncio.gather(bridge.start_task("fn-1.1"), bridge.init())

        assert first.ok and second.ok
        a, b = calls()
        assert a["argv"] == ["start", "fn-1.1"]
        assert float(a["end"]) <= float(b["start"])
