"""Unit tests for CommandExecutor against a real child process.

Covers the process contract (argv, --json, cwd, stdin), timeout kill,
binary-not-found cache invalidation, output classification and the
output cap.
"""

from __future__ import annotations

import asyncio
import stat
import sys
import time
from collections.abc import Callable
from pathlib import Path

import pytest

from flowdesk.bridge import shapes
from flowdesk.bridge.executor import CommandExecutor
from flowdesk.bridge.resolver import BinaryResolver
from flowdesk.bridge.results import (
    BinaryNotFound,
    ErrorKind,
    MalformedOutput,
    NonZeroExit,
    SchemaViolation,
    Timeout,
)
from flowdesk.bridge.validator import ResponseValidator
from flowdesk.domain import Command, Workspace

MISSING_BINARY = "flowctl-definitely-not-installed-7f3a"


def _executor(**kwargs: object) -> CommandExecutor:
    resolver = kwargs.pop("resolver", None) or BinaryResolver()
    return CommandExecutor(resolver=resolver, **kwargs)  # type: ignore[arg-type]


@pytest.mark.unit
class TestProcessContract:
    @pytest.mark.asyncio
    async def test_appends_json_flag_and_runs_in_workspace_root(
        self, workspace: Workspace, calls: Callable[[], list[dict[str, object]]]
    ) -> None:
        result = await _executor().execute(
            workspace, Command(args=("epics",), category="epics"), shapes.EPIC_LIST
        )

        assert result.ok, result.error
        assert result.data["epics"][0]["id"] == "fn-1"
        (call,) = calls()
        assert call["argv"] == ["epics"]
        assert Path(str(call["cwd"])).resolve() == workspace.root

    @pytest.mark.asyncio
    async def test_arguments_are_passed_verbatim(
        self, workspace: Workspace, calls: Callable[[], list[dict[str, object]]]
    ) -> None:
        tricky = "fn-1; rm -rf / && echo $HOME"
        await _executor().execute(
            workspace, Command(args=("tasks", "--epic", tricky), category="tasks"), shapes.TASK_LIST
        )

        (call,) = calls()
        assert call["argv"] == ["tasks", "--epic", tricky]

    @pytest.mark.asyncio
    async def test_stdin_payload_reaches_child(
        self, workspace: Workspace, calls: Callable[[], list[dict[str, object]]]
    ) -> None:
        plan = "# Plan\n\n- step one\n- step två\n"
        result = await _executor().execute(
            workspace,
            Command(args=("epic", "set-plan", "fn-1", "--file", "-"), category="plan", stdin=plan),
            shapes.COMMAND_SUCCESS,
        )

        assert result.ok
        (call,) = calls()
        assert call["stdin"] == plan


@pytest.mark.unit
class TestFailureClassification:
    @pytest.mark.asyncio
    async def test_timeout_kills_the_child(
        self, workspace: Workspace, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "hang")
        started = time.monotonic()

        result = await _executor().execute(
            workspace,
            Command(args=("epics",), category="epics", timeout_seconds=0.5),
            shapes.EPIC_LIST,
        )

        assert time.monotonic() - started < 10
        assert isinstance(result.error, Timeout)
        assert result.error.timeout_seconds == 0.5
        assert result.error.command == "flowctl epics"

    @pytest.mark.asyncio
    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX process groups")
    async def test_timeout_kills_descendants_holding_the_pipes(self, tmp_path: Path) -> None:
        root = tmp_path / "wrapped"
        binary = root / ".flow" / "bin" / "flowctl"
        binary.parent.mkdir(parents=True)
        # A wrapper that never execs: its background child keeps stdout open.
        binary.write_text("#!/bin/sh\nsleep 30 &\nsleep 30\n", encoding="utf-8")
        binary.chmod(binary.stat().st_mode | stat.S_IXUSR)
        started = time.monotonic()

        result = await _executor().execute(
            Workspace(root),
            Command(args=("epics",), category="epics", timeout_seconds=0.5),
            shapes.EPIC_LIST,
        )

        assert isinstance(result.error, Timeout)
        assert time.monotonic() - started < 3.0

    @pytest.mark.asyncio
    async def test_unreachable_binary_invalidates_the_cached_path(
        self, workspace: Workspace
    ) -> None:
        resolver = BinaryResolver(binary_name=MISSING_BINARY)
        local = resolver.resolve(workspace)
        assert local == str(workspace.root / ".flow" / "bin" / "flowctl")

        (workspace.root / ".flow" / "bin" / "flowctl").unlink()
        result = await _executor(resolver=resolver).execute(
            workspace, Command(args=("epics",), category="epics"), shapes.EPIC_LIST
        )

        assert isinstance(result.error, BinaryNotFound)
        assert result.error.binary == local
        assert resolver.cached(workspace) is None
        assert resolver.resolve(workspace) == MISSING_BINARY

    @pytest.mark.asyncio
    async def test_binary_missing_from_path(self, tmp_path: Path) -> None:
        root = tmp_path / "bare"
        root.mkdir()

        result = await _executor(resolver=BinaryResolver(binary_name=MISSING_BINARY)).execute(
            Workspace(root), Command(args=("epics",), category="epics"), shapes.EPIC_LIST
        )

        assert isinstance(result.error, BinaryNotFound)
        assert result.error.kind is ErrorKind.BINARY_NOT_FOUND

    @pytest.mark.asyncio
    async def test_nonzero_exit_carries_stderr(
        self, workspace: Workspace, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "fail")

        result = await _executor().execute(
            workspace, Command(args=("start", "fn-1.1"), category="start"), shapes.COMMAND_SUCCESS
        )

        assert isinstance(result.error, NonZeroExit)
        assert result.error.exit_code == 2
        assert "boom: start fn-1.1" in result.error.stderr

    @pytest.mark.asyncio
    async def test_killed_child_reports_signal(
        self, workspace: Workspace, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "signal")

        result = await _executor().execute(
            workspace, Command(args=("epics",), category="epics"), shapes.EPIC_LIST
        )

        assert isinstance(result.error, NonZeroExit)
        assert result.error.exit_code < 0
        assert "SIGKILL" in result.error.message

    @pytest.mark.asyncio
    async def test_garbage_output_is_malformed(
        self, workspace: Workspace, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "garbage")

        result = await _executor().execute(
            workspace, Command(args=("epics",), category="epics"), shapes.EPIC_LIST
        )

        assert isinstance(result.error, MalformedOutput)
        assert result.error.snippet.startswith("Traceback")

    @pytest.mark.asyncio
    async def test_wrong_shape_is_schema_violation(
        self, workspace: Workspace, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "bad_shape")

        result = await _executor().execute(
            workspace, Command(args=("epics",), category="epics"), shapes.EPIC_LIST
        )

        assert isinstance(result.error, SchemaViolation)
        paths = {violation.path for violation in result.error.violations}
        assert "$.epics" in paths
        assert "$.count" in paths

    @pytest.mark.asyncio
    async def test_output_beyond_cap_is_dropped(
        self, workspace: Workspace, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "huge")
        executor = _executor(
            validator=ResponseValidator(snippet_bytes=16), max_output_bytes=1024
        )

        result = await executor.execute(
            workspace, Command(args=("epics",), category="epics"), shapes.EPIC_LIST
        )

        assert isinstance(result.error, MalformedOutput)
        assert result.error.snippet == "x" * 16

    @pytest.mark.asyncio
    async def test_missing_workspace_root_is_not_found(self, tmp_path: Path) -> None:
        result = await _executor().execute(
            Workspace(tmp_path / "gone"),
            Command(args=("epics",), category="epics"),
            shapes.EPIC_LIST,
        )

        assert isinstance(result.error, BinaryNotFound)


@pytest.mark.unit
class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_execute_reaps_child(
        self, workspace: Workspace, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("FAKE_FLOWCTL_MODE", "hang")
        task = asyncio.create_task(
            _executor().execute(
                workspace,
                Command(args=("epics",), category="epics", timeout_seconds=20),
                shapes.EPIC_LIST,
            )
        )
        await asyncio.sleep(0.5)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


@pytest.mark.unit
def test_constructor_rejects_bad_limits() -> None:
    resolver = BinaryResolver()
    with pytest.raises(ValueError, match="max_output_bytes"):
        CommandExecutor(resolver=resolver, max_output_bytes=0)
    with pytest.raises(ValueError, match="json_flag"):
        CommandExecutor(resolver=resolver, json_flag=" ")
