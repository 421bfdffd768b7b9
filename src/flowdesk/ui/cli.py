"""Command-line interface router for flowdesk."""

from __future__ import annotations

import argparse
import asyncio
import inspect
import json
import logging
import os
import re
import signal
import sys
from collections.abc import Awaitable, Callable, Mapping, Sequence
from contextlib import suppress
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Final, TypeGuard

from flowdesk.bridge import BinaryNotFound, CommandResult, FlowBridge, recovery_for
from flowdesk.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from flowdesk.domain import ChangeCategory, ChangeEvent, TaskStatus, WatcherState, Workspace
from flowdesk.main import ExitCode
from flowdesk.notifications import CompletionTracker, FlowNotification, flowctl_error_notification
from flowdesk.observability import (
    logging_config_from_settings,
    setup_structured_logging,
    shutdown_logging,
)
from flowdesk.ui.render import CLIRenderer, create_renderer
from flowdesk.workspace import WorkspaceRegistry, WorkspaceSession

logger = logging.getLogger(__name__)

# flowctl task ids carry a ``.<n>`` suffix on the epic id (``fn-1.2``).
_TASK_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"\.\d+$")


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = int(ExitCode.COMMAND_FAILED)

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="flowdesk",
        description=(
            "flowdesk: drive a flowctl workspace from the terminal.\n\n"
            "Common workflows:\n"
            "  flowdesk epics                   List epics as JSON\n"
            "  flowdesk tasks --epic fn-1       List the tasks of one epic\n"
            "  flowdesk status fn-1.2 done      Mark a task done\n"
            "  flowdesk watch                   Stream .flow/ change events\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--workspace",
        "-w",
        default=".",
        help="Workspace root containing .flow/ (default: current working directory).",
    )
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to flowdesk TOML config (default: ./flowdesk.toml if present).",
    )
    common.add_argument(
        "--timeout",
        dest="timeout_seconds",
        type=float,
        default=None,
        help="Per-command flowctl timeout in seconds (overrides config).",
    )
    common.add_argument(
        "--log-level",
        default=None,
        help="Structured log level (overrides config).",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # reads ---------------------------------------------------------------
    epics_parser = subparsers.add_parser("epics", parents=[common], help="List epics")
    epics_parser.set_defaults(handler=_cmd_epics)

    tasks_parser = subparsers.add_parser("tasks", parents=[common], help="List tasks of an epic")
    tasks_parser.add_argument("--epic", required=True, help="Epic id, e.g. fn-1")
    tasks_parser.set_defaults(handler=_cmd_tasks)

    show_parser = subparsers.add_parser(
        "show",
        parents=[common],
        help="Show one epic or task",
        description=(
            "Show an epic (fn-1) or a task (fn-1.2) as JSON.\n\n"
            "Examples:\n"
            "  flowdesk show fn-1\n"
            "  flowdesk show fn-1.2\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    show_parser.add_argument("id", help="Epic or task id")
    show_parser.set_defaults(handler=_cmd_show)

    # writes --------------------------------------------------------------
    start_parser = subparsers.add_parser("start", parents=[common], help="Start a task")
    start_parser.add_argument("id", help="Task id")
    start_parser.set_defaults(handler=_cmd_start)

    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Change a task's status",
        description=(
            "Change a task's status through the matching flowctl command.\n"
            "Blocking needs a reason and is not supported here.\n\n"
            "Examples:\n"
            "  flowdesk status fn-1.2 in_progress\n"
            "  flowdesk status fn-1.2 done\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    status_parser.add_argument("id", help="Task id")
    status_parser.add_argument("status", choices=[status.value for status in TaskStatus])
    status_parser.set_defaults(handler=_cmd_status)

    init_parser = subparsers.add_parser("init", parents=[common], help="Create .flow/ in the workspace")
    init_parser.set_defaults(handler=_cmd_init)

    plan_parser = subparsers.add_parser(
        "plan",
        parents=[common],
        help="Replace an epic's plan",
        description=(
            "Replace an epic's plan with the contents of a file, or stdin with '-'.\n\n"
            "Examples:\n"
            "  flowdesk plan fn-1 --file plan.md\n"
            "  cat plan.md | flowdesk plan fn-1 --file -\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    plan_parser.add_argument("epic", help="Epic id")
    plan_parser.add_argument("--file", dest="plan_file", required=True, help="Plan file or '-'")
    plan_parser.set_defaults(handler=_cmd_plan)

    # surfaces ------------------------------------------------------------
    watch_parser = subparsers.add_parser(
        "watch",
        parents=[common],
        help="Print one JSON line per .flow/ change",
        description=(
            "Watch the workspace's .flow/ directory and print one JSON line per\n"
            "classified change, plus watcher state transitions, until interrupted.\n"
            "Each change reloads the affected epics or tasks; completed tasks,\n"
            "epics ready for review and flowctl errors are printed as\n"
            "{\"notification\": ...} lines.\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    watch_parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stop after this many seconds instead of waiting for Ctrl+C.",
    )
    watch_parser.add_argument(
        "--poll",
        action="store_true",
        default=False,
        help="Use polling instead of native file system notifications.",
    )
    watch_parser.set_defaults(handler=_cmd_watch)

    tui_parser = subparsers.add_parser(
        "tui",
        parents=[common],
        help="Launch the interactive terminal UI",
        description="Requires optional TUI dependencies (pip install -e '.[tui]').",
    )
    tui_parser.set_defaults(handler=_cmd_tui)

    config_parser = subparsers.add_parser(
        "config", parents=[common], help="Show effective configuration as JSON"
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return int(ExitCode.CONFIG_ERROR)

    renderer = create_renderer(no_color=_flag(namespace, "no_color"))
    try:
        config = _load_effective_config(namespace)
        logging_handle = setup_structured_logging(
            logging_config_from_settings(config["observability"], session_id=_session_id())
        )
        try:
            if inspect.iscoroutinefunction(handler):
                result = asyncio.run(handler(namespace, config, renderer))
            else:
                result = handler(namespace, config, renderer)
        finally:
            shutdown_logging(logging_handle)
    except CLIError as exc:
        renderer.error(str(exc))
        return exc.exit_code
    return int(result)


def main(argv: Sequence[str] | None = None) -> int:
    return run_cli(argv)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


async def _cmd_epics(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    return await _run_bridge(args, config, renderer, lambda bridge: bridge.list_epics())


async def _cmd_tasks(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    epic_id = _require_str(args.epic, "epic")
    return await _run_bridge(args, config, renderer, lambda bridge: bridge.list_tasks(epic_id))


async def _cmd_show(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    item_id = _require_str(args.id, "id")
    if _TASK_ID_PATTERN.search(item_id):
        return await _run_bridge(args, config, renderer, lambda bridge: bridge.show_task(item_id))
    return await _run_bridge(args, config, renderer, lambda bridge: bridge.show_epic(item_id))


async def _cmd_start(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    task_id = _require_str(args.id, "id")
    return await _run_bridge(args, config, renderer, lambda bridge: bridge.start_task(task_id))


async def _cmd_status(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    task_id = _require_str(args.id, "id")
    status = _require_str(args.status, "status")
    return await _run_bridge(
        args, config, renderer, lambda bridge: bridge.update_task_status(task_id, status)
    )


async def _cmd_init(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    return await _run_bridge(args, config, renderer, lambda bridge: bridge.init())


async def _cmd_plan(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    epic_id = _require_str(args.epic, "epic")
    plan = _read_plan(_require_str(args.plan_file, "file"))
    return await _run_bridge(args, config, renderer, lambda bridge: bridge.set_epic_plan(epic_id, plan))


async def _cmd_watch(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    root = _workspace_root(args)
    settings = _with_polling(config) if _flag(args, "poll") else config
    registry = WorkspaceRegistry(settings=settings)
    session = await registry.open(root, watch=False)
    workspace_id = session.workspace.id
    surface = _JsonLinesSurface(session)

    def _on_state(state: WatcherState) -> None:
        _emit_json({"workspace": workspace_id, "watcher_state": state.value})

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        # Not available on every platform or outside the main thread.
        with suppress(NotImplementedError, RuntimeError, ValueError):
            loop.add_signal_handler(signum, stop.set)

    registry.broadcaster.register(workspace_id, surface)
    session.watcher.add_state_listener(_on_state)
    try:
        await surface.seed()
        await session.watcher.start()
        if args.duration is None:
            await stop.wait()
        else:
            with suppress(TimeoutError):
                await asyncio.wait_for(stop.wait(), timeout=args.duration)
    finally:
        await surface.aclose()
        for signum in (signal.SIGINT, signal.SIGTERM):
            with suppress(NotImplementedError, RuntimeError, ValueError):
                loop.remove_signal_handler(signum)
        await registry.close_all()
    return int(ExitCode.SUCCESS)


def _cmd_tui(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    from flowdesk.ui.tui import run_tui

    return run_tui(_workspace_root(args), settings=config, no_color=_flag(args, "no_color"))


def _cmd_config(args: argparse.Namespace, config: Mapping[str, Any], renderer: CLIRenderer) -> int:
    renderer.text(dump_effective_config(config))
    return int(ExitCode.SUCCESS)


# ---------------------------------------------------------------------------
# Bridge plumbing
# ---------------------------------------------------------------------------

BridgeCall = Callable[[FlowBridge], Awaitable[CommandResult[Any] | None]]


async def _run_bridge(
    args: argparse.Namespace,
    config: Mapping[str, Any],
    renderer: CLIRenderer,
    call: BridgeCall,
) -> int:
    registry = WorkspaceRegistry(settings=config)
    try:
        session = await registry.open(_workspace_root(args), watch=False)
        result = await call(session.bridge)
    finally:
        await registry.close_all()
    # Manual calls are never suppressed by the breaker.
    assert result is not None  # noqa: S101
    return _report(result, renderer)


def _report(result: CommandResult[Any], renderer: CLIRenderer) -> int:
    if result.error is None:
        renderer.text(json.dumps(result.data, indent=2, sort_keys=True, ensure_ascii=False))
        return int(ExitCode.SUCCESS)
    renderer.error(result.error.message, hint=recovery_for(result.error).hint())
    if isinstance(result.error, BinaryNotFound):
        return int(ExitCode.BINARY_NOT_FOUND)
    return int(ExitCode.COMMAND_FAILED)


class _JsonLinesSurface:
    """Broadcaster surface that prints each change as one JSON line.

    Every change also schedules an automatic reload of what it touched; the
    reloaded lists are diffed against the previous ones and the resulting
    notifications are printed as lines of their own.
    """

    def __init__(self, session: WorkspaceSession) -> None:
        self._session = session
        self._tracker = CompletionTracker(session.workspace.id)
        self._epic_ids: list[str] = []
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    async def seed(self) -> None:
        """Load the baseline every later reload is diffed against."""

        async with self._lock:
            await self._reload_epics(automatic=False)
            for epic_id in self._epic_ids:
                await self._reload_tasks(epic_id, automatic=False)

    async def aclose(self) -> None:
        self._closed = True
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    def is_destroyed(self) -> bool:
        return self._closed

    def deliver(self, workspace_id: str, event: ChangeEvent) -> None:
        _emit_json({"workspace": workspace_id, "event": event.to_payload()})
        task = asyncio.ensure_future(self._reload(event))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    async def _reload(self, event: ChangeEvent) -> None:
        # Snapshots are diffed in the order the changes arrived.
        async with self._lock:
            if event.category in (ChangeCategory.EPIC, ChangeCategory.CONFIG):
                await self._reload_epics(automatic=True)
            if event.category is ChangeCategory.TASK and event.id:
                await self._reload_tasks(_TASK_ID_PATTERN.sub("", event.id), automatic=True)
            elif event.category is ChangeCategory.CONFIG:
                for epic_id in self._epic_ids:
                    await self._reload_tasks(epic_id, automatic=True)

    async def _reload_epics(self, *, automatic: bool) -> None:
        result = await self._session.bridge.list_epics(automatic=automatic)
        if self._check(result):
            epics = result.data["epics"]
            self._epic_ids = [str(epic["id"]) for epic in epics]
            self._emit(self._tracker.observe_epics(epics))

    async def _reload_tasks(self, epic_id: str, *, automatic: bool) -> None:
        result = await self._session.bridge.list_tasks(epic_id, automatic=automatic)
        if self._check(result, epic_id=epic_id):
            self._emit(self._tracker.observe_tasks(epic_id, result.data["tasks"]))

    def _check(
        self, result: CommandResult[Any] | None, *, epic_id: str | None = None
    ) -> TypeGuard[CommandResult[Any]]:
        if result is None:
            logger.info("automatic reload suppressed by open breaker", extra={"epic": epic_id})
            return False
        if result.error is not None:
            self._emit(
                [
                    flowctl_error_notification(
                        self._session.workspace.id, result.error.message, epic_id=epic_id
                    )
                ]
            )
            return False
        return True

    def _emit(self, notifications: list[FlowNotification]) -> None:
        for notification in notifications:
            _emit_json(
                {"workspace": notification.workspace_id, "notification": notification.to_payload()}
            )

    def _task_done(self, task: asyncio.Task[None]) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("watch reload failed", exc_info=task.exception())


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False), flush=True)


# ---------------------------------------------------------------------------
# Helpers: config, paths, input
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    overrides: dict[str, object] = {
        "bridge.timeout_seconds": getattr(args, "timeout_seconds", None),
        "observability.log_level": _optional_str(getattr(args, "log_level", None)),
    }
    try:
        return load_config(config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=int(ExitCode.CONFIG_ERROR)) from exc


def _with_polling(config: Mapping[str, Any]) -> dict[str, Any]:
    updated = dict(config)
    updated["watch"] = {**config["watch"], "force_polling": True}
    return updated


def _workspace_root(args: argparse.Namespace) -> Path:
    raw = _require_str(getattr(args, "workspace", None), "workspace")
    workspace = Workspace(Path(raw))
    if not workspace.root.is_dir():
        raise CLIError(
            f"workspace is not a directory: {workspace.root}",
            exit_code=int(ExitCode.CONFIG_ERROR),
        )
    return workspace.root


def _read_plan(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source).expanduser()
    try:
        return path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"unable to read plan file {path}: {exc}", exit_code=int(ExitCode.CONFIG_ERROR)) from exc


def _session_id() -> str:
    stamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%SZ")
    return f"cli-{stamp}-{os.getpid()}"


def _require_str(value: object, name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise CLIError(f"{name} must be a non-empty string", exit_code=int(ExitCode.CONFIG_ERROR))
    return value.strip()


def _optional_str(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "main", "run_cli"]
