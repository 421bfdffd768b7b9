"""Typed flowctl operations for one workspace.

``FlowBridge`` is the only entry point UI code uses. Reads go straight to the
executor and may overlap; writes pass through the workspace's
``WriteSerializer``. Every outcome updates the shared ``CircuitBreaker``:
success resets the command's category, a classified error counts against it.
An *automatic* call (watcher-driven reload, background refresh) is not even
spawned while its category is open; a *manual* call always runs.
"""

from __future__ import annotations

import itertools
import logging
from typing import TYPE_CHECKING, Any, Final

from flowdesk.bridge import shapes
from flowdesk.bridge.breaker import CircuitBreaker
from flowdesk.bridge.results import CommandResult, NonZeroExit
from flowdesk.constants import DEFAULT_TIMEOUT_SECONDS
from flowdesk.domain import Command, TaskStatus
from flowdesk.observability.logging import correlation_scope

if TYPE_CHECKING:
    from flowdesk.bridge.executor import CommandExecutor
    from flowdesk.bridge.serializer import WriteSerializer
    from flowdesk.bridge.shapes import Shape
    from flowdesk.domain import Workspace

logger = logging.getLogger(__name__)

DONE_SUMMARY: Final[str] = "Status changed via flowdesk"
BLOCKED_GUIDANCE: Final[str] = (
    "Blocking a task requires a reason. Use flowctl block with a reason file instead."
)

# Breaker categories, one per kind of flowctl call.
CATEGORY_EPICS: Final[str] = "epics"
CATEGORY_TASKS: Final[str] = "tasks"
CATEGORY_SHOW: Final[str] = "show"
CATEGORY_START: Final[str] = "start"
CATEGORY_STATUS: Final[str] = "status"
CATEGORY_PLAN: Final[str] = "plan"
CATEGORY_INIT: Final[str] = "init"

_command_ids = itertools.count(1)


class FlowBridge:
    def __init__(
        self,
        workspace: Workspace,
        *,
        executor: CommandExecutor,
        serializer: WriteSerializer,
        breaker: CircuitBreaker | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._workspace = workspace
        self._executor = executor
        self._serializer = serializer
        self._breaker = breaker or CircuitBreaker()
        self._timeout_seconds = timeout_seconds

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def call(
        self,
        command: Command,
        shape: Shape,
        *,
        write: bool = False,
        automatic: bool = False,
    ) -> CommandResult[Any] | None:
        """Run ``command``; return ``None`` only for a suppressed automatic call."""

        if automatic and self._breaker.is_open(command.category):
            logger.info(
                "automatic call suppressed by open circuit",
                extra={"breaker_category": command.category, "workspace": self._workspace.id},
            )
            return None

        command_id = f"{command.category}-{next(_command_ids)}"

        async def run() -> CommandResult[Any]:
            # Bound here: queued writes run in the serializer's worker context.
            with correlation_scope(command_id=command_id):
                return await self._executor.execute(self._workspace, command, shape)

        if write:
            result = await self._serializer.enqueue(run, label=command.display())
        else:
            result = await run()

        if result.ok:
            self._breaker.reset(command.category)
        else:
            self._breaker.record_failure(command.category)
        return result

    # -- reads ------------------------------------------------------------

    async def list_epics(self, *, automatic: bool = False) -> CommandResult[Any] | None:
        return await self.call(
            self._command(CATEGORY_EPICS, "epics"), shapes.EPIC_LIST, automatic=automatic
        )

    async def list_tasks(self, epic_id: str, *, automatic: bool = False) -> CommandResult[Any] | None:
        return await self.call(
            self._command(CATEGORY_TASKS, "tasks", "--epic", epic_id),
            shapes.TASK_LIST,
            automatic=automatic,
        )

    async def show_epic(self, epic_id: str, *, automatic: bool = False) -> CommandResult[Any] | None:
        return await self.call(
            self._command(CATEGORY_SHOW, "show", epic_id), shapes.EPIC_DETAIL, automatic=automatic
        )

    async def show_task(self, task_id: str, *, automatic: bool = False) -> CommandResult[Any] | None:
        return await self.call(
            self._command(CATEGORY_SHOW, "show", task_id), shapes.TASK_DETAIL, automatic=automatic
        )

    # -- writes -----------------------------------------------------------

    async def start_task(self, task_id: str) -> CommandResult[Any]:
        return await self._write(self._command(CATEGORY_START, "start", task_id))

    async def update_task_status(self, task_id: str, status: TaskStatus | str) -> CommandResult[Any]:
        """Map a status change onto the flowctl command that performs it.

        ``blocked`` needs a reason file and any other value is unknown; both
        fail immediately with ``NonZeroExit(exit_code=1)`` and spawn nothing.
        """

        try:
            target = TaskStatus(status)
        except ValueError:
            return CommandResult.failure(NonZeroExit(stderr=f"Unknown status: {status}", exit_code=1))

        if target is TaskStatus.TODO:
            args: tuple[str, ...] = ("task", "reset", task_id)
        elif target is TaskStatus.IN_PROGRESS:
            args = ("start", task_id)
        elif target is TaskStatus.DONE:
            args = ("done", task_id, "--summary", DONE_SUMMARY, "--force")
        else:
            return CommandResult.failure(NonZeroExit(stderr=BLOCKED_GUIDANCE, exit_code=1))
        return await self._write(self._command(CATEGORY_STATUS, *args))

    async def set_epic_plan(self, epic_id: str, plan: str) -> CommandResult[Any]:
        command = Command(
            args=("epic", "set-plan", epic_id, "--file", "-"),
            category=CATEGORY_PLAN,
            timeout_seconds=self._timeout_seconds,
            stdin=plan,
        )
        return await self._write(command)

    async def init(self) -> CommandResult[Any]:
        return await self._write(self._command(CATEGORY_INIT, "init"))

    async def _write(self, command: Command) -> CommandResult[Any]:
        result = await self.call(command, shapes.COMMAND_SUCCESS, write=True)
        # Only automatic calls can be suppressed.
        assert result is not None  # noqa: S101
        return result

    def _command(self, category: str, *args: str) -> Command:
        return Command(args=args, category=category, timeout_seconds=self._timeout_seconds)


__all__ = [
    "BLOCKED_GUIDANCE",
    "CATEGORY_EPICS",
    "CATEGORY_INIT",
    "CATEGORY_PLAN",
    "CATEGORY_SHOW",
    "CATEGORY_START",
    "CATEGORY_STATUS",
    "CATEGORY_TASKS",
    "DONE_SUMMARY",
    "FlowBridge",
]
