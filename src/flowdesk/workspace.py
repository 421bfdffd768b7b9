"""Workspace lifecycle: one bridge, write queue and watcher per open workspace.

``WorkspaceRegistry`` owns the process-wide collaborators (binary resolver,
executor, circuit breaker, broadcaster) and hands each workspace a
``WorkspaceSession``. Opening an already-open workspace returns the existing
session, so there is never more than one live watcher per workspace.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from flowdesk.bridge.breaker import CircuitBreaker
from flowdesk.bridge.client import FlowBridge
from flowdesk.bridge.executor import CommandExecutor
from flowdesk.bridge.resolver import BinaryResolver
from flowdesk.bridge.serializer import WriteSerializer
from flowdesk.bridge.validator import ResponseValidator
from flowdesk.config.schema import default_config
from flowdesk.domain import ChangeEvent, WatcherState, Workspace
from flowdesk.watch.broadcaster import NotificationBroadcaster
from flowdesk.watch.debounce import DebounceRouter
from flowdesk.watch.watcher import DirectoryWatcher

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WorkspaceSession:
    workspace: Workspace
    bridge: FlowBridge
    serializer: WriteSerializer
    watcher: DirectoryWatcher

    @property
    def watcher_state(self) -> WatcherState:
        return self.watcher.state

    async def close(self) -> None:
        await self.watcher.stop()
        await self.serializer.aclose()


class WorkspaceRegistry:
    def __init__(
        self,
        *,
        settings: Mapping[str, Any] | None = None,
        broadcaster: NotificationBroadcaster | None = None,
        breaker: CircuitBreaker | None = None,
        resolver: BinaryResolver | None = None,
    ) -> None:
        config = dict(settings) if settings is not None else dict(default_config())
        bridge_cfg = config["bridge"]
        self._watch_cfg = dict(config["watch"])
        self._timeout_seconds = float(bridge_cfg["timeout_seconds"])

        self._broadcaster = broadcaster or NotificationBroadcaster()
        self._breaker = breaker or CircuitBreaker(threshold=int(config["breaker"]["threshold"]))
        self._resolver = resolver or BinaryResolver(
            binary_name=bridge_cfg["binary_name"],
            local_subpath=bridge_cfg["local_binary"],
        )
        self._executor = CommandExecutor(
            resolver=self._resolver,
            validator=ResponseValidator(snippet_bytes=int(bridge_cfg["snippet_bytes"])),
            json_flag=bridge_cfg["json_flag"],
            max_output_bytes=int(bridge_cfg["max_output_bytes"]),
        )
        self._sessions: dict[str, WorkspaceSession] = {}
        self._active: str | None = None

    @property
    def broadcaster(self) -> NotificationBroadcaster:
        return self._broadcaster

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    @property
    def resolver(self) -> BinaryResolver:
        return self._resolver

    @property
    def executor(self) -> CommandExecutor:
        return self._executor

    @property
    def active(self) -> WorkspaceSession | None:
        if self._active is None:
            return None
        return self._sessions.get(self._active)

    def get(self, root: str | Path) -> WorkspaceSession | None:
        return self._sessions.get(Workspace(Path(root)).id)

    def sessions(self) -> tuple[WorkspaceSession, ...]:
        return tuple(self._sessions.values())

    async def open(self, root: str | Path, *, watch: bool = True) -> WorkspaceSession:
        workspace = Workspace(Path(root))
        session = self._sessions.get(workspace.id)
        if session is None:
            session = self._build_session(workspace)
            self._sessions[workspace.id] = session
            logger.info("workspace opened", extra={"workspace": workspace.id})
        if watch:
            await session.watcher.start()
        return session

    async def activate(self, root: str | Path, *, watch: bool = True) -> WorkspaceSession:
        """Open ``root`` and make it the active workspace.

        Switching to a different workspace clears every breaker category:
        failure streaks from the previous workspace say nothing about this one.
        """

        session = await self.open(root, watch=watch)
        if self._active != session.workspace.id:
            if self._active is not None:
                self._breaker.reset_all()
            self._active = session.workspace.id
        return session

    async def close(self, root: str | Path) -> bool:
        workspace = Workspace(Path(root))
        session = self._sessions.pop(workspace.id, None)
        if session is None:
            return False
        if self._active == workspace.id:
            self._active = None
        await session.close()
        self._resolver.invalidate(workspace)
        logger.info("workspace closed", extra={"workspace": workspace.id})
        return True

    async def close_all(self) -> None:
        for workspace_id in list(self._sessions):
            await self.close(workspace_id)

    def _build_session(self, workspace: Workspace) -> WorkspaceSession:
        serializer = WriteSerializer(name=f"writes:{workspace.root.name or workspace.id}")
        bridge = FlowBridge(
            workspace,
            executor=self._executor,
            serializer=serializer,
            breaker=self._breaker,
            timeout_seconds=self._timeout_seconds,
        )

        def _broadcast(event: ChangeEvent) -> None:
            self._broadcaster.broadcast(workspace.id, event)

        watcher = DirectoryWatcher(
            workspace,
            on_change=_broadcast,
            debounce=DebounceRouter(window_ms=int(self._watch_cfg["debounce_ms"])),
            rescan_interval_ms=int(self._watch_cfg["rescan_interval_ms"]),
            force_polling=bool(self._watch_cfg["force_polling"]),
            poll_delay_ms=int(self._watch_cfg["poll_delay_ms"]),
        )
        return WorkspaceSession(
            workspace=workspace, bridge=bridge, serializer=serializer, watcher=watcher
        )


__all__ = ["WorkspaceRegistry", "WorkspaceSession"]
