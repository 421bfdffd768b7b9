"""Watch a workspace's ``.flow/`` directory across its whole lifetime.

State machine
- ``UNINITIALIZED`` --start()--> ``WATCHING_TARGET`` when ``.flow/`` is a
  directory, otherwise ``WATCHING_PARENT``.
- ``WATCHING_TARGET`` --watch error / target gone--> ``WATCHING_PARENT``.
  After a failed watch on a directory that is still there, the watcher waits
  one rescan interval and returns to ``WATCHING_TARGET`` without a change.
- ``WATCHING_PARENT`` --``.flow`` appears and is a directory-->
  ``WATCHING_TARGET`` plus one synthetic ``config`` change.
- any --stop()--> ``UNINITIALIZED`` with pending debounce timers cancelled.

A single supervisor task runs one ``watchfiles.awatch`` stream at a time, so a
handle is always closed before the next one opens. ``awatch`` is asked to
yield an empty batch after every quiet ``rescan_interval_ms``; those ticks
re-check the target so a missed OS event cannot strand the watcher.
"""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing, suppress
from pathlib import Path
from typing import Any, Final

from watchfiles import awatch

from flowdesk.constants import DEFAULT_DEBOUNCE_MS, DEFAULT_POLL_DELAY_MS, DEFAULT_RESCAN_INTERVAL_MS
from flowdesk.domain import ChangeCategory, ChangeEvent, WatcherState, Workspace
from flowdesk.watch.classifier import ChangeClassifier
from flowdesk.watch.debounce import DebounceRouter

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[ChangeEvent], object]
StateCallback = Callable[[WatcherState], object]
WatchFactory = Callable[..., AsyncIterator[set[tuple[Any, str]]]]

# awatch groups raw notifications for this long before yielding a batch.
_BATCH_MS: Final[int] = 50
_BATCH_STEP_MS: Final[int] = 10
_STOP_GRACE_SECONDS: Final[float] = 5.0


class DirectoryWatcher:
    def __init__(
        self,
        workspace: Workspace,
        *,
        on_change: ChangeCallback,
        on_state_change: StateCallback | None = None,
        classifier: ChangeClassifier | None = None,
        debounce: DebounceRouter | None = None,
        rescan_interval_ms: int = DEFAULT_RESCAN_INTERVAL_MS,
        force_polling: bool = False,
        poll_delay_ms: int = DEFAULT_POLL_DELAY_MS,
        watch_factory: WatchFactory = awatch,
    ) -> None:
        if rescan_interval_ms <= 0:
            raise ValueError("rescan_interval_ms must be > 0")
        if poll_delay_ms <= 0:
            raise ValueError("poll_delay_ms must be > 0")
        self._workspace = workspace
        self._on_change = on_change
        self._state_listeners: list[StateCallback] = [on_state_change] if on_state_change else []
        self._classifier = classifier or ChangeClassifier()
        self._debounce = debounce or DebounceRouter(window_ms=DEFAULT_DEBOUNCE_MS)
        self._rescan_interval_ms = rescan_interval_ms
        self._force_polling = force_polling
        self._poll_delay_ms = poll_delay_ms
        self._watch_factory = watch_factory

        self._state = WatcherState.UNINITIALIZED
        self._transition = asyncio.Event()
        self._supervisor: asyncio.Task[None] | None = None
        self._handle_stop: asyncio.Event | None = None
        self._stop_requested: asyncio.Event | None = None

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def running(self) -> bool:
        return self._supervisor is not None and not self._supervisor.done()

    @property
    def debounce(self) -> DebounceRouter:
        return self._debounce

    def add_state_listener(self, listener: StateCallback) -> None:
        self._state_listeners.append(listener)

    def remove_state_listener(self, listener: StateCallback) -> None:
        if listener in self._state_listeners:
            self._state_listeners.remove(listener)

    async def start(self) -> None:
        if self.running:
            return
        self._stop_requested = asyncio.Event()
        initial = (
            WatcherState.WATCHING_TARGET
            if self._workspace.flow_dir.is_dir()
            else WatcherState.WATCHING_PARENT
        )
        self._set_state(initial)
        self._supervisor = asyncio.create_task(
            self._supervise(), name=f"flowdesk-watch:{self._workspace.id}"
        )
        logger.info(
            "watcher started",
            extra={"workspace": self._workspace.id, "watcher_state": initial.value},
        )

    async def stop(self) -> None:
        supervisor = self._supervisor
        if self._stop_requested is not None:
            self._stop_requested.set()
        if self._handle_stop is not None:
            self._handle_stop.set()
        if supervisor is not None and not supervisor.done():
            try:
                await asyncio.wait_for(asyncio.shield(supervisor), timeout=_STOP_GRACE_SECONDS)
            except TimeoutError:
                supervisor.cancel()
                with suppress(asyncio.CancelledError):
                    await supervisor
        self._supervisor = None
        self._handle_stop = None
        cancelled = self._debounce.cancel_all()
        if self._state is not WatcherState.UNINITIALIZED:
            self._set_state(WatcherState.UNINITIALIZED)
            logger.info(
                "watcher stopped",
                extra={"workspace": self._workspace.id, "cancelled_timers": cancelled},
            )

    async def wait_for_state(self, state: WatcherState, *, timeout: float) -> None:
        """Block until the watcher reaches ``state``; raise ``TimeoutError`` otherwise."""

        async def _wait() -> None:
            while self._state is not state:
                await self._transition.wait()

        await asyncio.wait_for(_wait(), timeout=timeout)

    # -- supervisor -------------------------------------------------------

    async def _supervise(self) -> None:
        failed_identity: tuple[int, int] | None = None
        while not self._stopping:
            if self._state is WatcherState.WATCHING_TARGET:
                failed_identity = await self._watch_target()
                if self._stopping:
                    return
                self._set_state(WatcherState.WATCHING_PARENT)
                logger.info(
                    "flow directory unavailable; watching workspace root",
                    extra={"workspace": self._workspace.id},
                )
            elif failed_identity is not None and self._still(failed_identity):
                # The directory never went away, so returning to it is not a change.
                if await self._stopped_within(self._rescan_interval_ms / 1000.0):
                    return
                if self._still(failed_identity):
                    failed_identity = None
                    self._set_state(WatcherState.WATCHING_TARGET)
            else:
                failed_identity = None
                appeared = await self._watch_parent()
                if self._stopping:
                    return
                if not appeared:
                    # Parent unwatchable: hold the state without a handle.
                    assert self._stop_requested is not None  # noqa: S101
                    await self._stop_requested.wait()
                    return
                self._set_state(WatcherState.WATCHING_TARGET)
                logger.info(
                    "flow directory appeared; watching it",
                    extra={"workspace": self._workspace.id},
                )
                self._emit(ChangeEvent(ChangeCategory.CONFIG))

    @property
    def _stopping(self) -> bool:
        return self._stop_requested is None or self._stop_requested.is_set()

    async def _watch_target(self) -> tuple[int, int] | None:
        """Consume target batches until the target is gone or the watch fails.

        Returns the directory identity when the watch itself failed (it raised
        or its stream ended on its own), otherwise None.
        """

        flow_dir = self._workspace.flow_dir
        identity = _directory_identity(flow_dir)
        if identity is None:
            return None
        try:
            async with aclosing(self._open(flow_dir, recursive=True)) as stream:
                async for changes in stream:
                    for _, raw_path in changes:
                        self._route(flow_dir, raw_path)
                    if _directory_identity(flow_dir) != identity:
                        return None
        except (OSError, RuntimeError) as exc:
            logger.warning(
                "flow directory watch failed",
                extra={"workspace": self._workspace.id, "error": str(exc)},
            )
            return identity
        return None if self._stopping else identity

    def _still(self, identity: tuple[int, int]) -> bool:
        return _directory_identity(self._workspace.flow_dir) == identity

    async def _stopped_within(self, seconds: float) -> bool:
        assert self._stop_requested is not None  # noqa: S101
        try:
            await asyncio.wait_for(self._stop_requested.wait(), timeout=seconds)
        except TimeoutError:
            return False
        return True

    async def _watch_parent(self) -> bool:
        """Return True once ``.flow`` is a directory; False if the root cannot be watched."""

        root = self._workspace.root
        flow_dir = self._workspace.flow_dir
        if flow_dir.is_dir():
            return True
        try:
            async with aclosing(self._open(root, recursive=False)) as stream:
                async for changes in stream:
                    named = not changes or any(
                        Path(raw_path).name == flow_dir.name for _, raw_path in changes
                    )
                    if named and flow_dir.is_dir():
                        return True
        except (OSError, RuntimeError) as exc:
            logger.warning(
                "workspace root cannot be watched",
                extra={"workspace": self._workspace.id, "error": str(exc)},
            )
            return False
        return flow_dir.is_dir()

    async def _open(self, path: Path, *, recursive: bool) -> AsyncIterator[set[tuple[Any, str]]]:
        stop = asyncio.Event()
        self._handle_stop = stop
        if self._stopping:
            stop.set()
        stream = self._watch_factory(
            path,
            stop_event=stop,
            recursive=recursive,
            watch_filter=None,
            debounce=_BATCH_MS,
            step=_BATCH_STEP_MS,
            rust_timeout=self._rescan_interval_ms,
            yield_on_timeout=True,
            force_polling=self._force_polling,
            poll_delay_ms=self._poll_delay_ms,
        )
        try:
            async for changes in stream:
                yield changes
        finally:
            stop.set()
            if self._handle_stop is stop:
                self._handle_stop = None
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    def _route(self, flow_dir: Path, raw_path: str) -> None:
        relative = os.path.relpath(raw_path, flow_dir).replace(os.sep, "/")
        if relative == "." or relative.startswith("../"):
            return
        event = self._classifier.classify(relative)
        if event is None:
            return
        self._debounce.on_event(relative, lambda: self._emit(event))

    def _emit(self, event: ChangeEvent) -> None:
        try:
            self._on_change(event)
        except Exception:
            logger.exception(
                "change callback failed",
                extra={"workspace": self._workspace.id, "change": event.to_payload()},
            )

    def _set_state(self, state: WatcherState) -> None:
        if state is self._state:
            return
        self._state = state
        previous, self._transition = self._transition, asyncio.Event()
        previous.set()
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("state listener failed", extra={"workspace": self._workspace.id})


def _directory_identity(path: Path) -> tuple[int, int] | None:
    # A deleted-and-recreated directory has a new inode; the old watch is stale.
    try:
        info = path.stat()
    except OSError:
        return None
    if not path.is_dir():
        return None
    return (info.st_dev, info.st_ino)


__all__ = ["ChangeCallback", "DirectoryWatcher", "StateCallback", "WatchFactory"]
