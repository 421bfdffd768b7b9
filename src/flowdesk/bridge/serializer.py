"""FIFO execution of mutating operations for one workspace.

One consumer task drains an ``asyncio.Queue``; each queued operation starts
only after the previous one has settled. Every item owns a future, so a
failing write is reported to its own caller (and logged here) while the next
item still runs.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _QueuedWrite(Generic[T]):
    operation: Operation[T]
    future: asyncio.Future[T]
    label: str


class WriteSerializer:
    def __init__(self, *, name: str = "writes") -> None:
        self._name = name
        self._queue: asyncio.Queue[_QueuedWrite[Any] | None] = asyncio.Queue()
        self._worker: asyncio.Task[None] | None = None
        self._closed = False
        self._completed = 0
        self._failed = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def stats(self) -> dict[str, int]:
        return {"pending": self.pending, "completed": self._completed, "failed": self._failed}

    def submit(self, operation: Operation[T], *, label: str = "write") -> asyncio.Future[T]:
        """Queue ``operation`` and return its future without awaiting it."""

        if self._closed:
            raise RuntimeError(f"write serializer {self._name!r} is closed")
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        future.add_done_callback(_mark_retrieved)
        self._queue.put_nowait(_QueuedWrite(operation=operation, future=future, label=label))
        self._ensure_worker()
        return future

    async def enqueue(self, operation: Operation[T], *, label: str = "write") -> T:
        """Queue ``operation`` and wait for its own outcome."""

        return await self.submit(operation, label=label)

    async def join(self) -> None:
        """Wait until every queued item has settled."""

        await self._queue.join()

    async def aclose(self) -> None:
        """Cancel items that have not started, let the running one finish, stop."""

        if self._closed:
            return
        self._closed = True

        dropped = 0
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            if item is not None and not item.future.done():
                item.future.cancel()
                dropped += 1
            self._queue.task_done()
        if dropped:
            logger.info(
                "write serializer closed with queued writes cancelled",
                extra={"serializer": self._name, "cancelled": dropped},
            )

        worker = self._worker
        if worker is None or worker.done():
            return
        self._queue.put_nowait(None)
        await worker

    def _ensure_worker(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._drain(), name=f"flowdesk-{self._name}")

    async def _drain(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is None:
                    return
                await self._run_one(item)
            finally:
                self._queue.task_done()

    async def _run_one(self, item: _QueuedWrite[Any]) -> None:
        if item.future.done():
            logger.debug(
                "skipping write cancelled before start",
                extra={"serializer": self._name, "label": item.label},
            )
            return
        try:
            result = await item.operation()
        except asyncio.CancelledError:
            if not item.future.done():
                item.future.cancel()
            worker = asyncio.current_task()
            if worker is not None and worker.cancelling():
                raise
            # The operation cancelled itself; the worker keeps draining.
            self._failed += 1
            logger.warning(
                "queued write was cancelled",
                extra={"serializer": self._name, "label": item.label},
            )
            return
        except Exception as exc:
            self._failed += 1
            logger.error(
                "queued write failed",
                exc_info=exc,
                extra={"serializer": self._name, "label": item.label},
            )
            if not item.future.done():
                item.future.set_exception(exc)
            return
        self._completed += 1
        if not item.future.done():
            item.future.set_result(result)


def _mark_retrieved(future: asyncio.Future[Any]) -> None:
    # Failures are already logged by the worker; a fire-and-forget caller that
    # never awaits the future should not trigger asyncio's unretrieved warning.
    if not future.cancelled():
        future.exception()


__all__ = ["Operation", "WriteSerializer"]
