"""Run flowctl as a child process and classify every outcome into a tagged result.

Contract
- The argument vector goes to ``asyncio.create_subprocess_exec`` as discrete
  items; nothing is ever joined into a shell string.
- ``--json`` is always appended; the workspace root is the working directory;
  the host environment is inherited.
- stdout and stderr are each captured up to ``max_output_bytes``; anything
  beyond that is drained and dropped so the child never blocks on a full pipe.
- Each child leads its own process group. On timeout the whole group is
  killed, descendants holding the pipes open included, the child is reaped
  and ``Timeout`` is returned. There is no partial-result salvage and no
  retry at this layer.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import time
from collections.abc import Mapping
from contextlib import suppress
from typing import TYPE_CHECKING, Any, Final

from flowdesk.bridge.results import BinaryNotFound, CommandResult, NonZeroExit, Timeout
from flowdesk.bridge.validator import ResponseValidator
from flowdesk.constants import DEFAULT_MAX_OUTPUT_BYTES, JSON_OUTPUT_FLAG
from flowdesk.observability.logging import correlation_scope

if TYPE_CHECKING:
    from flowdesk.bridge.resolver import BinaryResolver
    from flowdesk.bridge.shapes import Shape
    from flowdesk.domain import Command, Workspace

logger = logging.getLogger(__name__)

_READ_CHUNK_BYTES: Final[int] = 64 * 1024
_REAP_GRACE_SECONDS: Final[float] = 5.0
_POSIX: Final[bool] = sys.platform != "win32"


class CommandExecutor:
    def __init__(
        self,
        *,
        resolver: BinaryResolver,
        validator: ResponseValidator | None = None,
        json_flag: str = JSON_OUTPUT_FLAG,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        env: Mapping[str, str] | None = None,
    ) -> None:
        if max_output_bytes <= 0:
            raise ValueError("max_output_bytes must be > 0")
        if not json_flag.strip():
            raise ValueError("json_flag must not be empty")
        self._resolver = resolver
        self._validator = validator or ResponseValidator()
        self._json_flag = json_flag
        self._max_output_bytes = max_output_bytes
        self._env = dict(env) if env is not None else None

    @property
    def resolver(self) -> BinaryResolver:
        return self._resolver

    async def execute(
        self,
        workspace: Workspace,
        command: Command,
        shape: Shape,
    ) -> CommandResult[Any]:
        """Run ``command`` in ``workspace``; never raises for process outcomes."""

        with correlation_scope(workspace=workspace.id, category=command.category):
            return await self._execute(workspace, command, shape)

    async def _execute(
        self,
        workspace: Workspace,
        command: Command,
        shape: Shape,
    ) -> CommandResult[Any]:
        binary = self._resolver.resolve(workspace)
        argv = (binary, *command.args, self._json_flag)
        display = command.display(self._resolver.binary_name)

        env = dict(os.environ) if self._env is None else dict(self._env)
        started = time.monotonic()
        logger.debug("spawning flowctl", extra={"argv": list(argv)})

        # A missing workspace root fails the spawn with FileNotFoundError and is
        # reported as BinaryNotFound, like an unreachable binary.
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(workspace.root),
                env=env,
                stdin=asyncio.subprocess.PIPE if command.stdin is not None else asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                # Own process group, so a timeout can kill wrappers and their children.
                start_new_session=_POSIX,
            )
        except (FileNotFoundError, NotADirectoryError, PermissionError) as exc:
            self._resolver.invalidate(workspace)
            logger.warning("flowctl binary not found", extra={"binary": binary, "os_error": str(exc)})
            return CommandResult.failure(BinaryNotFound(binary=binary))
        except OSError as exc:
            logger.warning("flowctl failed to start", extra={"binary": binary, "os_error": str(exc)})
            return CommandResult.failure(
                NonZeroExit(stderr=f"failed to start {binary}: {exc}", exit_code=-1)
            )

        try:
            stdout, stderr = await asyncio.wait_for(
                self._communicate(proc, command.stdin),
                timeout=command.timeout_seconds,
            )
        except TimeoutError:
            await _kill_and_reap(proc)
            logger.warning(
                "flowctl timed out",
                extra={"command": display, "timeout_seconds": command.timeout_seconds},
            )
            return CommandResult.failure(
                Timeout(command=display, timeout_seconds=command.timeout_seconds)
            )
        except asyncio.CancelledError:
            await _kill_and_reap(proc)
            raise

        elapsed_ms = int((time.monotonic() - started) * 1000)
        returncode = proc.returncode if proc.returncode is not None else -1
        logger.debug(
            "flowctl exited",
            extra={"command": display, "exit_code": returncode, "elapsed_ms": elapsed_ms},
        )

        if returncode != 0:
            stderr_text = stderr.decode("utf-8", errors="replace").strip()
            if not stderr_text:
                stderr_text = _termination_message(display, returncode)
            logger.info(
                "flowctl reported failure",
                extra={"command": display, "exit_code": returncode},
            )
            return CommandResult.failure(NonZeroExit(stderr=stderr_text, exit_code=returncode))

        return self._validator.validate(stdout, shape)

    async def _communicate(
        self,
        proc: asyncio.subprocess.Process,
        payload: str | None,
    ) -> tuple[bytes, bytes]:
        assert proc.stdout is not None  # noqa: S101
        assert proc.stderr is not None  # noqa: S101

        async def _feed_stdin() -> None:
            if payload is None or proc.stdin is None:
                return
            try:
                proc.stdin.write(payload.encode("utf-8"))
                await proc.stdin.drain()
            except (BrokenPipeError, ConnectionResetError):
                # Child exited without consuming its input; its exit status decides.
                logger.debug("flowctl closed stdin before the payload was written")
            finally:
                proc.stdin.close()

        stdout, stderr, _ = await asyncio.gather(
            self._read_capped(proc.stdout, stream_name="stdout"),
            self._read_capped(proc.stderr, stream_name="stderr"),
            _feed_stdin(),
        )
        await proc.wait()
        return stdout, stderr

    async def _read_capped(self, stream: asyncio.StreamReader, *, stream_name: str) -> bytes:
        chunks: list[bytes] = []
        kept = 0
        dropped = 0
        while True:
            chunk = await stream.read(_READ_CHUNK_BYTES)
            if not chunk:
                break
            room = self._max_output_bytes - kept
            if room > 0:
                piece = chunk[:room]
                chunks.append(piece)
                kept += len(piece)
                dropped += len(chunk) - len(piece)
            else:
                dropped += len(chunk)
        if dropped:
            logger.warning(
                "flowctl output truncated",
                extra={"stream": stream_name, "kept_bytes": kept, "dropped_bytes": dropped},
            )
        return b"".join(chunks)


async def _kill_and_reap(proc: asyncio.subprocess.Process) -> None:
    if _POSIX:
        # The group outlives its leader while descendants still hold the pipes.
        with suppress(ProcessLookupError, PermissionError):
            os.killpg(proc.pid, signal.SIGKILL)
    elif proc.returncode is None:
        with suppress(ProcessLookupError):
            proc.kill()
    try:
        await asyncio.wait_for(proc.wait(), timeout=_REAP_GRACE_SECONDS)
    except TimeoutError:
        logger.warning("flowctl did not exit after kill", extra={"pid": proc.pid})


def _termination_message(display: str, returncode: int) -> str:
    if returncode < 0:
        try:
            name = signal.Signals(-returncode).name
        except ValueError:
            name = f"signal {-returncode}"
        return f"{display} was terminated by {name}"
    return f"{display} exited with code {returncode}"


__all__ = ["CommandExecutor"]
