"""Locate the flowctl executable for a workspace.

A workspace-local ``.flow/bin/flowctl`` wins; otherwise the bare command name
is returned and left to the OS ``PATH`` lookup at spawn time. The choice is
memoized per workspace until ``invalidate`` is called, which the executor does
whenever a spawn reports the binary missing.
"""

from __future__ import annotations

import logging
from pathlib import PurePosixPath

from flowdesk.constants import DEFAULT_BINARY_NAME, LOCAL_BINARY_SUBPATH
from flowdesk.domain import Workspace

logger = logging.getLogger(__name__)


class BinaryResolver:
    def __init__(
        self,
        *,
        binary_name: str = DEFAULT_BINARY_NAME,
        local_subpath: PurePosixPath | str = LOCAL_BINARY_SUBPATH,
    ) -> None:
        name = binary_name.strip()
        if not name:
            raise ValueError("binary_name must not be empty")
        subpath = PurePosixPath(local_subpath)
        if subpath.is_absolute() or ".." in subpath.parts:
            raise ValueError("local_subpath must be relative to the workspace root")
        self._binary_name = name
        self._local_subpath = subpath
        self._cache: dict[str, str] = {}

    @property
    def binary_name(self) -> str:
        return self._binary_name

    def resolve(self, workspace: Workspace) -> str:
        cached = self._cache.get(workspace.id)
        if cached is not None:
            return cached

        local = workspace.root.joinpath(*self._local_subpath.parts)
        if local.is_file():
            resolved = str(local)
        else:
            resolved = self._binary_name
        self._cache[workspace.id] = resolved
        logger.debug("resolved flowctl binary", extra={"workspace": workspace.id, "binary": resolved})
        return resolved

    def cached(self, workspace: Workspace) -> str | None:
        return self._cache.get(workspace.id)

    def invalidate(self, workspace: Workspace) -> None:
        if self._cache.pop(workspace.id, None) is not None:
            logger.info("flowctl binary cache invalidated", extra={"workspace": workspace.id})

    def clear(self) -> None:
        self._cache.clear()


__all__ = ["BinaryResolver"]
