"""Fan classified change events out to the surfaces showing a workspace.

One failing surface is logged and never stops delivery to the others.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from flowdesk.domain import ChangeEvent

logger = logging.getLogger(__name__)


@runtime_checkable
class Surface(Protocol):
    def is_destroyed(self) -> bool: ...

    def deliver(self, workspace_id: str, event: ChangeEvent) -> None: ...


class NotificationBroadcaster:
    def __init__(self) -> None:
        self._surfaces: dict[str, list[Surface]] = {}

    def register(self, workspace_id: str, surface: Surface) -> None:
        surfaces = self._surfaces.setdefault(workspace_id, [])
        if any(existing is surface for existing in surfaces):
            return
        surfaces.append(surface)

    def unregister(self, workspace_id: str, surface: Surface) -> bool:
        surfaces = self._surfaces.get(workspace_id)
        if not surfaces:
            return False
        remaining = [existing for existing in surfaces if existing is not surface]
        removed = len(remaining) != len(surfaces)
        self._set(workspace_id, remaining)
        return removed

    def surfaces(self, workspace_id: str) -> tuple[Surface, ...]:
        return tuple(self._surfaces.get(workspace_id, ()))

    def broadcast(self, workspace_id: str, event: ChangeEvent) -> int:
        """Deliver ``event`` once to each live surface; return the delivery count."""

        surfaces = self._surfaces.get(workspace_id)
        if not surfaces:
            return 0

        destroyed: list[Surface] = []
        delivered = 0
        for surface in list(surfaces):
            if surface.is_destroyed():
                destroyed.append(surface)
                continue
            try:
                surface.deliver(workspace_id, event)
            except Exception:
                logger.exception(
                    "surface failed to accept change event",
                    extra={"workspace": workspace_id, "change": event.to_payload()},
                )
                continue
            delivered += 1

        if destroyed:
            # Surfaces registered during delivery stay registered.
            current = self._surfaces.get(workspace_id, [])
            self._set(
                workspace_id,
                [item for item in current if not any(item is gone for gone in destroyed)],
            )
            logger.debug(
                "pruned destroyed surfaces",
                extra={"workspace": workspace_id, "pruned": len(destroyed)},
            )
        return delivered

    def _set(self, workspace_id: str, surfaces: list[Surface]) -> None:
        if surfaces:
            self._surfaces[workspace_id] = surfaces
        else:
            self._surfaces.pop(workspace_id, None)


__all__ = ["NotificationBroadcaster", "Surface"]
