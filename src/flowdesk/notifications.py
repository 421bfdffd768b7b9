"""User-facing notifications derived from successive flowctl snapshots.

``CompletionTracker`` remembers the last epic list and the last task list of
each epic it has seen for one workspace. Feeding it a fresh snapshot returns
the notifications for the transitions since the previous one:

- a task whose status moved to ``done`` -> ``task_completed``
- an epic whose tasks are now all done -> ``epic_review_ready``

The first snapshot of anything is a baseline and never notifies. An epic is
announced once per transition, whichever snapshot (epic counts or task list)
shows it first. Failed flowctl calls become ``flowctl_error`` notifications
through ``flowctl_error_notification``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from flowdesk.domain import JSONValue, TaskStatus

logger = logging.getLogger(__name__)


class NotificationType(StrEnum):
    TASK_COMPLETED = "task_completed"
    EPIC_REVIEW_READY = "epic_review_ready"
    FLOWCTL_ERROR = "flowctl_error"


class NotificationPriority(StrEnum):
    HIGH = "high"
    LOW = "low"


@dataclass(frozen=True, slots=True)
class FlowNotification:
    type: NotificationType
    title: str
    body: str
    workspace_id: str
    priority: NotificationPriority = NotificationPriority.LOW
    epic_id: str | None = None
    task_id: str | None = None

    def to_payload(self) -> dict[str, JSONValue]:
        payload: dict[str, JSONValue] = {
            "type": self.type.value,
            "title": self.title,
            "body": self.body,
            "priority": self.priority.value,
        }
        if self.epic_id is not None:
            payload["epic_id"] = self.epic_id
        if self.task_id is not None:
            payload["task_id"] = self.task_id
        return payload


def flowctl_error_notification(
    workspace_id: str,
    message: str,
    *,
    epic_id: str | None = None,
    task_id: str | None = None,
) -> FlowNotification:
    return FlowNotification(
        type=NotificationType.FLOWCTL_ERROR,
        title="Flow Error",
        body=message,
        workspace_id=workspace_id,
        priority=NotificationPriority.HIGH,
        epic_id=epic_id,
        task_id=task_id,
    )


class CompletionTracker:
    """Diffs task and epic snapshots of one workspace into notifications."""

    def __init__(self, workspace_id: str) -> None:
        self._workspace_id = workspace_id
        self._epic_titles: dict[str, str] = {}
        self._all_done: dict[str, bool] = {}
        self._task_statuses: dict[str, dict[str, str]] = {}

    @property
    def workspace_id(self) -> str:
        return self._workspace_id

    def observe_epics(self, epics: Iterable[Mapping[str, Any]]) -> list[FlowNotification]:
        """Diff a validated epic list (``id``, ``title``, ``tasks``, ``done``)."""

        found: list[FlowNotification] = []
        for epic in epics:
            epic_id = str(epic["id"])
            self._epic_titles[epic_id] = str(epic.get("title") or epic_id)
            total = epic.get("tasks") or 0
            done = epic.get("done") or 0
            found += self._settle_epic(epic_id, total > 0 and done >= total)
        return found

    def observe_tasks(
        self, epic_id: str, tasks: Iterable[Mapping[str, Any]]
    ) -> list[FlowNotification]:
        """Diff the validated task list of ``epic_id``."""

        current = {str(task["id"]): task for task in tasks}
        previous = self._task_statuses.get(epic_id)
        found: list[FlowNotification] = []
        if previous is not None:
            for task_id, task in current.items():
                before = previous.get(task_id)
                if before is not None and before != TaskStatus.DONE and task["status"] == TaskStatus.DONE:
                    found.append(
                        FlowNotification(
                            type=NotificationType.TASK_COMPLETED,
                            title="Task Completed",
                            body=str(task.get("title") or task_id),
                            workspace_id=self._workspace_id,
                            epic_id=epic_id,
                            task_id=task_id,
                        )
                    )
        self._task_statuses[epic_id] = {
            task_id: str(task["status"]) for task_id, task in current.items()
        }
        all_done = bool(current) and all(
            task["status"] == TaskStatus.DONE for task in current.values()
        )
        found += self._settle_epic(epic_id, all_done)
        return found

    def _settle_epic(self, epic_id: str, all_done: bool) -> list[FlowNotification]:
        was_done = self._all_done.get(epic_id)
        self._all_done[epic_id] = all_done
        if was_done is None or was_done or not all_done:
            return []
        title = self._epic_titles.get(epic_id, epic_id)
        logger.info("epic ready for review", extra={"epic": epic_id})
        return [
            FlowNotification(
                type=NotificationType.EPIC_REVIEW_READY,
                title="Epic Ready for Review",
                body=f"All tasks complete: {title}",
                workspace_id=self._workspace_id,
                epic_id=epic_id,
            )
        ]


__all__ = [
    "CompletionTracker",
    "FlowNotification",
    "NotificationPriority",
    "NotificationType",
    "flowctl_error_notification",
]
