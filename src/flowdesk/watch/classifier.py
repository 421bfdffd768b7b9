"""Map a path relative to ``.flow/`` onto a change category and entity id."""

from __future__ import annotations

from collections.abc import Iterable

from flowdesk.constants import BINARY_DIRS, EPIC_DIRS, ID_SUFFIXES, TASK_DIRS
from flowdesk.domain import ChangeCategory, ChangeEvent


class ChangeClassifier:
    """Pure path classifier.

    Only the first path segment decides the category. Entity ids keep every
    dot except a single trailing ``.json``/``.md``, because task ids such as
    ``fn-1.2`` contain dots themselves.
    """

    def __init__(
        self,
        *,
        epic_dirs: Iterable[str] = EPIC_DIRS,
        task_dirs: Iterable[str] = TASK_DIRS,
        ignored_dirs: Iterable[str] = BINARY_DIRS,
        id_suffixes: Iterable[str] = ID_SUFFIXES,
    ) -> None:
        self._epic_dirs = frozenset(epic_dirs)
        self._task_dirs = frozenset(task_dirs)
        self._ignored_dirs = frozenset(ignored_dirs)
        self._id_suffixes = tuple(id_suffixes)

    def classify(self, relative_path: str) -> ChangeEvent | None:
        normalized = normalize_relative_path(relative_path)
        head, sep, rest = normalized.partition("/")

        if head in self._ignored_dirs:
            return None

        file_name = rest.split("/", 1)[0] if sep else ""
        if file_name:
            if head in self._epic_dirs:
                return ChangeEvent(ChangeCategory.EPIC, self.strip_suffix(file_name))
            if head in self._task_dirs:
                return ChangeEvent(ChangeCategory.TASK, self.strip_suffix(file_name))

        return ChangeEvent(ChangeCategory.CONFIG)

    def strip_suffix(self, file_name: str) -> str:
        for suffix in self._id_suffixes:
            if file_name.endswith(suffix) and len(file_name) > len(suffix):
                return file_name[: -len(suffix)]
        return file_name


def normalize_relative_path(path: str) -> str:
    """Backslashes to ``/``, with leading ``./`` and slashes removed."""

    normalized = path.replace("\\", "/")
    while normalized.startswith("./"):
        normalized = normalized[2:]
    return normalized.lstrip("/")


__all__ = ["ChangeClassifier", "normalize_relative_path"]
