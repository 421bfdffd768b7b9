"""Expected JSON shapes for flowctl responses and a small checker for them.

A shape reports *every* mismatch it finds as a ``ShapeViolation`` carrying a
JSONPath-like location (``$.epics[0].status``), a description of what was
expected, and a description of what was found. Unknown object keys are
ignored: flowctl may add fields in newer releases.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Final

from flowdesk.bridge.results import ShapeViolation

_MAX_ACTUAL_REPR: Final[int] = 80


class Shape:
    """Base class; subclasses implement ``describe`` and ``_collect``."""

    __slots__ = ()

    def describe(self) -> str:
        raise NotImplementedError

    def check(self, value: object) -> tuple[ShapeViolation, ...]:
        issues: list[ShapeViolation] = []
        self._collect(value, "$", issues)
        return tuple(issues)

    def _collect(self, value: object, path: str, issues: list[ShapeViolation]) -> None:
        raise NotImplementedError


@dataclass(frozen=True, slots=True)
class AnyShape(Shape):
    def describe(self) -> str:
        return "any"

    def _collect(self, value: object, path: str, issues: list[ShapeViolation]) -> None:
        return None


@dataclass(frozen=True, slots=True)
class StringShape(Shape):
    def describe(self) -> str:
        return "string"

    def _collect(self, value: object, path: str, issues: list[ShapeViolation]) -> None:
        if not isinstance(value, str):
            issues.append(_violation(path, self, value))


@dataclass(frozen=True, slots=True)
class NumberShape(Shape):
    def describe(self) -> str:
        return "number"

    def _collect(self, value: object, path: str, issues: list[ShapeViolation]) -> None:
        # bool is an int subclass; JSON true/false is never a number.
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            issues.append(_violation(path, self, value))
            return
        if isinstance(value, float) and not math.isfinite(value):
            issues.append(_violation(path, self, value))


@dataclass(frozen=True, slots=True)
class BooleanShape(Shape):
    def describe(self) -> str:
        return "boolean"

    def _collect(self, value: object, path: str, issues: list[ShapeViolation]) -> None:
        if not isinstance(value, bool):
            issues.append(_violation(path, self, value))


@dataclass(frozen=True, slots=True)
class EnumShape(Shape):
    values: tuple[str, ...]

    def describe(self) -> str:
        return "one of " + ", ".join(repr(item) for item in self.values)

    def _collect(self, value: object, path: str, issues: list[ShapeViolation]) -> None:
        if not isinstance(value, str) or value not in self.values:
            issues.append(_violation(path, self, value))


@dataclass(frozen=True, slots=True)
class NullableShape(Shape):
    inner: Shape

    def describe(self) -> str:
        return f"{self.inner.describe()} or null"

    def _collect(self, value: object, path: str, issues: list[ShapeViolation]) -> None:
        if value is None:
            return
        self.inner._collect(value, path, issues)


@dataclass(frozen=True, slots=True)
class ArrayShape(Shape):
    item: Shape

    def describe(self) -> str:
        return f"array of {self.item.describe()}"

    def _collect(self, value: object, path: str, issues: list[ShapeViolation]) -> None:
        if not isinstance(value, list):
            issues.append(_violation(path, self, value))
            return
        for index, element in enumerate(value):
            self.item._collect(element, f"{path}[{index}]", issues)


@dataclass(frozen=True, slots=True)
class FieldSpec:
    shape: Shape
    required: bool = True


@dataclass(frozen=True, slots=True)
class ObjectShape(Shape):
    fields: Mapping[str, FieldSpec] = field(default_factory=dict)

    def describe(self) -> str:
        return "object"

    def _collect(self, value: object, path: str, issues: list[ShapeViolation]) -> None:
        if not isinstance(value, dict):
            issues.append(_violation(path, self, value))
            return
        for name, spec in self.fields.items():
            child_path = f"{path}.{name}"
            if name not in value:
                if spec.required:
                    issues.append(
                        ShapeViolation(path=child_path, expected=spec.shape.describe(), actual="missing")
                    )
                continue
            spec.shape._collect(value[name], child_path, issues)


def required(shape: Shape) -> FieldSpec:
    return FieldSpec(shape=shape, required=True)


def optional(shape: Shape) -> FieldSpec:
    return FieldSpec(shape=shape, required=False)


def obj(**fields: FieldSpec | Shape) -> ObjectShape:
    """Build an object shape; bare shapes are treated as required fields."""

    normalized: dict[str, FieldSpec] = {}
    for name, spec in fields.items():
        normalized[name] = spec if isinstance(spec, FieldSpec) else required(spec)
    return ObjectShape(fields=normalized)


def enum_of(values: Sequence[str]) -> EnumShape:
    return EnumShape(values=tuple(values))


def _violation(path: str, shape: Shape, value: object) -> ShapeViolation:
    return ShapeViolation(path=path, expected=shape.describe(), actual=_describe_actual(value))


def _describe_actual(value: object) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return f"number {value!r}"
    if isinstance(value, str):
        text = repr(value)
        if len(text) > _MAX_ACTUAL_REPR:
            text = text[: _MAX_ACTUAL_REPR - 1] + "…"
        return f"string {text}"
    if isinstance(value, list):
        return "array"
    if isinstance(value, dict):
        return "object"
    return type(value).__name__


# ---------------------------------------------------------------------------
# flowctl response shapes
# ---------------------------------------------------------------------------

_STRING = StringShape()
_NUMBER = NumberShape()
_BOOLEAN = BooleanShape()
_ANY = AnyShape()
_STRINGS = ArrayShape(_STRING)

TASK_STATUS: Final[EnumShape] = enum_of(("todo", "in_progress", "blocked", "done"))
EPIC_STATUS: Final[EnumShape] = enum_of(("open", "done"))

COMMAND_SUCCESS: Final[ObjectShape] = obj(success=_BOOLEAN)

TASK_SUMMARY: Final[ObjectShape] = obj(
    id=_STRING,
    epic=_STRING,
    title=_STRING,
    status=TASK_STATUS,
    priority=NullableShape(_STRING),
    depends_on=_STRINGS,
)

TASK_LIST: Final[ObjectShape] = obj(
    success=_BOOLEAN,
    tasks=ArrayShape(TASK_SUMMARY),
)

TASK_DETAIL: Final[ObjectShape] = obj(
    success=_BOOLEAN,
    id=_STRING,
    epic=_STRING,
    title=_STRING,
    status=TASK_STATUS,
    priority=NullableShape(_STRING),
    depends_on=_STRINGS,
    assignee=optional(NullableShape(_STRING)),
    claim_note=optional(_STRING),
    claimed_at=optional(NullableShape(_STRING)),
    created_at=_STRING,
    updated_at=_STRING,
    spec_path=_STRING,
    evidence=optional(
        NullableShape(obj(commits=_STRINGS, prs=_STRINGS, tests=_STRINGS))
    ),
    impl=optional(_ANY),
    review=optional(_ANY),
    sync=optional(_ANY),
)

EPIC_SUMMARY: Final[ObjectShape] = obj(
    id=_STRING,
    title=_STRING,
    status=EPIC_STATUS,
    tasks=_NUMBER,
    done=_NUMBER,
)

EPIC_LIST: Final[ObjectShape] = obj(
    success=_BOOLEAN,
    epics=ArrayShape(EPIC_SUMMARY),
    count=_NUMBER,
)

EPIC_TASK_ENTRY: Final[ObjectShape] = obj(
    id=_STRING,
    title=_STRING,
    status=TASK_STATUS,
    priority=NullableShape(_STRING),
    depends_on=_STRINGS,
)

EPIC_DETAIL: Final[ObjectShape] = obj(
    success=_BOOLEAN,
    id=_STRING,
    title=_STRING,
    status=EPIC_STATUS,
    branch_name=_STRING,
    spec_path=_STRING,
    depends_on_epics=_STRINGS,
    created_at=_STRING,
    updated_at=_STRING,
    plan_review_status=optional(NullableShape(_STRING)),
    plan_reviewed_at=optional(NullableShape(_STRING)),
    completion_review_status=optional(NullableShape(_STRING)),
    completion_reviewed_at=optional(NullableShape(_STRING)),
    default_impl=optional(_ANY),
    default_review=optional(_ANY),
    default_sync=optional(_ANY),
    next_task=optional(_NUMBER),
    tasks=ArrayShape(EPIC_TASK_ENTRY),
)

__all__ = [
    "AnyShape",
    "ArrayShape",
    "BooleanShape",
    "COMMAND_SUCCESS",
    "EPIC_DETAIL",
    "EPIC_LIST",
    "EPIC_STATUS",
    "EPIC_SUMMARY",
    "EPIC_TASK_ENTRY",
    "EnumShape",
    "FieldSpec",
    "NullableShape",
    "NumberShape",
    "ObjectShape",
    "Shape",
    "StringShape",
    "TASK_DETAIL",
    "TASK_LIST",
    "TASK_STATUS",
    "TASK_SUMMARY",
    "enum_of",
    "obj",
    "optional",
    "required",
]
