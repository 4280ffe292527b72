"""Task shapes, statuses, priorities and task references.

Tasks and subtasks are kept in their persisted JSON shape (plain dicts); this
module provides the vocabulary and lookup helpers shared by every operation.

Dependency encoding inside a dependency list:

- on a task: ``7`` references task 7, ``"7.2"`` references subtask 2 of task 7
- on a subtask of task P: ``2`` references sibling ``P.2``, ``"7.2"`` references
  subtask 2 of task 7, ``"7"`` references top-level task 7
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from .errors import NotFoundError, ValidationError

TASK_STATUSES = (
    "pending",
    "in-progress",
    "done",
    "completed",
    "deferred",
    "blocked",
    "review",
    "cancelled",
)
DONE_STATUSES = frozenset({"done", "completed"})

TASK_PRIORITIES = ("high", "medium", "low")
DEFAULT_PRIORITY = "medium"
PRIORITY_RANK = {"high": 3, "medium": 2, "low": 1}

CONTENT_FIELDS = ("title", "description", "details", "testStrategy")


def normalize_status(status: str) -> str:
    value = str(status).strip().lower()
    if value not in TASK_STATUSES:
        raise ValidationError(
            f"invalid status: {status} (expected one of: {', '.join(TASK_STATUSES)})"
        )
    return value


def normalize_priority(priority: str) -> str:
    value = str(priority).strip().lower()
    if value not in TASK_PRIORITIES:
        raise ValidationError(
            f"invalid priority: {priority} (expected one of: {', '.join(TASK_PRIORITIES)})"
        )
    return value


def is_done(status: object) -> bool:
    return status in DONE_STATUSES


def as_positive_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value > 0 else None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            number = int(text)
            return number if number > 0 else None
    return None


@dataclass(frozen=True)
class TaskRef:
    task_id: int
    subtask_id: int | None = None

    @classmethod
    def parse(cls, value: object) -> "TaskRef":
        """Parse user input such as ``3`` or ``"3.2"``."""
        text = str(value).strip()
        if "." in text:
            head, _, tail = text.partition(".")
            task_id = as_positive_int(head)
            subtask_id = as_positive_int(tail)
            if task_id is None or subtask_id is None:
                raise ValidationError(f"invalid task reference: {value!r}")
            return cls(task_id, subtask_id)
        task_id = as_positive_int(text)
        if task_id is None:
            raise ValidationError(f"invalid task reference: {value!r}")
        return cls(task_id)

    @property
    def is_subtask(self) -> bool:
        return self.subtask_id is not None

    @property
    def parent(self) -> "TaskRef":
        return TaskRef(self.task_id)

    def sort_key(self) -> tuple[int, int]:
        return (self.task_id, self.subtask_id or 0)

    def __str__(self) -> str:
        if self.subtask_id is None:
            return str(self.task_id)
        return f"{self.task_id}.{self.subtask_id}"


def ref_from_dependency(value: object, *, parent_id: int | None = None) -> TaskRef | None:
    """Decode one raw dependency entry; ``None`` when it is not a reference."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        if value <= 0:
            return None
        if parent_id is not None:
            return TaskRef(parent_id, value)
        return TaskRef(value)
    if isinstance(value, str):
        text = value.strip()
        if "." in text:
            try:
                return TaskRef.parse(text)
            except ValidationError:
                return None
        task_id = as_positive_int(text)
        if task_id is None:
            return None
        return TaskRef(task_id)
    return None


def ref_to_dependency(ref: TaskRef, *, parent_id: int | None = None) -> int | str:
    """Encode a reference for storage in a task's or subtask's dependency list."""
    if parent_id is None:
        if ref.subtask_id is None:
            return ref.task_id
        return str(ref)
    if ref.subtask_id is None:
        return str(ref.task_id)
    if ref.task_id == parent_id:
        return ref.subtask_id
    return str(ref)


def dependency_refs(item: dict[str, Any], *, parent_id: int | None = None) -> list[TaskRef]:
    refs: list[TaskRef] = []
    for raw in item.get("dependencies") or []:
        ref = ref_from_dependency(raw, parent_id=parent_id)
        if ref is not None:
            refs.append(ref)
    return refs


def iter_items(
    tasks: list[dict[str, Any]],
) -> Iterator[tuple[TaskRef, dict[str, Any], int | None]]:
    """Yield ``(ref, item, parent_id)`` for every task followed by its subtasks."""
    for task in tasks:
        task_id = task["id"]
        yield TaskRef(task_id), task, None
        for subtask in task.get("subtasks") or []:
            yield TaskRef(task_id, subtask["id"]), subtask, task_id


def find_task(tasks: list[dict[str, Any]], task_id: int) -> dict[str, Any] | None:
    for task in tasks:
        if task.get("id") == task_id:
            return task
    return None


def find_subtask(task: dict[str, Any], subtask_id: int) -> dict[str, Any] | None:
    for subtask in task.get("subtasks") or []:
        if subtask.get("id") == subtask_id:
            return subtask
    return None


def find_item(tasks: list[dict[str, Any]], ref: TaskRef) -> dict[str, Any] | None:
    task = find_task(tasks, ref.task_id)
    if task is None or ref.subtask_id is None:
        return task
    return find_subtask(task, ref.subtask_id)


def require_task(tasks: list[dict[str, Any]], task_id: int) -> dict[str, Any]:
    task = find_task(tasks, task_id)
    if task is None:
        raise NotFoundError(f"task not found: {task_id}")
    return task


def require_item(tasks: list[dict[str, Any]], ref: TaskRef) -> dict[str, Any]:
    task = require_task(tasks, ref.task_id)
    if ref.subtask_id is None:
        return task
    subtask = find_subtask(task, ref.subtask_id)
    if subtask is None:
        raise NotFoundError(f"subtask not found: {ref}")
    return subtask


def existing_refs(tasks: list[dict[str, Any]]) -> set[TaskRef]:
    return {ref for ref, _, _ in iter_items(tasks)}


def next_task_id(tasks: list[dict[str, Any]]) -> int:
    return max((int(task["id"]) for task in tasks), default=0) + 1


def next_subtask_id(task: dict[str, Any]) -> int:
    subtasks = task.get("subtasks") or []
    highest = max((int(sub["id"]) for sub in subtasks), default=0)
    return max(len(subtasks), highest) + 1


def collapse_subtasks(task: dict[str, Any]) -> None:
    if "subtasks" in task and not task["subtasks"]:
        del task["subtasks"]
