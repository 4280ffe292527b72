"""Task and subtask operations on one tag's task list.

Every mutator works in place on the list it is given; the caller persists it.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from .errors import ValidationError
from .graph import would_create_cycle
from .models import (
    DEFAULT_PRIORITY,
    TASK_STATUSES,
    TaskRef,
    collapse_subtasks,
    existing_refs,
    is_done,
    iter_items,
    next_subtask_id,
    next_task_id,
    normalize_priority,
    normalize_status,
    ref_from_dependency,
    ref_to_dependency,
    require_item,
    require_task,
)
from .promote import demote, move_subtask, promote, renumber_task


def _as_ref(value: TaskRef | str | int) -> TaskRef:
    if isinstance(value, TaskRef):
        return value
    return TaskRef.parse(value)


def find_task(tasks: list[dict[str, Any]], ref: TaskRef | str | int) -> dict[str, Any]:
    """Return a view of the task or subtask at ``ref``.

    Subtask views carry ``parentId`` and ``parentTitle``.
    """
    target = _as_ref(ref)
    item = dict(require_item(tasks, target))
    if target.is_subtask:
        parent = require_task(tasks, target.task_id)
        item["parentId"] = parent["id"]
        item["parentTitle"] = parent.get("title", "")
    return item


def _strip_references(
    tasks: list[dict[str, Any]],
    doomed: Callable[[TaskRef], bool],
) -> int:
    removed = 0
    for _, item, parent_id in iter_items(tasks):
        deps = item.get("dependencies")
        if not deps:
            continue
        kept = []
        for raw in deps:
            ref = ref_from_dependency(raw, parent_id=parent_id)
            if ref is None or not doomed(ref):
                kept.append(raw)
        removed += len(deps) - len(kept)
        if len(kept) != len(deps):
            item["dependencies"] = kept
    return removed


def _checked_dependencies(
    tasks: list[dict[str, Any]],
    node: TaskRef,
    values: Iterable[TaskRef | str | int],
    *,
    parent_id: int | None = None,
) -> list[int | str]:
    known = existing_refs(tasks)
    deps: list[int | str] = []
    for value in values:
        ref = _as_ref(value)
        if ref == node:
            raise ValidationError(f"{node} cannot depend on itself")
        if ref not in known:
            raise ValidationError(f"dependency not found: {ref}")
        encoded = ref_to_dependency(ref, parent_id=parent_id)
        if encoded not in deps:
            deps.append(encoded)
    return deps


def add_task(
    tasks: list[dict[str, Any]],
    *,
    title: str,
    description: str = "",
    details: str = "",
    test_strategy: str = "",
    priority: str = DEFAULT_PRIORITY,
    dependencies: Iterable[TaskRef | str | int] = (),
) -> dict[str, Any]:
    title = (title or "").strip()
    if not title:
        raise ValidationError("title must not be empty")
    task_id = next_task_id(tasks)
    task = {
        "id": task_id,
        "title": title,
        "description": description,
        "details": details,
        "testStrategy": test_strategy,
        "status": "pending",
        "priority": normalize_priority(priority),
        "dependencies": _checked_dependencies(tasks, TaskRef(task_id), dependencies),
    }
    tasks.append(task)
    return task


def remove_task(tasks: list[dict[str, Any]], task_id: int) -> dict[str, Any]:
    """Delete a task with its subtasks and every reference to either."""
    task = require_task(tasks, task_id)
    tasks.remove(task)
    _strip_references(tasks, lambda ref: ref.task_id == task_id)
    return task


def remove_items(
    tasks: list[dict[str, Any]],
    refs: Iterable[TaskRef | str | int],
) -> list[tuple[TaskRef, dict[str, Any]]]:
    """Remove a mix of tasks and subtasks; nothing changes if any ref is unknown.

    Subtasks go first, so ``3.2,3`` and ``3,3.2`` both succeed.
    """
    targets = list(dict.fromkeys(_as_ref(ref) for ref in refs))
    for ref in targets:
        require_item(tasks, ref)

    removed: list[tuple[TaskRef, dict[str, Any]]] = []
    for ref in sorted(targets, key=lambda ref: not ref.is_subtask):
        if ref.subtask_id is None:
            removed.append((ref, remove_task(tasks, ref.task_id)))
        else:
            removed.append((ref, remove_subtask(tasks, ref.task_id, ref.subtask_id)))
    return removed


def add_subtask(
    tasks: list[dict[str, Any]],
    parent_id: int,
    *,
    title: str,
    description: str = "",
    details: str = "",
    test_strategy: str = "",
    status: str = "pending",
    dependencies: Iterable[TaskRef | str | int] = (),
) -> dict[str, Any]:
    """Append a subtask to ``parent_id``.

    Dependencies are given as task refs (``7`` or ``7.2``); refs to siblings
    are stored as bare subtask ids.
    """
    title = (title or "").strip()
    if not title:
        raise ValidationError("title must not be empty")
    parent = require_task(tasks, parent_id)
    subtask_id = next_subtask_id(parent)
    node = TaskRef(parent_id, subtask_id)
    deps = _checked_dependencies(tasks, node, dependencies, parent_id=parent_id)
    subtask = {
        "id": subtask_id,
        "title": title,
        "description": description,
        "dependencies": deps,
        "details": details,
        "status": normalize_status(status),
        "testStrategy": test_strategy,
    }
    parent.setdefault("subtasks", []).append(subtask)
    return subtask


def remove_subtask(
    tasks: list[dict[str, Any]],
    parent_id: int,
    subtask_id: int,
    *,
    convert: bool = False,
) -> dict[str, Any]:
    """Remove subtask ``parent_id.subtask_id``.

    With ``convert`` the subtask becomes a standalone task and that task is
    returned; otherwise the removed subtask is returned and references to it
    are dropped.
    """
    if convert:
        updated, new_task = promote(tasks, parent_id, subtask_id)
        tasks[:] = updated
        return new_task

    target = TaskRef(parent_id, subtask_id)
    parent = require_task(tasks, parent_id)
    subtask = require_item(tasks, target)
    parent["subtasks"].remove(subtask)
    collapse_subtasks(parent)
    _strip_references(tasks, lambda ref: ref == target)
    return subtask


def convert_to_subtask(
    tasks: list[dict[str, Any]],
    task_id: int,
    parent_id: int,
) -> dict[str, Any]:
    """Turn an existing task into the next subtask of ``parent_id``."""
    updated, subtask = demote(tasks, task_id, parent_id)
    tasks[:] = updated
    return subtask


def move_item(
    tasks: list[dict[str, Any]],
    source: TaskRef | str | int,
    destination: TaskRef | str | int,
) -> dict[str, Any]:
    """Move the task or subtask at ``source`` to the free ref ``destination``.

    Both ends may be tasks or subtasks: ``5 -> 9`` renumbers a task,
    ``5 -> 3.4`` makes it a subtask, ``3.2 -> 9`` promotes a subtask and
    ``3.2 -> 7.1`` moves it under another parent.
    """
    src = _as_ref(source)
    dst = _as_ref(destination)
    if src.subtask_id is not None and dst.subtask_id is not None:
        updated, item = move_subtask(tasks, src, dst)
    elif src.subtask_id is not None:
        updated, item = promote(tasks, src.task_id, src.subtask_id, task_id=dst.task_id)
    elif dst.subtask_id is not None:
        updated, item = demote(tasks, src.task_id, dst.task_id, subtask_id=dst.subtask_id)
    else:
        updated, item = renumber_task(tasks, src.task_id, dst.task_id)
    tasks[:] = updated
    return item


def clear_subtasks(tasks: list[dict[str, Any]], task_ids: Iterable[int]) -> dict[int, int]:
    """Drop all subtasks of the given tasks; returns removed counts per task."""
    cleared: dict[int, int] = {}
    for task_id in task_ids:
        task = require_task(tasks, task_id)
        count = len(task.get("subtasks") or [])
        task.pop("subtasks", None)
        cleared[task_id] = count
        if count:
            _strip_references(
                tasks, lambda ref, tid=task_id: ref.task_id == tid and ref.is_subtask
            )
    return cleared


def set_status(
    tasks: list[dict[str, Any]],
    refs: Iterable[TaskRef | str | int],
    status: str,
) -> list[TaskRef]:
    """Set ``status`` on each ref; finishing a task finishes its subtasks."""
    status = normalize_status(status)
    targets = [_as_ref(ref) for ref in refs]
    items = [(ref, require_item(tasks, ref)) for ref in targets]

    updated: list[TaskRef] = []
    for ref, item in items:
        item["status"] = status
        updated.append(ref)
        if ref.is_subtask or not is_done(status):
            continue
        for subtask in item.get("subtasks") or []:
            if not is_done(subtask.get("status")):
                subtask["status"] = status
    return updated


def add_dependency(
    tasks: list[dict[str, Any]],
    ref: TaskRef | str | int,
    dependency: TaskRef | str | int,
) -> bool:
    """Make ``ref`` depend on ``dependency``; ``False`` if it already does."""
    node = _as_ref(ref)
    target = _as_ref(dependency)
    item = require_item(tasks, node)
    if target == node:
        raise ValidationError(f"{node} cannot depend on itself")
    if target not in existing_refs(tasks):
        raise ValidationError(f"dependency not found: {target}")

    parent_id = node.task_id if node.is_subtask else None
    current = item.get("dependencies") or []
    if any(ref_from_dependency(raw, parent_id=parent_id) == target for raw in current):
        return False
    if would_create_cycle(tasks, node, target):
        raise ValidationError(f"adding {target} to {node} would create a dependency cycle")
    item["dependencies"] = [*current, ref_to_dependency(target, parent_id=parent_id)]
    return True


def remove_dependency(
    tasks: list[dict[str, Any]],
    ref: TaskRef | str | int,
    dependency: TaskRef | str | int,
) -> bool:
    """Remove ``dependency`` from ``ref``; ``False`` if it was not there."""
    node = _as_ref(ref)
    target = _as_ref(dependency)
    item = require_item(tasks, node)
    parent_id = node.task_id if node.is_subtask else None
    current = item.get("dependencies") or []
    kept = [raw for raw in current if ref_from_dependency(raw, parent_id=parent_id) != target]
    if len(kept) == len(current):
        return False
    item["dependencies"] = kept
    return True


@dataclass(frozen=True)
class TaskStats:
    total: int = 0
    by_status: dict[str, int] = field(default_factory=dict)
    subtasks_total: int = 0
    subtasks_by_status: dict[str, int] = field(default_factory=dict)

    @staticmethod
    def _percent(done: int, total: int) -> float:
        return round(done * 100.0 / total, 1) if total else 0.0

    @property
    def done(self) -> int:
        return self.by_status.get("done", 0) + self.by_status.get("completed", 0)

    @property
    def subtasks_done(self) -> int:
        return self.subtasks_by_status.get("done", 0) + self.subtasks_by_status.get(
            "completed", 0
        )

    @property
    def percent_done(self) -> float:
        return self._percent(self.done, self.total)

    @property
    def subtasks_percent_done(self) -> float:
        return self._percent(self.subtasks_done, self.subtasks_total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "done": self.done,
            "percent_done": self.percent_done,
            "by_status": dict(self.by_status),
            "subtasks_total": self.subtasks_total,
            "subtasks_done": self.subtasks_done,
            "subtasks_percent_done": self.subtasks_percent_done,
            "subtasks_by_status": dict(self.subtasks_by_status),
        }


def task_stats(tasks: list[dict[str, Any]]) -> TaskStats:
    by_status = {status: 0 for status in TASK_STATUSES}
    sub_by_status = {status: 0 for status in TASK_STATUSES}
    subtasks_total = 0
    for task in tasks:
        status = str(task.get("status") or "pending")
        by_status[status] = by_status.get(status, 0) + 1
        for subtask in task.get("subtasks") or []:
            subtasks_total += 1
            sub_status = str(subtask.get("status") or "pending")
            sub_by_status[sub_status] = sub_by_status.get(sub_status, 0) + 1
    return TaskStats(
        total=len(tasks),
        by_status=by_status,
        subtasks_total=subtasks_total,
        subtasks_by_status=sub_by_status,
    )


def list_tasks(
    tasks: list[dict[str, Any]],
    *,
    status: str | None = None,
) -> tuple[list[dict[str, Any]], TaskStats]:
    """Tasks filtered by status (comma-separated allowed) and whole-tag stats."""
    stats = task_stats(tasks)
    if not status:
        return list(tasks), stats
    wanted = {normalize_status(part) for part in status.split(",") if part.strip()}
    return [task for task in tasks if task.get("status") in wanted], stats


def require_subtask_ref(value: str) -> TaskRef:
    ref = TaskRef.parse(value)
    if not ref.is_subtask:
        raise ValidationError(f"expected a subtask reference like 3.2, got {value!r}")
    return ref


def require_task_ref(value: str) -> TaskRef:
    ref = TaskRef.parse(value)
    if ref.is_subtask:
        raise ValidationError(f"expected a task id, got {value!r}")
    return ref
