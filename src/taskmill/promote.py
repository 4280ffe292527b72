"""Move items between the task and subtask levels of one tag.

Each function returns a new task list and leaves its input alone, and
references elsewhere in the tag follow the moved item. Promotion is the only
move that adds an edge (the new task depends on its old parent), so it is the
one that checks for cycles.
"""

from __future__ import annotations

import copy
from typing import Any

from .errors import ConflictError, NotFoundError, ValidationError
from .graph import build_graph, find_cycles
from .models import (
    CONTENT_FIELDS,
    DEFAULT_PRIORITY,
    TaskRef,
    collapse_subtasks,
    dependency_refs,
    find_subtask,
    find_task,
    iter_items,
    next_subtask_id,
    next_task_id,
    ref_from_dependency,
    ref_to_dependency,
    require_task,
)


def _take_subtask(
    tasks: list[dict[str, Any]],
    parent_id: int,
    subtask_id: int,
) -> dict[str, Any]:
    parent = require_task(tasks, parent_id)
    subtasks = parent.get("subtasks") or []
    position = next(
        (idx for idx, sub in enumerate(subtasks) if sub.get("id") == subtask_id),
        None,
    )
    if position is None:
        raise NotFoundError(f"subtask not found: {parent_id}.{subtask_id}")
    subtask = subtasks.pop(position)
    collapse_subtasks(parent)
    return subtask


def _insert_sorted(items: list[dict[str, Any]], item: dict[str, Any]) -> None:
    position = next(
        (idx for idx, other in enumerate(items) if int(other["id"]) > int(item["id"])),
        len(items),
    )
    items.insert(position, item)


def _relocated_dependencies(
    refs: list[TaskRef],
    *,
    mapping: dict[TaskRef, TaskRef],
    node: TaskRef,
    parent_id: int | None,
    exclude: TaskRef | None = None,
) -> list[int | str]:
    deps: list[int | str] = []
    for ref in refs:
        ref = mapping.get(ref, ref)
        if ref == node or ref == exclude:
            continue
        encoded = ref_to_dependency(ref, parent_id=parent_id)
        if encoded not in deps:
            deps.append(encoded)
    return deps


def _repoint_references(
    tasks: list[dict[str, Any]],
    mapping: dict[TaskRef, TaskRef],
    *,
    moved: dict[str, Any],
    drop_from: TaskRef | None = None,
) -> None:
    """Rewrite references to the keys of ``mapping`` everywhere but ``moved``.

    ``drop_from`` loses its references to the moved item instead.
    """
    for holder, item, parent_id in iter_items(tasks):
        if item is moved:
            continue
        deps = item.get("dependencies")
        if not deps:
            continue
        rewritten: list[Any] = []
        changed = False
        for raw in deps:
            ref = ref_from_dependency(raw, parent_id=parent_id)
            target = mapping.get(ref) if ref is not None else None
            if target is None:
                rewritten.append(raw)
                continue
            changed = True
            if holder == drop_from or holder == target:
                continue
            encoded = ref_to_dependency(target, parent_id=parent_id)
            if encoded not in rewritten:
                rewritten.append(encoded)
        if changed:
            item["dependencies"] = rewritten


def _reject_cycles(tasks: list[dict[str, Any]], moved: TaskRef, action: str) -> None:
    for cycle in find_cycles(build_graph(tasks)):
        if moved in cycle:
            path = " -> ".join(str(ref) for ref in [*cycle, cycle[0]])
            raise ValidationError(f"{action} would create a dependency cycle: {path}")


def promote(
    tasks: list[dict[str, Any]],
    parent_id: int,
    subtask_id: int,
    *,
    task_id: int | None = None,
) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Promote subtask ``parent_id.subtask_id``; returns ``(tasks, new_task)``.

    The new task takes ``task_id`` (default: the next free task id), keeps the
    subtask's content and status, inherits the parent's priority and depends
    on the parent. References to the old subtask elsewhere in the tag now
    point at the new task; the parent's own reference to it is dropped.

    Raises ``ValidationError`` when the rewired references close a cycle,
    for example when the parent already waits on a task that waited on the
    promoted subtask.
    """
    updated = copy.deepcopy(tasks)
    parent = require_task(updated, parent_id)
    subtask = _take_subtask(updated, parent_id, subtask_id)

    if task_id is None:
        task_id = next_task_id(updated)
    elif find_task(updated, task_id) is not None:
        raise ConflictError(f"task {task_id} already exists")

    old_ref = TaskRef(parent_id, subtask_id)
    new_ref = TaskRef(task_id)
    new_task: dict[str, Any] = {"id": task_id}
    for key in CONTENT_FIELDS:
        new_task[key] = subtask.get(key, "")
    new_task["status"] = subtask.get("status") or "pending"
    new_task["priority"] = parent.get("priority") or DEFAULT_PRIORITY
    deps = _relocated_dependencies(
        dependency_refs(subtask, parent_id=parent_id),
        mapping={old_ref: new_ref},
        node=new_ref,
        parent_id=None,
    )
    if parent_id not in deps:
        deps.append(parent_id)
    new_task["dependencies"] = deps

    _insert_sorted(updated, new_task)
    _repoint_references(
        updated, {old_ref: new_ref}, moved=new_task, drop_from=TaskRef(parent_id)
    )
    _reject_cycles(updated, new_ref, f"promoting {old_ref}")
    return updated, new_task


def demote(
    tasks: list[dict[str, Any]],
    task_id: int,
    parent_id: int,
    *,
    subtask_id: int | None = None,
) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Turn task ``task_id`` into a subtask of ``parent_id``.

    Returns ``(tasks, subtask)``. The subtask takes ``subtask_id`` (default:
    the parent's next subtask id) and keeps the task's content, status and
    dependencies, less any reference to its new parent. Tasks that still
    have subtasks of their own cannot be moved.
    """
    if task_id == parent_id:
        raise ValidationError(f"task {task_id} cannot become a subtask of itself")
    updated = copy.deepcopy(tasks)
    task = require_task(updated, task_id)
    parent = require_task(updated, parent_id)
    if task.get("subtasks"):
        raise ValidationError(f"task {task_id} has subtasks of its own; move or clear them first")

    if subtask_id is None:
        subtask_id = next_subtask_id(parent)
    elif find_subtask(parent, subtask_id) is not None:
        raise ConflictError(f"subtask {parent_id}.{subtask_id} already exists")

    old_ref = TaskRef(task_id)
    new_ref = TaskRef(parent_id, subtask_id)
    subtask: dict[str, Any] = {"id": subtask_id}
    for key in CONTENT_FIELDS:
        subtask[key] = task.get(key, "")
    subtask["status"] = task.get("status") or "pending"
    subtask["dependencies"] = _relocated_dependencies(
        dependency_refs(task),
        mapping={old_ref: new_ref},
        node=new_ref,
        parent_id=parent_id,
        exclude=TaskRef(parent_id),
    )

    updated[:] = [item for item in updated if item is not task]
    _insert_sorted(parent.setdefault("subtasks", []), subtask)
    _repoint_references(updated, {old_ref: new_ref}, moved=subtask)
    return updated, subtask


def move_subtask(
    tasks: list[dict[str, Any]],
    source: TaskRef,
    destination: TaskRef,
) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Move subtask ``source`` to the free subtask ref ``destination``."""
    if source.subtask_id is None or destination.subtask_id is None:
        raise ValidationError("move_subtask needs two subtask references")
    if source == destination:
        raise ValidationError(f"{source} is already at {destination}")
    updated = copy.deepcopy(tasks)
    subtask = _take_subtask(updated, source.task_id, source.subtask_id)
    parent = require_task(updated, destination.task_id)
    if find_subtask(parent, destination.subtask_id) is not None:
        raise ConflictError(f"subtask {destination} already exists")

    refs = dependency_refs(subtask, parent_id=source.task_id)
    subtask["id"] = destination.subtask_id
    subtask["dependencies"] = _relocated_dependencies(
        refs,
        mapping={source: destination},
        node=destination,
        parent_id=destination.task_id,
        exclude=destination.parent,
    )
    _insert_sorted(parent.setdefault("subtasks", []), subtask)
    _repoint_references(updated, {source: destination}, moved=subtask)
    return updated, subtask


def renumber_task(
    tasks: list[dict[str, Any]],
    task_id: int,
    new_id: int,
) -> tuple[list[dict[str, Any]], dict[str, Any]]:
    """Give task ``task_id`` the free id ``new_id``, subtasks included."""
    if task_id == new_id:
        raise ValidationError(f"task {task_id} already has id {new_id}")
    updated = copy.deepcopy(tasks)
    task = require_task(updated, task_id)
    if find_task(updated, new_id) is not None:
        raise ConflictError(f"task {new_id} already exists")

    mapping = {TaskRef(task_id): TaskRef(new_id)}
    for sub in task.get("subtasks") or []:
        mapping[TaskRef(task_id, sub["id"])] = TaskRef(new_id, sub["id"])

    refs = dependency_refs(task)
    task["id"] = new_id
    task["dependencies"] = _relocated_dependencies(
        refs, mapping=mapping, node=TaskRef(new_id), parent_id=None
    )
    updated[:] = [item for item in updated if item is not task]
    _insert_sorted(updated, task)
    _repoint_references(updated, mapping, moved=task)
    return updated, task
