"""Pick the single best actionable task or subtask."""

from __future__ import annotations

from typing import Any

from .complexity import ComplexityReport
from .models import (
    DEFAULT_PRIORITY,
    PRIORITY_RANK,
    TaskRef,
    find_item,
    is_done,
    ref_from_dependency,
)


def _dependencies_done(
    tasks: list[dict[str, Any]],
    item: dict[str, Any],
    *,
    parent_id: int | None = None,
) -> bool:
    for raw in item.get("dependencies") or []:
        ref = ref_from_dependency(raw, parent_id=parent_id)
        if ref is None:
            continue
        target = find_item(tasks, ref)
        if target is None or not is_done(target.get("status")):
            return False
    return True


def _rank(priority: object, dependencies: object, ref: TaskRef) -> tuple[int, int, int, int]:
    rank = PRIORITY_RANK.get(str(priority), PRIORITY_RANK[DEFAULT_PRIORITY])
    dep_count = len(dependencies) if isinstance(dependencies, list) else 0
    return (-rank, dep_count, ref.task_id, ref.subtask_id or 0)


def candidates(tasks: list[dict[str, Any]]) -> list[tuple[TaskRef, dict[str, Any], dict[str, Any] | None]]:
    """Eligible items as ``(ref, item, parent)``, best first.

    Eligible: pending tasks whose dependencies are all done, and pending
    subtasks of in-progress tasks whose own dependencies are all done.
    Ranked by priority, then fewer dependencies, then ascending id.
    """
    ranked: list[tuple[tuple[int, int, int, int], TaskRef, dict[str, Any], dict[str, Any] | None]] = []
    for task in tasks:
        task_id = task["id"]
        status = task.get("status")
        if status == "pending" and _dependencies_done(tasks, task):
            ref = TaskRef(task_id)
            key = _rank(task.get("priority"), task.get("dependencies"), ref)
            ranked.append((key, ref, task, None))
        if status != "in-progress":
            continue
        for subtask in task.get("subtasks") or []:
            if subtask.get("status") != "pending":
                continue
            if not _dependencies_done(tasks, subtask, parent_id=task_id):
                continue
            ref = TaskRef(task_id, subtask["id"])
            priority = subtask.get("priority") or task.get("priority")
            key = _rank(priority, subtask.get("dependencies"), ref)
            ranked.append((key, ref, subtask, task))

    ranked.sort(key=lambda row: row[0])
    return [(ref, item, parent) for _, ref, item, parent in ranked]


def next_task(
    tasks: list[dict[str, Any]],
    complexity_report: ComplexityReport | None = None,
) -> dict[str, Any] | None:
    found = candidates(tasks)
    if not found:
        return None

    ref, item, parent = found[0]
    result = dict(item)
    if parent is not None:
        result["parentId"] = parent["id"]
        result["parentTitle"] = parent.get("title", "")
        result.setdefault("priority", parent.get("priority", DEFAULT_PRIORITY))
        result["ref"] = str(ref)
        return result

    if complexity_report is not None:
        score = complexity_report.score_for(ref.task_id)
        if score is not None:
            result["complexityScore"] = score
    return result
