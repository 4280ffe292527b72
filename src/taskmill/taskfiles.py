"""Per-task text files mirroring one tag's task list."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from .models import TaskRef, find_item, ref_from_dependency
from .store import MASTER_TAG


@dataclass(frozen=True)
class TaskFilesResult:
    written: list[Path] = field(default_factory=list)
    removed: list[Path] = field(default_factory=list)


def task_file_name(task_id: int, tag: str = MASTER_TAG) -> str:
    if tag == MASTER_TAG:
        return f"task_{task_id:03d}.txt"
    return f"task_{task_id:03d}_{tag}.txt"


def _file_pattern(tag: str) -> re.Pattern[str]:
    if tag == MASTER_TAG:
        return re.compile(r"^task_(\d+)\.txt$")
    return re.compile(rf"^task_(\d+)_{re.escape(tag)}\.txt$")


def _format_dependencies(
    tasks: list[dict[str, Any]],
    item: dict[str, Any],
    *,
    parent_id: int | None = None,
) -> str:
    labels: list[str] = []
    for raw in item.get("dependencies") or []:
        ref = ref_from_dependency(raw, parent_id=parent_id)
        if ref is None:
            continue
        target = find_item(tasks, ref)
        status = target.get("status", "pending") if target is not None else "missing"
        labels.append(f"{ref} ({status})")
    return ", ".join(labels) if labels else "None"


def format_task_file(tasks: list[dict[str, Any]], task: dict[str, Any]) -> str:
    task_id = task["id"]
    lines = [
        f"# Task ID: {task_id}",
        f"# Title: {task.get('title', '')}",
        f"# Status: {task.get('status', 'pending')}",
        f"# Dependencies: {_format_dependencies(tasks, task)}",
        f"# Priority: {task.get('priority', 'medium')}",
        f"# Description: {task.get('description', '')}",
        "# Details:",
        str(task.get("details") or ""),
        "",
        "# Test Strategy:",
        str(task.get("testStrategy") or ""),
    ]

    subtasks = task.get("subtasks") or []
    if subtasks:
        lines += ["", "# Subtasks:"]
        for subtask in subtasks:
            ref = TaskRef(task_id, subtask["id"])
            lines += [
                f"## {ref}. {subtask.get('title', '')} [{subtask.get('status', 'pending')}]",
                "### Dependencies: "
                + _format_dependencies(tasks, subtask, parent_id=task_id),
                f"### Description: {subtask.get('description', '')}",
                "### Details:",
                str(subtask.get("details") or ""),
                "",
            ]
    return "\n".join(lines).rstrip() + "\n"


def generate_task_files(
    tasks: list[dict[str, Any]],
    out_dir: Path,
    tag: str = MASTER_TAG,
) -> TaskFilesResult:
    """Write one file per task and delete files of this tag with no task left."""
    out_dir.mkdir(parents=True, exist_ok=True)
    wanted = {task["id"] for task in tasks}

    removed: list[Path] = []
    pattern = _file_pattern(tag)
    for path in sorted(out_dir.iterdir()):
        match = pattern.match(path.name)
        if match and int(match.group(1)) not in wanted:
            path.unlink()
            removed.append(path)

    written: list[Path] = []
    for task in tasks:
        path = out_dir / task_file_name(task["id"], tag)
        path.write_text(format_task_file(tasks, task), encoding="utf-8")
        written.append(path)
    return TaskFilesResult(written=written, removed=removed)
