"""Tag lifecycle: create, copy, rename, delete, switch and list tags."""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from typing import Any

from .errors import ConflictError, NotFoundError, UnknownTagError, ValidationError
from .jsonio import now_iso
from .models import is_done
from .store import MASTER_TAG, ensure_tag_metadata, touch_tag

TAG_NAME_RE = re.compile(r"^[A-Za-z0-9_-]+$")
RESERVED_TAG_NAMES = frozenset({"master", "main", "default"})


@dataclass(frozen=True)
class TagSummary:
    name: str
    current: bool
    task_count: int
    completed_tasks: int
    subtask_count: int
    completed_subtasks: int
    metadata: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "current": self.current,
            "task_count": self.task_count,
            "completed_tasks": self.completed_tasks,
            "subtask_count": self.subtask_count,
            "completed_subtasks": self.completed_subtasks,
            "metadata": dict(self.metadata),
        }


def validate_tag_name(name: str) -> str:
    value = (name or "").strip()
    if not value:
        raise ValidationError("tag name must not be empty")
    if not TAG_NAME_RE.match(value):
        raise ValidationError(
            f"invalid tag name: {name!r} (letters, digits, hyphens and underscores only)"
        )
    if value.lower() in RESERVED_TAG_NAMES:
        raise ValidationError(f"tag name is reserved: {value}")
    return value


def _require(tags: dict[str, dict[str, Any]], name: str) -> dict[str, Any]:
    entry = tags.get(name)
    if entry is None:
        raise UnknownTagError(name)
    return entry


def _ensure_free(tags: dict[str, dict[str, Any]], name: str) -> None:
    if name in tags:
        raise ConflictError(f"tag already exists: {name}")


def create(
    tags: dict[str, dict[str, Any]],
    name: str,
    *,
    clone_from: str | None = None,
    description: str | None = None,
) -> dict[str, Any]:
    """Add tag ``name``, empty or a deep copy of ``clone_from``'s tasks."""
    name = validate_tag_name(name)
    _ensure_free(tags, name)

    tasks: list[dict[str, Any]] = []
    if clone_from is not None:
        source = tags.get(clone_from)
        if source is None:
            raise NotFoundError(f"source tag not found: {clone_from}")
        tasks = copy.deepcopy(source.get("tasks") or [])

    now = now_iso()
    if description is None:
        if clone_from is not None:
            description = f"Copy of {clone_from} created on {now[:10]}"
        else:
            description = f"Tag created on {now[:10]}"
    entry = {
        "tasks": tasks,
        "metadata": {"created": now, "updated": now, "description": description},
    }
    tags[name] = entry
    return entry


def copy_tag(
    tags: dict[str, dict[str, Any]],
    source: str,
    target: str,
    *,
    description: str | None = None,
) -> dict[str, Any]:
    return create(tags, target, clone_from=source, description=description)


def rename(
    tags: dict[str, dict[str, Any]],
    old: str,
    new: str,
    *,
    current_tag: str | None = None,
) -> str | None:
    """Rename ``old`` to ``new`` in place, keeping tag order.

    Returns the current-tag pointer to record afterwards.
    """
    if old == MASTER_TAG:
        raise ValidationError("cannot rename the master tag")
    _require(tags, old)
    new = validate_tag_name(new)
    _ensure_free(tags, new)

    entries = list(tags.items())
    tags.clear()
    for name, entry in entries:
        if name == old:
            ensure_tag_metadata(new, entry)
            entry["metadata"]["renamedFrom"] = old
            touch_tag(entry)
            tags[new] = entry
        else:
            tags[name] = entry
    return new if current_tag == old else current_tag


def delete(
    tags: dict[str, dict[str, Any]],
    name: str,
    *,
    current_tag: str | None = None,
) -> tuple[dict[str, Any], str | None]:
    """Remove tag ``name`` and everything in it.

    Returns the removed entry and the pointer to record afterwards; deleting
    the current tag moves the pointer back to master.
    """
    if name == MASTER_TAG:
        raise ValidationError("cannot delete the master tag")
    entry = _require(tags, name)
    del tags[name]
    return entry, MASTER_TAG if current_tag == name else current_tag


def use(tags: dict[str, dict[str, Any]], name: str) -> dict[str, Any]:
    return _require(tags, name)


def summarize(name: str, entry: dict[str, Any], *, current: bool) -> TagSummary:
    tasks = entry.get("tasks") or []
    subtasks = [sub for task in tasks for sub in task.get("subtasks") or []]
    return TagSummary(
        name=name,
        current=current,
        task_count=len(tasks),
        completed_tasks=sum(1 for task in tasks if is_done(task.get("status"))),
        subtask_count=len(subtasks),
        completed_subtasks=sum(1 for sub in subtasks if is_done(sub.get("status"))),
        metadata=dict(entry.get("metadata") or {}),
    )


def list_tags(
    tags: dict[str, dict[str, Any]],
    *,
    current_tag: str | None = None,
) -> list[TagSummary]:
    """Summaries with master first, then the rest by name."""
    current = current_tag or MASTER_TAG
    names = sorted(tags, key=lambda name: (name != MASTER_TAG, name))
    return [summarize(name, tags[name], current=name == current) for name in names]
