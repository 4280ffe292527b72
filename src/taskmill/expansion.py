"""Normalize generated subtasks and merge them into a parent task."""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError, field_validator

from .complexity import ComplexityReport
from .config import DEFAULT_SUBTASKS
from .errors import NormalizationError
from .models import as_positive_int, collapse_subtasks, next_subtask_id, require_task

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)


class SubtaskCandidate(BaseModel):
    """One generated subtask as accepted at the boundary; ids are ignored."""

    model_config = ConfigDict(extra="ignore")

    title: str
    description: str = ""
    details: str = ""
    testStrategy: str = ""
    dependencies: list[Any] = []

    @field_validator("title")
    @classmethod
    def _title_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("title must not be blank")
        return value

    @field_validator("description", "details", "testStrategy", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("dependencies", mode="before")
    @classmethod
    def _deps_as_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if not isinstance(value, list):
            return [value]
        return value


@dataclass(frozen=True)
class ExpansionResult:
    task_id: int
    added: list[dict[str, Any]] = field(default_factory=list)
    dropped: int = 0
    truncated: int = 0
    replaced: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "added": self.added,
            "dropped": self.dropped,
            "truncated": self.truncated,
            "replaced": self.replaced,
        }


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        return None


def parse_subtasks_text(text: str) -> list[Any]:
    """Pull the ``subtasks`` array out of raw generator output.

    Accepts a fenced code block, prose around a JSON object, or a bare array.
    """
    body = (text or "").strip()
    if not body:
        raise NormalizationError("generator returned no output")

    fenced = _FENCE_RE.search(body)
    if fenced:
        body = fenced.group(1).strip()

    data = _loads(body)
    if data is None:
        start, end = body.find("{"), body.rfind("}")
        if start != -1 and end > start:
            data = _loads(body[start : end + 1])
    if data is None:
        start, end = body.find("["), body.rfind("]")
        if start != -1 and end > start:
            data = _loads(body[start : end + 1])

    if isinstance(data, dict) and isinstance(data.get("subtasks"), list):
        return data["subtasks"]
    if isinstance(data, list):
        return data
    raise NormalizationError("could not find a subtasks array in generator output")


def subtask_count_for(
    task: dict[str, Any],
    report: ComplexityReport | None = None,
    default: int = DEFAULT_SUBTASKS,
) -> int:
    if report is not None:
        entry = report.entry_for(task["id"])
        if entry is not None and entry.recommendedSubtasks and entry.recommendedSubtasks > 0:
            return entry.recommendedSubtasks
    return default


def normalize_expansion(
    raw_items: object,
    *,
    next_id: int,
    count: int | None = None,
) -> tuple[list[dict[str, Any]], int, int]:
    """Turn untrusted items into subtasks numbered from ``next_id``.

    Returns ``(subtasks, dropped, truncated)``. Dependencies survive only when
    they point at an earlier item of the same batch. Items that fail the
    schema are dropped and the survivors renumbered without gaps.
    """
    if not isinstance(raw_items, list):
        raise NormalizationError("subtasks must be an array")

    accepted: list[tuple[int, SubtaskCandidate]] = []
    dropped = 0
    for position, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            dropped += 1
            continue
        try:
            accepted.append((next_id + position, SubtaskCandidate.model_validate(raw)))
        except PydanticValidationError:
            dropped += 1

    if raw_items and not accepted:
        raise NormalizationError(
            f"none of the {len(raw_items)} generated subtasks passed validation"
        )

    truncated = 0
    if count is not None and len(accepted) > count:
        truncated = len(accepted) - count
        accepted = accepted[:count]

    renumber = {
        assigned: next_id + idx for idx, (assigned, _) in enumerate(accepted)
    }
    subtasks: list[dict[str, Any]] = []
    for assigned, candidate in accepted:
        deps: list[int] = []
        for raw_dep in candidate.dependencies:
            dep = as_positive_int(raw_dep)
            if dep is None or not (next_id <= dep < assigned):
                continue
            new_dep = renumber.get(dep)
            if new_dep is not None and new_dep not in deps:
                deps.append(new_dep)
        subtasks.append(
            {
                "id": renumber[assigned],
                "title": candidate.title,
                "description": candidate.description,
                "dependencies": deps,
                "details": candidate.details,
                "status": "pending",
                "testStrategy": candidate.testStrategy,
            }
        )
    return subtasks, dropped, truncated


def expand_task(
    tasks: list[dict[str, Any]],
    task_id: int,
    raw_items: object,
    *,
    count: int | None = None,
    force: bool = False,
) -> tuple[list[dict[str, Any]], ExpansionResult]:
    """Merge normalized subtasks into task ``task_id`` of a copy of ``tasks``.

    With ``force`` existing subtasks are replaced, otherwise new ones are
    appended after them.
    """
    updated = copy.deepcopy(tasks)
    task = require_task(updated, task_id)

    existing = list(task.get("subtasks") or [])
    replaced = 0
    if force and existing:
        replaced = len(existing)
        existing = []

    next_id = next_subtask_id({"subtasks": existing})
    added, dropped, truncated = normalize_expansion(raw_items, next_id=next_id, count=count)

    task["subtasks"] = existing + added
    collapse_subtasks(task)
    return updated, ExpansionResult(
        task_id=task_id,
        added=added,
        dropped=dropped,
        truncated=truncated,
        replaced=replaced,
    )
