"""JSON-backed, tag-partitioned task store."""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .config import TaskmillConfig
from .errors import StoreIOError, UnknownTagError
from .jsonio import now_iso, read_json, write_json
from .state import ProjectContext

MASTER_TAG = "master"
MASTER_DESCRIPTION = "Tasks live here by default"

# Schema versions of the tasks file:
#   0: legacy flat document {"tasks": [...], "metadata"?: {...}}
#   1: tag name -> {"tasks": [...], "metadata": {...}}
SCHEMA_VERSION = 1


def default_metadata(description: str | None = None) -> dict[str, str]:
    now = now_iso()
    return {
        "created": now,
        "updated": now,
        "description": description or MASTER_DESCRIPTION,
    }


def empty_tags() -> dict[str, dict[str, Any]]:
    return {MASTER_TAG: {"tasks": [], "metadata": default_metadata()}}


def ensure_tag_metadata(name: str, entry: dict[str, Any]) -> None:
    metadata = entry.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
        entry["metadata"] = metadata
    if not metadata.get("created"):
        metadata["created"] = now_iso()
    if not metadata.get("updated"):
        metadata["updated"] = metadata["created"]
    if not metadata.get("description"):
        metadata["description"] = (
            MASTER_DESCRIPTION if name == MASTER_TAG else f"Tasks for {name} context"
        )


def touch_tag(entry: dict[str, Any]) -> None:
    entry.setdefault("metadata", {})["updated"] = now_iso()


def detect_schema_version(raw: object) -> int:
    if isinstance(raw, dict) and isinstance(raw.get("tasks"), list):
        return 0
    return SCHEMA_VERSION


def _is_record_id(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _check_records(name: str, tasks: list[Any]) -> None:
    """Fail on records the task operations cannot address."""

    def invalid(detail: str) -> StoreIOError:
        return StoreIOError(f"invalid task record in tag {name!r}: {detail}")

    task_ids: set[int] = set()
    for index, task in enumerate(tasks):
        if not isinstance(task, dict):
            raise invalid(f"entry {index} is not an object")
        task_id = task.get("id")
        if not _is_record_id(task_id):
            raise invalid(f"entry {index} has no positive integer id ({task_id!r})")
        if task_id in task_ids:
            raise invalid(f"duplicate task id {task_id}")
        task_ids.add(task_id)
        if not isinstance(task.get("dependencies") or [], list):
            raise invalid(f"task {task_id} dependencies must be a list")

        subtasks = task.get("subtasks")
        if subtasks is None:
            continue
        if not isinstance(subtasks, list):
            raise invalid(f"task {task_id} subtasks must be a list")
        subtask_ids: set[int] = set()
        for position, subtask in enumerate(subtasks):
            if not isinstance(subtask, dict):
                raise invalid(f"subtask {position} of task {task_id} is not an object")
            subtask_id = subtask.get("id")
            if not _is_record_id(subtask_id):
                raise invalid(
                    f"subtask {position} of task {task_id} has no positive integer id ({subtask_id!r})"
                )
            if subtask_id in subtask_ids:
                raise invalid(f"duplicate subtask id {task_id}.{subtask_id}")
            subtask_ids.add(subtask_id)
            if not isinstance(subtask.get("dependencies") or [], list):
                raise invalid(f"subtask {task_id}.{subtask_id} dependencies must be a list")


def migrate_legacy(raw: object) -> tuple[dict[str, dict[str, Any]], bool]:
    """Bring a raw tasks document to the tagged schema.

    Returns the tag map and whether a legacy document was converted. Running
    this on already-tagged data changes nothing but missing tag metadata.
    Task records without usable ids raise ``StoreIOError``.
    """
    if not isinstance(raw, dict):
        raise StoreIOError("tasks file must contain a JSON object")

    migrated = False
    if detect_schema_version(raw) == 0:
        metadata = raw.get("metadata")
        tags: dict[str, dict[str, Any]] = {
            MASTER_TAG: {
                "tasks": raw["tasks"],
                "metadata": dict(metadata) if isinstance(metadata, dict) else {},
            }
        }
        migrated = True
    else:
        tags = {}
        for name, entry in raw.items():
            if not isinstance(entry, dict) or not isinstance(entry.get("tasks", []), list):
                raise StoreIOError(f"invalid tag entry: {name}")
            entry.setdefault("tasks", [])
            tags[str(name)] = entry

    for name, entry in tags.items():
        _check_records(name, entry["tasks"])
        ensure_tag_metadata(name, entry)
    return tags, migrated


def load_tags(path: Path) -> tuple[dict[str, dict[str, Any]], bool]:
    if not path.exists():
        return empty_tags(), False
    try:
        raw = read_json(path)
    except json.JSONDecodeError as exc:
        raise StoreIOError(f"tasks file is not valid JSON: {path}: {exc}") from exc
    except OSError as exc:
        raise StoreIOError(f"could not read tasks file: {path}: {exc}") from exc
    return migrate_legacy(raw)


def resolve(
    tags: dict[str, dict[str, Any]],
    explicit_tag: str | None = None,
    *,
    current_tag: str | None = None,
) -> tuple[str, list[dict[str, Any]]]:
    name = explicit_tag or current_tag or MASTER_TAG
    entry = tags.get(name)
    if entry is None:
        raise UnknownTagError(name)
    return name, entry.setdefault("tasks", [])


def _persisted_item(item: dict[str, Any]) -> dict[str, Any]:
    out = {
        key: copy.deepcopy(value)
        for key, value in item.items()
        if not key.startswith("_") and key != "subtasks"
    }
    subtasks = item.get("subtasks")
    if subtasks:
        out["subtasks"] = [_persisted_item(sub) for sub in subtasks]
    return out


def serialize_tags(tags: dict[str, dict[str, Any]]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for name, entry in tags.items():
        out[name] = {
            "tasks": [_persisted_item(task) for task in entry.get("tasks") or []],
            "metadata": dict(entry.get("metadata") or {}),
        }
    return out


@dataclass(frozen=True)
class LoadResult:
    tags: dict[str, dict[str, Any]]
    active_tag: str
    migrated: bool = False


class TaskStore:
    """Tag-partitioned tasks file plus the current-tag pointer in state.json."""

    def __init__(self, tasks_path: Path, state_path: Path) -> None:
        self.tasks_path = tasks_path
        self.state_path = state_path

    @classmethod
    def from_context(cls, ctx: ProjectContext, config: TaskmillConfig) -> "TaskStore":
        return cls(config.tasks_path, ctx.state_path)

    # -- state pointer ------------------------------------------------------

    def _read_state(self) -> dict[str, Any]:
        if not self.state_path.exists():
            return {}
        try:
            state = read_json(self.state_path)
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreIOError(f"could not read state file: {self.state_path}: {exc}") from exc
        if not isinstance(state, dict):
            raise StoreIOError(f"state file must contain a JSON object: {self.state_path}")
        return state

    def _write_state(self, **fields: Any) -> None:
        state = self._read_state()
        state.update(fields)
        write_json(self.state_path, state)

    def current_tag(self) -> str:
        value = self._read_state().get("currentTag")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return MASTER_TAG

    def set_current_tag(self, name: str) -> None:
        self._write_state(currentTag=name, lastSwitched=now_iso())

    def consume_migration_notice(self) -> bool:
        state = self._read_state()
        if state.get("migrationNoticeShown", True):
            return False
        self._write_state(migrationNoticeShown=True)
        return True

    # -- tasks file ---------------------------------------------------------

    def load(self) -> LoadResult:
        tags, migrated = load_tags(self.tasks_path)
        if migrated:
            self.save(tags)
            self._write_state(migrationNoticeShown=False)
        return LoadResult(tags=tags, active_tag=self.current_tag(), migrated=migrated)

    def resolve(
        self,
        tags: dict[str, dict[str, Any]],
        explicit_tag: str | None = None,
    ) -> tuple[str, list[dict[str, Any]]]:
        return resolve(tags, explicit_tag, current_tag=self.current_tag())

    def save(self, tags: dict[str, dict[str, Any]]) -> None:
        write_json(self.tasks_path, serialize_tags(tags))
