from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import tomllib

from .errors import TaskmillError
from .models import DEFAULT_PRIORITY, TASK_PRIORITIES

DEFAULT_SUBTASKS = 3
DEFAULT_TASKS_FILE = "tasks.json"
DEFAULT_COMPLEXITY_REPORT = "reports/task-complexity-report.json"
GENERATION_ROLES = ("main", "research")


class ConfigValidationError(TaskmillError):
    pass


@dataclass(frozen=True)
class GenerationConfig:
    main: tuple[str, ...] = ()
    research: tuple[str, ...] = ()
    fallback: tuple[str, ...] = ()

    def command_for(self, role: str) -> tuple[str, ...]:
        if role == "research":
            return self.research
        return self.main


@dataclass(frozen=True)
class TaskmillConfig:
    state_dir: Path
    project_name: str | None = None
    default_subtasks: int = DEFAULT_SUBTASKS
    default_priority: str = DEFAULT_PRIORITY
    tasks_file: Path | None = None
    complexity_report: Path | None = None
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    source_path: Path | None = None

    @property
    def tasks_path(self) -> Path:
        return self.tasks_file or self.state_dir / DEFAULT_TASKS_FILE

    @property
    def complexity_report_path(self) -> Path:
        return self.complexity_report or self.state_dir / DEFAULT_COMPLEXITY_REPORT


def _as_str(value: object) -> str | None:
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    if not stripped:
        return None
    return stripped


def _as_str_tuple(value: object, *, field: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(part for part in value.split() if part)
    if not isinstance(value, list):
        raise ConfigValidationError(f"{field} must be an array of strings")

    out: list[str] = []
    for idx, item in enumerate(value):
        text = _as_str(item)
        if text is None:
            raise ConfigValidationError(f"{field}[{idx}] must be a non-empty string")
        out.append(text)
    return tuple(out)


def _resolve_path(value: object, *, field: str, project_root: Path) -> Path | None:
    if value is None:
        return None
    text = _as_str(value)
    if text is None:
        raise ConfigValidationError(f"{field} must be a non-empty string")
    path = Path(text).expanduser()
    if path.is_absolute():
        return path
    return project_root / path


def _parse_default_subtasks(value: object) -> int:
    if value is None:
        return DEFAULT_SUBTASKS
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError("[project].default_subtasks must be an integer >= 1")
    if value < 1:
        raise ConfigValidationError("[project].default_subtasks must be >= 1")
    return value


def _parse_generation(raw: object) -> GenerationConfig:
    if raw is None:
        return GenerationConfig()
    if not isinstance(raw, dict):
        raise ConfigValidationError("[generation] must be a table")

    fallback: list[str] = []
    for item in _as_str_tuple(raw.get("fallback"), field="[generation].fallback"):
        role = item.lower()
        if role not in GENERATION_ROLES:
            raise ConfigValidationError(
                f"invalid role in [generation].fallback: {item!r} "
                f"(expected one of: {', '.join(GENERATION_ROLES)})"
            )
        if role not in fallback:
            fallback.append(role)

    return GenerationConfig(
        main=_as_str_tuple(raw.get("main"), field="[generation].main"),
        research=_as_str_tuple(raw.get("research"), field="[generation].research"),
        fallback=tuple(fallback),
    )


def load_config(state_dir: Path) -> TaskmillConfig:
    path = state_dir / "config.toml"
    if not path.exists():
        return TaskmillConfig(state_dir=state_dir)

    raw: dict[str, Any]
    try:
        raw = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise ConfigValidationError(f"invalid TOML in {path}: {exc}") from exc

    project = raw.get("project") or {}
    if not isinstance(project, dict):
        raise ConfigValidationError("[project] must be a table")

    project_root = state_dir.parent
    priority_raw = _as_str(project.get("default_priority")) or DEFAULT_PRIORITY
    priority = priority_raw.lower()
    if priority not in TASK_PRIORITIES:
        raise ConfigValidationError(
            f"invalid [project].default_priority: {priority_raw!r}"
        )

    return TaskmillConfig(
        state_dir=state_dir,
        project_name=_as_str(project.get("name")),
        default_subtasks=_parse_default_subtasks(project.get("default_subtasks")),
        default_priority=priority,
        tasks_file=_resolve_path(
            project.get("tasks_file"),
            field="[project].tasks_file",
            project_root=project_root,
        ),
        complexity_report=_resolve_path(
            project.get("complexity_report"),
            field="[project].complexity_report",
            project_root=project_root,
        ),
        generation=_parse_generation(raw.get("generation")),
        source_path=path,
    )
