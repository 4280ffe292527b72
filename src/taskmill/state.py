from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

STATE_DIR_NAME = ".taskmill"
STATE_DIR_ENV_VAR = "TASKMILL_STATE_DIR"


def resolve_state_dir(cwd: Path | None = None, *, create: bool = False) -> Path:
    """Return the taskmill state directory.

    Resolution order:
    1. TASKMILL_STATE_DIR
    2. nearest existing .taskmill directory from cwd upward
    3. cwd/.taskmill
    """
    raw = os.environ.get(STATE_DIR_ENV_VAR, "").strip()
    if raw:
        state_dir = Path(raw).expanduser().resolve()
    else:
        start = (cwd or Path.cwd()).resolve()
        state_dir = start / STATE_DIR_NAME
        for base in (start, *start.parents):
            candidate = base / STATE_DIR_NAME
            if candidate.exists() and candidate.is_dir():
                state_dir = candidate
                break

    if create:
        state_dir.mkdir(parents=True, exist_ok=True)
    return state_dir


@dataclass(frozen=True)
class ProjectContext:
    """Explicit per-invocation context threaded through every operation."""

    project_root: Path
    state_dir: Path
    active_tag: str | None = None

    @classmethod
    def from_workdir(
        cls,
        cwd: Path | None = None,
        *,
        tag: str | None = None,
    ) -> "ProjectContext":
        state_dir = resolve_state_dir(cwd)
        return cls(project_root=state_dir.parent, state_dir=state_dir, active_tag=tag)

    @property
    def state_path(self) -> Path:
        return self.state_dir / "state.json"

    @property
    def events_path(self) -> Path:
        return self.state_dir / "events.jsonl"
