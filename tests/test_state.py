from __future__ import annotations

from pathlib import Path

import pytest

from taskmill.state import STATE_DIR_ENV_VAR, ProjectContext, resolve_state_dir


def test_resolve_state_dir_defaults_to_cwd(tmp_path: Path) -> None:
    assert resolve_state_dir(tmp_path) == tmp_path.resolve() / ".taskmill"
    assert not (tmp_path / ".taskmill").exists()


def test_resolve_state_dir_finds_nearest_parent(tmp_path: Path) -> None:
    (tmp_path / ".taskmill").mkdir()
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)

    assert resolve_state_dir(nested) == tmp_path.resolve() / ".taskmill"


def test_resolve_state_dir_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    target = tmp_path / "elsewhere"
    monkeypatch.setenv(STATE_DIR_ENV_VAR, str(target))

    assert resolve_state_dir(tmp_path, create=True) == target.resolve()
    assert target.is_dir()


def test_project_context_paths(tmp_path: Path) -> None:
    ctx = ProjectContext.from_workdir(tmp_path, tag="feature")

    assert ctx.project_root == tmp_path.resolve()
    assert ctx.active_tag == "feature"
    assert ctx.state_path.name == "state.json"
    assert ctx.events_path.name == "events.jsonl"
