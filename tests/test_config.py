from __future__ import annotations

from pathlib import Path

import pytest

from taskmill.config import (
    DEFAULT_COMPLEXITY_REPORT,
    ConfigValidationError,
    load_config,
)


def _write_config(state_dir: Path, body: str) -> None:
    state_dir.mkdir(parents=True, exist_ok=True)
    (state_dir / "config.toml").write_text(body.strip() + "\n", encoding="utf-8")


def test_missing_config_uses_defaults(tmp_path: Path) -> None:
    state_dir = tmp_path / ".taskmill"
    cfg = load_config(state_dir)

    assert cfg.default_subtasks == 3
    assert cfg.default_priority == "medium"
    assert cfg.tasks_path == state_dir / "tasks.json"
    assert cfg.complexity_report_path == state_dir / DEFAULT_COMPLEXITY_REPORT
    assert cfg.generation.main == ()
    assert cfg.source_path is None


def test_load_config_reads_project_and_generation(tmp_path: Path) -> None:
    state_dir = tmp_path / ".taskmill"
    _write_config(
        state_dir,
        """
[project]
name = "demo"
default_subtasks = 5
default_priority = "HIGH"
tasks_file = "planning/tasks.json"

[generation]
main = ["llm", "-m", "big"]
research = "research-cli --deep"
fallback = ["Research", "main", "research"]
""",
    )

    cfg = load_config(state_dir)

    assert cfg.project_name == "demo"
    assert cfg.default_subtasks == 5
    assert cfg.default_priority == "high"
    assert cfg.tasks_path == tmp_path / "planning" / "tasks.json"
    assert cfg.generation.main == ("llm", "-m", "big")
    assert cfg.generation.research == ("research-cli", "--deep")
    assert cfg.generation.fallback == ("research", "main")
    assert cfg.generation.command_for("research") == ("research-cli", "--deep")


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("[project]\ndefault_subtasks = 0", "default_subtasks"),
        ("[project]\ndefault_subtasks = true", "default_subtasks"),
        ('[project]\ndefault_priority = "urgent"', "default_priority"),
        ('[generation]\nfallback = ["nope"]', "invalid role"),
        ("[generation]\nmain = [1, 2]", "[generation].main[0]"),
        ("generation = 3", "[generation] must be a table"),
        ("[project\n", "invalid TOML"),
    ],
)
def test_load_config_rejects_bad_values(tmp_path: Path, body: str, message: str) -> None:
    state_dir = tmp_path / ".taskmill"
    _write_config(state_dir, body)

    with pytest.raises(ConfigValidationError) as raised:
        load_config(state_dir)
    assert message in str(raised.value)
