from __future__ import annotations

from pathlib import Path

from taskmill.taskfiles import format_task_file, generate_task_files, task_file_name


def _tasks() -> list[dict]:
    return [
        {"id": 1, "title": "Setup", "status": "done", "priority": "high", "dependencies": []},
        {
            "id": 2,
            "title": "Build",
            "status": "pending",
            "priority": "medium",
            "description": "Build it",
            "details": "step by step",
            "testStrategy": "run tests",
            "dependencies": [1, 7],
            "subtasks": [
                {"id": 1, "title": "Part A", "status": "pending", "dependencies": []},
                {"id": 2, "title": "Part B", "status": "done", "dependencies": [1]},
            ],
        },
    ]


def test_task_file_name_per_tag() -> None:
    assert task_file_name(3) == "task_003.txt"
    assert task_file_name(12, "feature") == "task_012_feature.txt"


def test_format_task_file() -> None:
    tasks = _tasks()
    text = format_task_file(tasks, tasks[1])

    assert text.startswith("# Task ID: 2\n# Title: Build\n# Status: pending\n")
    assert "# Dependencies: 1 (done), 7 (missing)" in text
    assert "# Test Strategy:\nrun tests" in text
    assert "## 2.2. Part B [done]" in text
    assert "### Dependencies: 2.1 (pending)" in text
    assert format_task_file(tasks, tasks[0]).count("# Dependencies: None") == 1


def test_generate_removes_orphans_of_the_same_tag_only(tmp_path: Path) -> None:
    out_dir = tmp_path / "tasks"
    out_dir.mkdir()
    (out_dir / "task_009.txt").write_text("stale", encoding="utf-8")
    (out_dir / "task_009_feature.txt").write_text("other tag", encoding="utf-8")
    (out_dir / "notes.txt").write_text("keep", encoding="utf-8")

    result = generate_task_files(_tasks(), out_dir)

    assert [path.name for path in result.written] == ["task_001.txt", "task_002.txt"]
    assert [path.name for path in result.removed] == ["task_009.txt"]
    assert (out_dir / "task_009_feature.txt").exists()
    assert (out_dir / "notes.txt").exists()
    assert "# Title: Setup" in (out_dir / "task_001.txt").read_text(encoding="utf-8")
