from __future__ import annotations

import json
from pathlib import Path

from taskmill.complexity import load_report, parse_report


def test_parse_report_looks_up_entries() -> None:
    report = parse_report(
        {
            "meta": {"generatedAt": "2026-01-01T00:00:00Z", "tasksAnalyzed": 2},
            "complexityAnalysis": [
                {
                    "taskId": 1,
                    "taskTitle": "Setup",
                    "complexityScore": 3,
                    "recommendedSubtasks": 2,
                    "expansionPrompt": "keep it short",
                },
                {"taskId": 2, "complexityScore": 8.5},
            ],
        }
    )

    assert report.meta.tasksAnalyzed == 2
    assert report.entry_for(1).expansionPrompt == "keep it short"
    assert report.score_for(2) == 8.5
    assert report.score_for(3) is None
    assert report.entry_for(2).recommendedSubtasks is None


def test_load_report_is_tolerant(tmp_path: Path) -> None:
    path = tmp_path / "report.json"
    assert load_report(path) is None

    path.write_text("{oops", encoding="utf-8")
    assert load_report(path) is None

    path.write_text(json.dumps({"complexityAnalysis": [{"taskId": "x"}]}), encoding="utf-8")
    assert load_report(path) is None

    path.write_text(json.dumps({"complexityAnalysis": [{"taskId": 4}]}), encoding="utf-8")
    report = load_report(path)
    assert report is not None
    assert report.entry_for(4) is not None
