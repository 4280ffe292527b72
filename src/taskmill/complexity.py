"""Read-only access to the task complexity report."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError as PydanticValidationError


class ComplexityMeta(BaseModel):
    generatedAt: str | None = None
    tasksAnalyzed: int | None = None
    thresholdScore: float | None = None
    projectName: str | None = None
    usedResearch: bool = False


class ComplexityEntry(BaseModel):
    taskId: int
    taskTitle: str = ""
    complexityScore: float | None = None
    recommendedSubtasks: int | None = None
    expansionPrompt: str = ""
    reasoning: str = ""


class ComplexityReport(BaseModel):
    meta: ComplexityMeta = ComplexityMeta()
    complexityAnalysis: list[ComplexityEntry] = []

    def entry_for(self, task_id: int) -> ComplexityEntry | None:
        for entry in self.complexityAnalysis:
            if entry.taskId == task_id:
                return entry
        return None

    def score_for(self, task_id: int) -> float | None:
        entry = self.entry_for(task_id)
        return entry.complexityScore if entry is not None else None


def parse_report(raw: Any) -> ComplexityReport:
    return ComplexityReport.model_validate(raw)


def load_report(path: Path) -> ComplexityReport | None:
    """Load the report at ``path``; ``None`` when absent or unusable.

    The report only tunes defaults, so a broken file never fails a command.
    Callers that care can compare ``path.exists()`` with the result.
    """
    if not path.exists():
        return None
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        return parse_report(raw)
    except (OSError, json.JSONDecodeError, PydanticValidationError):
        return None
