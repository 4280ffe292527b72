"""Prompt rendering: read markdown, substitute placeholders."""

from __future__ import annotations

from dataclasses import dataclass
from importlib import resources
from pathlib import Path
from typing import Any

import yaml

from .complexity import ComplexityEntry

_TEMPLATE_PACKAGE = "taskmill.prompts"

EXPAND_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["subtasks"],
    "properties": {
        "subtasks": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "title"],
                "properties": {
                    "id": {"type": "integer"},
                    "title": {"type": "string"},
                    "description": {"type": "string"},
                    "details": {"type": "string"},
                    "dependencies": {"type": "array", "items": {"type": "integer"}},
                    "testStrategy": {"type": "string"},
                },
            },
        }
    },
}


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    meta: dict
    body: str
    source: str

    @property
    def role(self) -> str:
        raw = self.meta.get("role")
        return raw.strip() if isinstance(raw, str) and raw.strip() else "main"


def _split_frontmatter(text: str) -> tuple[dict, str]:
    """Split optional YAML frontmatter from markdown body."""
    if not text.startswith("---"):
        return {}, text
    parts = text.split("---", 2)
    if len(parts) < 3:
        return {}, text
    try:
        meta = yaml.safe_load(parts[1]) or {}
    except yaml.YAMLError:
        return {}, text
    if not isinstance(meta, dict):
        return {}, text
    return meta, parts[2].lstrip("\n")


def load_template(name: str, *, state_dir: Path | None = None) -> PromptTemplate:
    """Load ``<name>.md``, preferring ``<state_dir>/prompts/`` over the bundled copy."""
    file_name = f"{name}.md"
    if state_dir is not None:
        override = state_dir / "prompts" / file_name
        if override.is_file():
            meta, body = _split_frontmatter(override.read_text(encoding="utf-8"))
            return PromptTemplate(name=name, meta=meta, body=body, source=str(override))

    text = resources.files(_TEMPLATE_PACKAGE).joinpath(file_name).read_text(encoding="utf-8")
    meta, body = _split_frontmatter(text)
    return PromptTemplate(name=name, meta=meta, body=body, source=f"package:{file_name}")


def render(template: PromptTemplate | str, values: dict[str, object]) -> str:
    body = template.body if isinstance(template, PromptTemplate) else template
    for key, value in values.items():
        body = body.replace("{{" + key + "}}", "" if value is None else str(value))
    return body


def expand_prompt(
    template: PromptTemplate,
    task: dict,
    *,
    count: int,
    next_id: int,
    context: str = "",
    complexity: ComplexityEntry | None = None,
) -> str:
    guidance = complexity.expansionPrompt if complexity is not None else ""
    return render(
        template,
        {
            "TASK_ID": task.get("id", ""),
            "TASK_TITLE": task.get("title", ""),
            "TASK_DESCRIPTION": task.get("description", ""),
            "TASK_DETAILS": task.get("details", ""),
            "SUBTASK_COUNT": count,
            "NEXT_ID": next_id,
            "LAST_ID": next_id + count - 1,
            "CONTEXT": context.strip(),
            "GUIDANCE": guidance.strip(),
        },
    )
