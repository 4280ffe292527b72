"""Append-only JSONL event log for taskmill.

Every successful mutation the CLI persists is recorded here with a fixed,
versioned envelope. The log is never rewritten.
"""

from __future__ import annotations

import json
import os
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Iterator

from .jsonio import now_ts_ms

EVENT_VERSION = 1

_invocation_id_var: ContextVar[str | None] = ContextVar(
    "taskmill_invocation_id", default=None
)


def new_invocation_id() -> str:
    return uuid.uuid4().hex


def current_invocation_id() -> str | None:
    return _invocation_id_var.get()


@contextmanager
def invocation_context(*, invocation_id: str | None) -> Iterator[None]:
    token = _invocation_id_var.set(invocation_id)
    try:
        yield
    finally:
        _invocation_id_var.reset(token)


class EventLog:
    """Append-only JSONL event log."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def emit(
        self,
        event_type: str,
        *,
        source: str,
        payload: dict[str, Any] | None = None,
        tag: str | None = None,
        ts_ms: int | None = None,
    ) -> dict[str, Any]:
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise TypeError("payload must be a dict")

        event: dict[str, Any] = {
            "v": EVENT_VERSION,
            "ts_ms": int(ts_ms if ts_ms is not None else now_ts_ms()),
            "type": event_type,
            "source": source,
        }
        invocation_id = current_invocation_id()
        if invocation_id is not None:
            event["invocation_id"] = invocation_id
        if tag is not None:
            event["tag"] = tag
        event["payload"] = payload

        self._append(event)
        return event

    def read(
        self,
        *,
        limit: int | None = None,
        event_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """Events oldest first, optionally filtered and cut to the last ``limit``.

        ``event_type`` matches exactly or as a dotted prefix (``task`` matches
        ``task.added``).
        """
        if not self.path.exists():
            return []
        rows: list[dict[str, Any]] = []
        with open(self.path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                event = json.loads(line)
                kind = str(event.get("type") or "")
                if event_type and kind != event_type and not kind.startswith(event_type + "."):
                    continue
                rows.append(event)
        if limit is not None:
            return rows[-limit:] if limit > 0 else []
        return rows

    def _append(self, event: dict[str, Any]) -> None:
        line = json.dumps(event, separators=(",", ":"), ensure_ascii=True) + "\n"
        data = line.encode("utf-8")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
        try:
            written = 0
            while written < len(data):
                n = os.write(fd, data[written:])
                if n <= 0:
                    raise OSError("short write while appending event log")
                written += n
        finally:
            os.close(fd)
