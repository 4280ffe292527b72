from __future__ import annotations

from typing import TYPE_CHECKING

__all__ = [
    "__version__",
    "LoadResult",
    "ProjectContext",
    "TaskRef",
    "TaskStore",
    "TaskmillError",
]

__version__ = "0.1.0"

if TYPE_CHECKING:
    from .errors import TaskmillError
    from .models import TaskRef
    from .state import ProjectContext
    from .store import LoadResult, TaskStore


def __getattr__(name: str):
    if name == "TaskmillError":
        from .errors import TaskmillError

        return TaskmillError
    if name == "TaskRef":
        from .models import TaskRef

        return TaskRef
    if name == "ProjectContext":
        from .state import ProjectContext

        return ProjectContext
    if name in {"LoadResult", "TaskStore"}:
        from .store import LoadResult, TaskStore

        return {"LoadResult": LoadResult, "TaskStore": TaskStore}[name]
    raise AttributeError(f"module 'taskmill' has no attribute {name!r}")
