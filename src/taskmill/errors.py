from __future__ import annotations


class TaskmillError(ValueError):
    """Base class for every error the core raises to its callers."""


class ValidationError(TaskmillError):
    """Dangling, self, cyclic or otherwise invalid task reference."""


class NotFoundError(TaskmillError):
    pass


class UnknownTagError(NotFoundError):
    def __init__(self, tag: str) -> None:
        super().__init__(f"tag not found: {tag}")
        self.tag = tag


class ConflictError(TaskmillError):
    pass


class StoreIOError(TaskmillError):
    """Tasks file missing where it must exist, unreadable, or unparsable."""


class NormalizationError(TaskmillError):
    """Generated subtasks could not be reduced to any usable subtask."""


class GenerationError(TaskmillError):
    """Every configured generation strategy failed."""
