"""Engine error taxonomy."""

from typing import Optional


class HabitValidationError(ValueError):
    """Input rejected before any mutation (can be surfaced as a 400)."""

    def __init__(self, message: str, *, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NoStructuralChangeError(HabitValidationError):
    """A structural cascade was requested but nothing structural changed."""


class RetirementStateError(ValueError):
    """Illegal retirement transition (e.g. undo on a template that is not pending)."""


class NotFoundError(LookupError):
    """Unknown template or instance id."""


class PersistenceError(RuntimeError):
    """Commit failed after in-memory changes were applied.

    In-memory records are not rolled back. Re-running the operation is safe:
    materialization is duplicate-checked and sync/retirement are idempotent.
    """
