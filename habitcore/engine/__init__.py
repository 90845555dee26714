"""Habit engine for habitcore."""

from habitcore.engine.cascade import EditScope, cascade_structural_edit, snapshot_structure, structural_changes
from habitcore.engine.errors import (
    HabitValidationError,
    NoStructuralChangeError,
    NotFoundError,
    PersistenceError,
    RetirementStateError,
)
from habitcore.engine.exceptions import make_exception, revert_to_template, snooze
from habitcore.engine.orphans import find_orphans, is_orphaned, recover_orphans
from habitcore.engine.retirement import RetirementCascade, RetirementCountdown
from habitcore.engine.sync import SyncResult, sync_atoms_to_instances

__all__ = [
    "EditScope",
    "cascade_structural_edit",
    "snapshot_structure",
    "structural_changes",
    "HabitValidationError",
    "NoStructuralChangeError",
    "NotFoundError",
    "PersistenceError",
    "RetirementStateError",
    "make_exception",
    "revert_to_template",
    "snooze",
    "find_orphans",
    "is_orphaned",
    "recover_orphans",
    "RetirementCascade",
    "RetirementCountdown",
    "SyncResult",
    "sync_atoms_to_instances",
]
