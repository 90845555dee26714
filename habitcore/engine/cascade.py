"""Structural edits to an atom definition, optionally cascaded to scheduled atoms.

The caller snapshots a definition before editing it; at commit time the
snapshot is diffed against the edited definition. Only a non-empty structural
diff may be cascaded.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Tuple

from habitcore.engine.errors import NoStructuralChangeError
from habitcore.engine.sync import is_future_incomplete
from habitcore.models.atom import AtomDefinition, STRUCTURAL_FIELDS
from habitcore.models.instance import HabitInstance

logger = logging.getLogger(__name__)

AtomSnapshot = Dict[str, Any]


class EditScope(str, Enum):
    THIS_TEMPLATE_ONLY = "this_template_only"
    TEMPLATE_AND_FUTURE = "template_and_future"


def snapshot_structure(definition: AtomDefinition) -> AtomSnapshot:
    return {field: getattr(definition, field) for field in STRUCTURAL_FIELDS}


def structural_changes(before: AtomSnapshot, definition: AtomDefinition) -> Dict[str, Tuple[Any, Any]]:
    """Return {field: (old, new)} for every structural field that differs."""
    changes: Dict[str, Tuple[Any, Any]] = {}
    for field in STRUCTURAL_FIELDS:
        new = getattr(definition, field)
        if before.get(field) != new:
            changes[field] = (before.get(field), new)
    return changes


def cascade_structural_edit(
    definition: AtomDefinition,
    instances: Iterable[HabitInstance],
    *,
    snapshot: AtomSnapshot,
    now: Optional[datetime] = None,
) -> int:
    """Overwrite changed structural fields on matching atoms of future incomplete instances.

    Atoms are matched by `source_template_id == definition.id`. No atom is
    inserted or removed (that is sync_atoms_to_instances' job).

    Returns:
        Number of atom instances updated

    Raises:
        NoStructuralChangeError: the snapshot matches the current definition
    """
    changes = structural_changes(snapshot, definition)
    if not changes:
        raise NoStructuralChangeError(f"No structural change on atom {definition.id}")

    now = now or datetime.now()
    updated = 0
    for instance in instances:
        if not is_future_incomplete(instance, now):
            continue
        touched = False
        for atom in instance.atoms:
            if atom.source_template_id != definition.id:
                continue
            for field, (_, new) in changes.items():
                setattr(atom, field, new)
            updated += 1
            touched = True
        if touched:
            instance.updated_at = now

    logger.info(f"Cascaded {sorted(changes)} of atom {definition.id} to {updated} scheduled atoms")
    return updated
