"""Reconcile a template's atom definitions into its scheduled instances.

This is never automatic: silently mutating already-scheduled occurrences is
unsafe, so callers run it only on an explicit user action.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, List, Optional

from habitcore.models.factory import clone_atom
from habitcore.models.instance import HabitInstance
from habitcore.models.template import HabitTemplate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    added: int = 0
    removed: int = 0
    instances_touched: int = 0

    @property
    def message(self) -> str:
        return f"Updated {self.instances_touched} instances: {self.added} tasks added, {self.removed} removed."


def is_future_incomplete(instance: HabitInstance, now: datetime) -> bool:
    """Incomplete and scheduled today or later (calendar-day comparison)."""
    return not instance.is_completed and instance.scheduled_day >= now.date()


def eligible_instances(
    template: HabitTemplate,
    instances: Iterable[HabitInstance],
    now: datetime,
) -> List[HabitInstance]:
    return [
        i
        for i in instances
        if i.template_id == template.id and not i.is_orphan and is_future_incomplete(i, now)
    ]


def sync_atoms_to_instances(
    template: HabitTemplate,
    instances: Iterable[HabitInstance],
    *,
    now: Optional[datetime] = None,
) -> SyncResult:
    """Add missing atoms to, and drop stale atoms from, future incomplete instances.

    Matching is by `source_template_id`. Atom instances without a source id
    (added by hand) are left alone. Completed or past instances are history and
    never touched.
    """
    now = now or datetime.now()
    definition_ids = {d.id for d in template.atoms}
    added = 0
    removed = 0
    touched = 0

    for instance in eligible_instances(template, instances, now):
        present = {a.source_template_id for a in instance.atoms if a.source_template_id}
        changed = False

        for definition in template.sorted_atoms():
            if definition.id not in present:
                instance.atoms.append(clone_atom(definition, now=now))
                added += 1
                changed = True

        kept = [a for a in instance.atoms if a.source_template_id is None or a.source_template_id in definition_ids]
        stale = len(instance.atoms) - len(kept)
        if stale:
            instance.atoms = kept
            removed += stale
            changed = True

        touched += 1
        if changed:
            instance.updated_at = now

    result = SyncResult(added=added, removed=removed, instances_touched=touched)
    logger.info(f"Synced template {template.id}: {result.message}")
    return result
