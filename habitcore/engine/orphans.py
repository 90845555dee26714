"""Orphan detection and recovery.

An orphan is an instance whose template is gone (null or unresolvable
`template_id`) or that was explicitly flagged detached, for example by a
retirement. Recovery rebuilds a template from a selection of orphans.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from habitcore.engine.errors import HabitValidationError
from habitcore.models.atom import AtomDefinition, AtomInstance
from habitcore.models.factory import create_template_base, definition_from_atom_instance
from habitcore.models.instance import HabitInstance
from habitcore.models.recurrence import RecurrenceKind, RecurrenceRule
from habitcore.models.template import HabitTemplate

logger = logging.getLogger(__name__)

TemplateLookup = Callable[[str], Optional[HabitTemplate]]


def is_orphaned(instance: HabitInstance, template_lookup: TemplateLookup) -> bool:
    if instance.is_orphan or instance.template_id is None:
        return True
    return template_lookup(instance.template_id) is None


def find_orphans(instances: Iterable[HabitInstance], template_lookup: TemplateLookup) -> List[HabitInstance]:
    """Orphaned instances, scheduled-date ascending."""
    orphans = [i for i in instances if is_orphaned(i, template_lookup)]
    return sorted(orphans, key=lambda i: (i.scheduled_date, i.id))


def orphan_instance(instance: HabitInstance, template_title: Optional[str], *, now: Optional[datetime] = None) -> None:
    """Flag an instance detached, keeping the template title for display."""
    instance.is_orphan = True
    if template_title is not None:
        instance.original_template_title = template_title
    instance.updated_at = now or datetime.now()


def _merge_atoms_latest_wins(ordered: Sequence[HabitInstance]) -> List[AtomInstance]:
    """One atom per distinct title; later-dated instances overwrite earlier ones."""
    by_title: Dict[str, AtomInstance] = {}
    for instance in ordered:
        for atom in instance.atoms:
            by_title[atom.title] = atom
    return sorted(by_title.values(), key=lambda a: a.order)


def recover_orphans(
    selection: Sequence[HabitInstance],
    new_title: str,
    *,
    now: Optional[datetime] = None,
) -> Tuple[HabitTemplate, List[HabitInstance]]:
    """Build a new template from orphaned instances and re-link them to it.

    This is a best-effort reconstruction, not a lossless one:
    - base_time takes the earliest selected instance's time of day;
    - the rule defaults to daily, whatever the original pattern was;
    - atom definitions keep one atom per distinct title, taken from the most
      recently dated instance that has it, so per-occurrence drift in targets
      or units is lost.

    Returns:
        (new template, re-linked instances). Nothing is persisted here.

    Raises:
        HabitValidationError: empty selection or blank title
    """
    if not selection:
        raise HabitValidationError("Select at least one instance to recover", field="selection")
    title = (new_title or "").strip()
    if not title:
        raise HabitValidationError("Template title must not be empty", field="new_title")

    now = now or datetime.now()
    ordered = sorted(selection, key=lambda i: (i.scheduled_date, i.id))
    earliest = ordered[0].scheduled_date

    template = create_template_base(
        title=title,
        base_time=earliest.replace(second=0, microsecond=0),
        rule=RecurrenceRule(kind=RecurrenceKind.DAILY),
        now=now,
    )

    definitions_by_title: Dict[str, AtomDefinition] = {}
    for atom in _merge_atoms_latest_wins(ordered):
        definition = definition_from_atom_instance(atom)
        definitions_by_title[atom.title] = definition
        template.atoms.append(definition)

    for instance in ordered:
        instance.template_id = template.id
        instance.is_orphan = False
        instance.original_template_title = None
        for atom in instance.atoms:
            definition = definitions_by_title.get(atom.title)
            if definition is not None:
                atom.source_template_id = definition.id
        instance.updated_at = now

    logger.info(
        f"Recovered template {template.id} '{template.title}' from {len(ordered)} orphans "
        f"with {len(template.atoms)} atoms"
    )
    return template, ordered
