"""Record creation factory for habitcore.

This module centralizes how templates, instances and atoms are built so that
ids, timestamps and inherited defaults are applied consistently by the
materializer, backfill, sync and recovery code paths.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from habitcore.models.atom import AtomDefinition, AtomInstance, AtomInputType
from habitcore.models.constants import DEFAULT_ALERT_OFFSETS
from habitcore.models.instance import HabitInstance
from habitcore.models.recurrence import RecurrenceRule
from habitcore.models.template import HabitTemplate


def new_id() -> str:
    return str(uuid.uuid4())


def create_template_base(
    title: str,
    base_time: datetime,
    rule: Optional[RecurrenceRule] = None,
    atoms: Optional[List[AtomDefinition]] = None,
    notes: Optional[str] = None,
    alert_offsets: Optional[List[int]] = None,
    is_all_day: bool = False,
    now: Optional[datetime] = None,
) -> HabitTemplate:
    """Create a template with defaults, allowing overrides.

    Args:
        title: Habit title (required)
        base_time: Base day and time-of-day anchor
        rule: Recurrence rule (defaults to daily, never ending)
        atoms: Child-task definitions
        notes: Optional description
        alert_offsets: Alert offsets in minutes (defaults to constant)
        is_all_day: Whether the habit has no specific time
        now: Creation timestamp (defaults to now)

    Returns:
        HabitTemplate with defaults applied
    """
    now = now or datetime.now()
    return HabitTemplate(
        id=new_id(),
        title=title,
        base_time=base_time,
        rule=rule if rule is not None else RecurrenceRule(),
        atoms=atoms if atoms is not None else [],
        notes=notes,
        alert_offsets=alert_offsets if alert_offsets is not None else list(DEFAULT_ALERT_OFFSETS),
        is_all_day=is_all_day,
        created_at=now,
        updated_at=now,
    )


def create_atom_definition(
    title: str,
    order: int = 0,
    input_type: AtomInputType = AtomInputType.BINARY,
    **fields: Any,
) -> AtomDefinition:
    return AtomDefinition(id=new_id(), title=title, order=order, input_type=input_type, **fields)


def _structure_of(source) -> Dict[str, Any]:
    return {
        "title": source.title,
        "input_type": source.input_type,
        "target_value": source.target_value,
        "unit": source.unit,
        "order": source.order,
        "target_sets": source.target_sets,
        "target_reps": source.target_reps,
        "default_rest_seconds": source.default_rest_seconds,
        "video_url": source.video_url,
    }


def clone_atom(definition: AtomDefinition, now: Optional[datetime] = None) -> AtomInstance:
    """Clone a definition into a fresh, incomplete atom instance."""
    return AtomInstance(
        id=new_id(),
        source_template_id=definition.id,
        created_at=now or datetime.now(),
        **_structure_of(definition),
    )


def definition_from_atom_instance(atom: AtomInstance) -> AtomDefinition:
    """Rebuild a definition from an atom instance's structural fields.

    Cosmetic fields (icon) are not stored on atom instances and are lost.
    """
    return AtomDefinition(id=new_id(), **_structure_of(atom))


def create_instance_base(
    scheduled_date: datetime,
    template: Optional[HabitTemplate] = None,
    now: Optional[datetime] = None,
) -> HabitInstance:
    """Create an instance for a given time, cloning the template's atoms in order.

    Standalone instances (no template) get default alert offsets and no atoms.
    """
    now = now or datetime.now()
    instance = HabitInstance(
        id=new_id(),
        scheduled_date=scheduled_date,
        template_id=template.id if template is not None else None,
        alert_offsets=list(template.alert_offsets) if template is not None else list(DEFAULT_ALERT_OFFSETS),
        is_all_day=template.is_all_day if template is not None else False,
        created_at=now,
        updated_at=now,
    )
    if template is not None:
        instance.atoms = [clone_atom(d, now=now) for d in template.sorted_atoms()]
    return instance
