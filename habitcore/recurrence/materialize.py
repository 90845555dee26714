"""Materialize a habit template into concrete HabitInstance records.

The functions here construct records but never persist them; the caller
(habitcore.engine.service.HabitEngine) inserts and commits the result.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional, Set

from habitcore.models.factory import create_instance_base
from habitcore.models.instance import HabitInstance
from habitcore.models.template import HabitTemplate
from habitcore.recurrence.evaluate import candidate_dates

logger = logging.getLogger(__name__)


def _occupied_days(template: HabitTemplate, existing: Iterable[HabitInstance]) -> Set[date]:
    """Calendar days that already hold an occurrence of this template.

    Exceptions count too: an overridden day must not be regenerated.
    """
    return {i.scheduled_day for i in existing if i.template_id == template.id}


def _materialize(
    template: HabitTemplate,
    start,
    end,
    existing: Iterable[HabitInstance],
    now: Optional[datetime],
) -> List[HabitInstance]:
    occupied = _occupied_days(template, existing)
    created: List[HabitInstance] = []
    for scheduled in candidate_dates(template.rule, template.base_time, start, end):
        day = scheduled.date()
        if day in occupied:
            continue
        instance = create_instance_base(scheduled, template=template, now=now)
        created.append(instance)
        occupied.add(day)
    return created


def generate_instances(
    template: HabitTemplate,
    until,
    *,
    existing: Iterable[HabitInstance] = (),
    now: Optional[datetime] = None,
) -> List[HabitInstance]:
    """Create missing instances from today through `until` (inclusive).

    `existing` must contain the template's current instances; any calendar day
    already covered (including by an exception) is skipped, so calling this
    repeatedly over the same range yields nothing new.
    """
    now = now or datetime.now()
    created = _materialize(template, now.date(), until, existing, now)
    logger.debug(f"Generated {len(created)} instances for template {template.id} until {until}")
    return created


def backfill_instances(
    template: HabitTemplate,
    start,
    end,
    *,
    existing: Iterable[HabitInstance] = (),
    now: Optional[datetime] = None,
) -> List[HabitInstance]:
    """Create missing instances for an explicit (usually historical) range [start, end].

    Same duplicate checks as generate_instances, without the future-only filter.
    """
    created = _materialize(template, start, end, existing, now)
    logger.debug(f"Backfilled {len(created)} instances for template {template.id} from {start} to {end}")
    return created
