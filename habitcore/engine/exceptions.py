"""Per-occurrence overrides ("exceptions").

An exception pins an instance to a user-chosen time. Once pinned, no automated
process may move it again; only the explicit operations in this module do.
"""

from datetime import datetime, timedelta
from typing import Optional

from habitcore.models.instance import HabitInstance
from habitcore.models.template import HabitTemplate
from habitcore.recurrence.evaluate import at_base_time


def make_exception(
    instance: HabitInstance,
    new_time: datetime,
    *,
    title: Optional[str] = None,
    now: Optional[datetime] = None,
) -> HabitInstance:
    """Move an instance to `new_time` and detach it from rule-driven recompute.

    `original_scheduled_date` captures the rule-implied time on the first call
    only; later overrides keep it.
    """
    if instance.original_scheduled_date is None:
        instance.original_scheduled_date = instance.scheduled_date
    instance.scheduled_date = new_time
    instance.is_exception = True
    if title is not None:
        instance.exception_title = title
    instance.updated_at = now or datetime.now()
    return instance


def revert_to_template(
    instance: HabitInstance,
    template: HabitTemplate,
    *,
    now: Optional[datetime] = None,
) -> HabitInstance:
    """Re-attach an exception to its template's time on the occurrence's original day."""
    anchor = instance.original_scheduled_date or instance.scheduled_date
    instance.scheduled_date = at_base_time(anchor.date(), template.base_time)
    instance.is_exception = False
    instance.exception_title = None
    instance.updated_at = now or datetime.now()
    return instance


def snooze(instance: HabitInstance, minutes: int, *, now: Optional[datetime] = None) -> HabitInstance:
    """Push an occurrence back by `minutes`.

    Template-owned occurrences become exceptions; standalone ones just move.
    """
    new_time = instance.scheduled_date + timedelta(minutes=minutes)
    if instance.template_id is not None:
        return make_exception(instance, new_time, now=now)
    instance.scheduled_date = new_time
    instance.updated_at = now or datetime.now()
    return instance
