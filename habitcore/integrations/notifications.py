"""Local notification scheduling.

The engine only needs three calls. Delivery itself (OS notifications, push,
email) belongs to whatever implements NotificationScheduler.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol

from habitcore.models.instance import HabitInstance

logger = logging.getLogger(__name__)


class NotificationScheduler(Protocol):
    """Schedules and cancels alerts for habit instances."""

    def schedule(self, instance: HabitInstance) -> None:  # pragma: no cover - interface
        ...

    def cancel(self, instance: HabitInstance) -> None:  # pragma: no cover - interface
        ...

    def cancel_all(self) -> None:  # pragma: no cover - interface
        ...


@dataclass(frozen=True)
class PendingAlert:
    instance_id: str
    offset_minutes: int
    fire_at: datetime
    title: str


def alert_times(instance: HabitInstance) -> List[datetime]:
    """One fire time per alert offset, before the occurrence."""
    return [instance.scheduled_date - timedelta(minutes=offset) for offset in instance.alert_offsets]


class InMemoryNotificationScheduler:
    """NotificationScheduler keeping pending alerts in a dict.

    Used by the API process and by tests. Completed or archived instances
    have nothing to alert on and are cleared instead.
    """

    def __init__(self, now: Optional[datetime] = None):
        self._now = now
        self.pending: Dict[str, List[PendingAlert]] = {}

    def _current_time(self) -> datetime:
        return self._now or datetime.now()

    def schedule(self, instance: HabitInstance) -> None:
        if instance.is_completed or instance.is_archived:
            self.pending.pop(instance.id, None)
            return
        now = self._current_time()
        title = instance.exception_title or instance.original_template_title or "Habit"
        alerts = [
            PendingAlert(instance.id, offset, fire_at, title)
            for offset, fire_at in zip(instance.alert_offsets, alert_times(instance))
            if fire_at > now
        ]
        if alerts:
            self.pending[instance.id] = alerts
        else:
            self.pending.pop(instance.id, None)
        logger.debug(f"Scheduled {len(alerts)} alerts for instance {instance.id}")

    def cancel(self, instance: HabitInstance) -> None:
        removed = self.pending.pop(instance.id, None)
        if removed:
            logger.debug(f"Cancelled {len(removed)} alerts for instance {instance.id}")

    def cancel_all(self) -> None:
        self.pending.clear()

    def alerts_for(self, instance_id: str) -> List[PendingAlert]:
        return list(self.pending.get(instance_id, []))
