"""Retirement lifecycle for habit templates.

    none --retire--> pending --deadline--> retired
                       |
                       +--undo--> none

Retirement never deletes instances. When the deadline elapses a background
cascade cancels each instance's pending notifications and, once every
instance is processed, marks the template retired and flags its instances as
orphans. The cascade is cooperative: cancelling it leaves the template pending.
An undo committed while a cascade runs wins; the cascade stops without writing.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Union

from habitcore.engine.errors import HabitValidationError, RetirementStateError
from habitcore.engine.orphans import orphan_instance
from habitcore.integrations.notifications import NotificationScheduler
from habitcore.models.factory import create_template_base, new_id
from habitcore.models.instance import HabitInstance
from habitcore.models.template import HabitTemplate, RetirementFutureAction, RetirementStatus

logger = logging.getLogger(__name__)

CASCADE_BATCH_SIZE = 50

PersistCallback = Callable[[HabitTemplate, List[HabitInstance]], None]
# Reads the stored retirement status; False once the template is no longer pending.
PendingCheck = Callable[[str], bool]


def _future_action(
    future_action: Union[RetirementFutureAction, str, None],
    delete_after_date: Optional[date],
) -> RetirementFutureAction:
    try:
        action = RetirementFutureAction(future_action or RetirementFutureAction.KEEP)
    except ValueError:
        raise HabitValidationError(f"Unknown future action '{future_action}'", field="future_action")
    if action == RetirementFutureAction.ARCHIVE_AFTER_DATE and delete_after_date is None:
        raise HabitValidationError(
            "archive_after_date needs a delete_after_date", field="delete_after_date"
        )
    return action


def retire(
    template: HabitTemplate,
    reason: Optional[str],
    *,
    grace: timedelta,
    future_action: Union[RetirementFutureAction, str, None] = RetirementFutureAction.KEEP,
    delete_after_date: Optional[date] = None,
    now: Optional[datetime] = None,
) -> HabitTemplate:
    """active -> pending. Starts the undo window; the countdown is armed by the caller.

    future_action decides what finalizing does to upcoming instances; the
    cutoff day is only kept for archive_after_date.
    """
    if template.retirement_status != RetirementStatus.NONE:
        raise RetirementStateError(
            f"Template {template.id} cannot be retired from status '{template.retirement_status}'"
        )
    action = _future_action(future_action, delete_after_date)
    now = now or datetime.now()
    template.retirement_status = RetirementStatus.PENDING
    template.retirement_date = now
    template.undo_deadline = now + grace
    template.retirement_reason = reason
    template.future_action = action
    template.delete_after_date = delete_after_date if action == RetirementFutureAction.ARCHIVE_AFTER_DATE else None
    template.updated_at = now
    return template


def undo_retirement(template: HabitTemplate, *, now: Optional[datetime] = None) -> HabitTemplate:
    """pending -> none. Clears the retirement fields and nothing else."""
    if template.retirement_status != RetirementStatus.PENDING:
        raise RetirementStateError(
            f"Template {template.id} has no pending retirement to undo (status '{template.retirement_status}')"
        )
    template.retirement_status = RetirementStatus.NONE
    template.retirement_date = None
    template.undo_deadline = None
    template.retirement_reason = None
    template.future_action = RetirementFutureAction.KEEP
    template.delete_after_date = None
    template.updated_at = now or datetime.now()
    return template


def deadline_elapsed(template: HabitTemplate, now: Optional[datetime] = None) -> bool:
    if template.retirement_status != RetirementStatus.PENDING or template.undo_deadline is None:
        return False
    return (now or datetime.now()) >= template.undo_deadline


def archive_upcoming(template: HabitTemplate, instances: Iterable[HabitInstance], now: datetime) -> int:
    """Soft-delete the incomplete instances the template's future_action selects.

    Completed instances are history and are never archived.

    Returns:
        Number of instances newly archived
    """
    action = RetirementFutureAction(template.future_action)
    if action == RetirementFutureAction.KEEP:
        return 0
    archived = 0
    for instance in instances:
        if instance.is_completed or instance.is_archived:
            continue
        if action == RetirementFutureAction.ARCHIVE_FUTURE:
            selected = instance.scheduled_date > now
        else:
            selected = template.delete_after_date is not None and instance.scheduled_day > template.delete_after_date
        if selected:
            instance.is_archived = True
            instance.updated_at = now
            archived += 1
    return archived


def finalize_retirement(
    template: HabitTemplate,
    instances: Iterable[HabitInstance],
    *,
    now: Optional[datetime] = None,
) -> HabitTemplate:
    """pending -> retired. Instances stay, flagged as orphans of this template.

    Upcoming instances are then archived according to template.future_action.
    """
    if template.retirement_status != RetirementStatus.PENDING:
        raise RetirementStateError(
            f"Template {template.id} cannot be finalized from status '{template.retirement_status}'"
        )
    now = now or datetime.now()
    instances = list(instances)
    template.retirement_status = RetirementStatus.RETIRED
    template.is_archived = True
    template.undo_deadline = None
    template.updated_at = now
    for instance in instances:
        orphan_instance(instance, template.title, now=now)
    archived = archive_upcoming(template, instances, now)
    if archived:
        logger.info(f"Archived {archived} upcoming instances of retired template {template.id}")
    return template


def duplicate_template(template: HabitTemplate, *, now: Optional[datetime] = None) -> HabitTemplate:
    """Copy a template (any status) into a new active one with fresh atom ids."""
    copy = create_template_base(
        title=f"{template.title} Copy",
        base_time=template.base_time,
        rule=template.rule.model_copy(deep=True),
        notes=template.notes,
        alert_offsets=list(template.alert_offsets),
        is_all_day=template.is_all_day,
        now=now,
    )
    copy.atoms = [a.model_copy(update={"id": new_id()}) for a in template.sorted_atoms()]
    return copy


class CascadeState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RetirementCascade:
    """Background processing of a template whose undo deadline elapsed.

    Instances are processed in scheduled-date order. For each one the pending
    notifications are cancelled unless a previous run already did it, so an
    interrupted cascade can simply be started again. A failing cancellation is
    logged and skipped.

    With still_pending set, the stored status is re-read before every item and
    before each write. Once the template is no longer pending (undone by another
    request) the cascade stops as CANCELLED, writes nothing and re-schedules the
    notifications it had cancelled.
    """

    def __init__(
        self,
        template: HabitTemplate,
        instances: Iterable[HabitInstance],
        notifications: NotificationScheduler,
        *,
        persist: Optional[PersistCallback] = None,
        still_pending: Optional[PendingCheck] = None,
        batch_size: int = CASCADE_BATCH_SIZE,
    ):
        self.template = template
        self.instances: List[HabitInstance] = sorted(instances, key=lambda i: (i.scheduled_date, i.id))
        self.notifications = notifications
        self.persist = persist
        self.still_pending = still_pending
        self.batch_size = max(1, batch_size)

        self.total = len(self.instances)
        self.current = 0
        self.failed_items = 0
        self.state = CascadeState.PENDING
        self.status = "Preparing..."
        self._cancel_requested = False
        self._silenced: List[HabitInstance] = []
        self._task: Optional[asyncio.Task] = None

    @property
    def progress(self) -> float:
        if self.total == 0:
            return 1.0 if self.state == CascadeState.COMPLETED else 0.0
        return self.current / self.total

    @property
    def done(self) -> bool:
        return self.state in (CascadeState.COMPLETED, CascadeState.CANCELLED, CascadeState.FAILED)

    def start(self) -> "RetirementCascade":
        """Schedule run() on the running event loop."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self.run())
        return self

    def cancel(self) -> None:
        """Request a cooperative stop; checked between items."""
        self._cancel_requested = True

    async def wait(self) -> CascadeState:
        if self._task is not None:
            await self._task
        return self.state

    def _superseded(self) -> bool:
        return self.still_pending is not None and not self.still_pending(self.template.id)

    def _flush(self, batch: List[HabitInstance]) -> bool:
        """Persist a batch; False (nothing written) if the retirement was undone."""
        if self._superseded():
            return False
        if self.persist is not None:
            self.persist(self.template, batch)
        return True

    async def _cancel_notifications(self, instance: HabitInstance) -> None:
        if instance.notifications_cancelled_at is not None:
            return
        try:
            await asyncio.to_thread(self.notifications.cancel, instance)
        except Exception as e:
            self.failed_items += 1
            logger.warning(
                f"Failed to cancel notifications for instance {instance.id}: {type(e).__name__}: {str(e)}"
            )
            return
        instance.notifications_cancelled_at = datetime.now()
        self._silenced.append(instance)

    async def _restore_notifications(self) -> None:
        for instance in self._silenced:
            instance.notifications_cancelled_at = None
            try:
                await asyncio.to_thread(self.notifications.schedule, instance)
            except Exception as e:
                logger.warning(
                    f"Failed to reschedule notifications for instance {instance.id}: {type(e).__name__}: {str(e)}"
                )
        self._silenced = []

    def _mark_cancelled(self, batch: List[HabitInstance]) -> None:
        self._flush(batch)
        self.state = CascadeState.CANCELLED
        self.status = f"Cancelled after {self.current} of {self.total}"
        logger.info(f"Retirement cascade for template {self.template.id} cancelled at {self.current}/{self.total}")

    async def _abandon(self) -> CascadeState:
        """The retirement was undone underneath the cascade."""
        await self._restore_notifications()
        self.state = CascadeState.CANCELLED
        self.status = "Retirement undone"
        logger.info(
            f"Retirement of template {self.template.id} was undone; cascade stopped at {self.current}/{self.total}"
        )
        return self.state

    async def run(self) -> CascadeState:
        if self.template.retirement_status != RetirementStatus.PENDING:
            raise RetirementStateError(
                f"Template {self.template.id} is not pending retirement (status '{self.template.retirement_status}')"
            )

        self.state = CascadeState.RUNNING
        self.status = f"Processing {self.total} instances..."
        batch: List[HabitInstance] = []
        try:
            for index, instance in enumerate(self.instances, start=1):
                if self._superseded():
                    return await self._abandon()
                if self._cancel_requested:
                    self._mark_cancelled(batch)
                    return self.state

                await self._cancel_notifications(instance)
                batch.append(instance)
                self.current = index
                self.status = f"Processed {index} of {self.total}"

                if len(batch) >= self.batch_size:
                    if not self._flush(batch):
                        return await self._abandon()
                    batch = []
                # Yield so cancel() and progress readers get a turn.
                await asyncio.sleep(0)

            if self._superseded():
                return await self._abandon()
            if self._cancel_requested:
                self._mark_cancelled(batch)
                return self.state

            # No await between the last check and the write below.
            finalize_retirement(self.template, self.instances)
            if self.persist is not None:
                self.persist(self.template, self.instances)
        except asyncio.CancelledError:
            self._mark_cancelled(batch)
            raise
        except Exception as e:
            self.state = CascadeState.FAILED
            self.status = "Error"
            logger.error(f"Retirement cascade for template {self.template.id} failed: {type(e).__name__}: {str(e)}")
            raise

        self.state = CascadeState.COMPLETED
        self.status = "Complete"
        if self.failed_items:
            logger.warning(
                f"Retired template {self.template.id} with {self.failed_items} notification cancellations failing"
            )
        else:
            logger.info(f"Retired template {self.template.id} ({self.total} instances)")
        return self.state


class RetirementCountdown:
    """One asyncio timer per pending template, fired at its persisted undo_deadline.

    Timers live in memory only; after a restart call rearm() with the pending
    templates loaded from storage. Overdue deadlines fire immediately.
    """

    def __init__(self, on_deadline: Callable[[str], Awaitable[object]]):
        self._on_deadline = on_deadline
        self._timers: Dict[str, asyncio.Task] = {}

    def armed(self, template_id: str) -> bool:
        task = self._timers.get(template_id)
        return task is not None and not task.done()

    def arm(self, template: HabitTemplate, *, now: Optional[datetime] = None) -> bool:
        """Start (or restart) the timer for a pending template.

        Returns False when there is no running event loop; the persisted
        deadline is then picked up by rearm() or a pending-retirement check.
        """
        if template.retirement_status != RetirementStatus.PENDING or template.undo_deadline is None:
            return False
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"No running loop; countdown for template {template.id} not armed")
            return False

        self.disarm(template.id)
        delay = max(0.0, (template.undo_deadline - (now or datetime.now())).total_seconds())
        self._timers[template.id] = loop.create_task(self._fire(template.id, delay))
        logger.debug(f"Armed retirement countdown for template {template.id} ({delay:.0f}s)")
        return True

    async def _fire(self, template_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._timers.pop(template_id, None)
        try:
            await self._on_deadline(template_id)
        except Exception as e:
            logger.error(f"Retirement deadline for template {template_id} failed: {type(e).__name__}: {str(e)}")

    def disarm(self, template_id: str) -> bool:
        task = self._timers.pop(template_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    def rearm(self, templates: Iterable[HabitTemplate], *, now: Optional[datetime] = None) -> int:
        return sum(1 for t in templates if self.arm(t, now=now))

    async def shutdown(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
