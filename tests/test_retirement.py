"""Tests for the retirement lifecycle, cascade and countdown."""

import asyncio
import pytest
from datetime import date, datetime, timedelta
from unittest.mock import Mock

from habitcore.engine.errors import HabitValidationError, RetirementStateError
from habitcore.engine.retirement import (
    CascadeState,
    RetirementCascade,
    RetirementCountdown,
    deadline_elapsed,
    duplicate_template,
    finalize_retirement,
    retire,
    undo_retirement,
)
from habitcore.integrations.notifications import InMemoryNotificationScheduler
from habitcore.models.template import RetirementFutureAction, RetirementStatus

NOW = datetime(2025, 1, 6, 12, 0)
GRACE = timedelta(hours=24)


def _pending(template):
    return retire(template, "Moving on", grace=GRACE, now=NOW)


def _instances(make_instance, template, count):
    start = datetime(2025, 1, 6, 7, 0)
    return [make_instance(start + timedelta(days=n), template=template) for n in range(count)]


async def _settle(rounds=10):
    for _ in range(rounds):
        await asyncio.sleep(0)


class TestRetire:
    def test_active_to_pending(self, sample_template):
        _pending(sample_template)

        assert sample_template.retirement_status == RetirementStatus.PENDING
        assert sample_template.retirement_date == NOW
        assert sample_template.undo_deadline == NOW + GRACE
        assert sample_template.retirement_reason == "Moving on"

    def test_only_from_none(self, sample_template):
        _pending(sample_template)
        with pytest.raises(RetirementStateError):
            retire(sample_template, None, grace=GRACE, now=NOW)

    def test_undo_restores_active_state(self, sample_template):
        before = sample_template.model_dump(exclude={"updated_at"})
        _pending(sample_template)

        undo_retirement(sample_template, now=NOW)

        assert sample_template.model_dump(exclude={"updated_at"}) == before

    def test_future_action_recorded(self, sample_template):
        retire(
            sample_template,
            None,
            grace=GRACE,
            future_action="archive_after_date",
            delete_after_date=date(2025, 1, 10),
            now=NOW,
        )

        assert sample_template.future_action == RetirementFutureAction.ARCHIVE_AFTER_DATE
        assert sample_template.delete_after_date == date(2025, 1, 10)

        undo_retirement(sample_template, now=NOW)

        assert sample_template.future_action == RetirementFutureAction.KEEP
        assert sample_template.delete_after_date is None

    def test_cutoff_dropped_for_other_actions(self, sample_template):
        retire(
            sample_template,
            None,
            grace=GRACE,
            future_action=RetirementFutureAction.ARCHIVE_FUTURE,
            delete_after_date=date(2025, 1, 10),
            now=NOW,
        )
        assert sample_template.delete_after_date is None

    def test_archive_after_date_needs_a_date(self, sample_template):
        with pytest.raises(HabitValidationError) as exc_info:
            retire(sample_template, None, grace=GRACE, future_action="archive_after_date", now=NOW)

        assert exc_info.value.field == "delete_after_date"
        assert sample_template.retirement_status == RetirementStatus.NONE

    def test_unknown_future_action_rejected(self, sample_template):
        with pytest.raises(HabitValidationError):
            retire(sample_template, None, grace=GRACE, future_action="shred", now=NOW)

    def test_undo_requires_pending(self, sample_template):
        with pytest.raises(RetirementStateError):
            undo_retirement(sample_template)

    def test_deadline_elapsed(self, sample_template):
        assert deadline_elapsed(sample_template, NOW) is False
        _pending(sample_template)
        assert deadline_elapsed(sample_template, NOW + timedelta(hours=23)) is False
        assert deadline_elapsed(sample_template, NOW + GRACE) is True


class TestFinalizeRetirement:
    def test_archives_template_and_orphans_instances(self, sample_template, make_instance):
        instances = _instances(make_instance, sample_template, 3)
        _pending(sample_template)

        finalize_retirement(sample_template, instances, now=NOW)

        assert sample_template.retirement_status == RetirementStatus.RETIRED
        assert sample_template.is_archived is True
        assert sample_template.undo_deadline is None
        assert all(i.is_orphan for i in instances)
        assert all(i.template_id == sample_template.id for i in instances)
        assert {i.original_template_title for i in instances} == {"Morning Routine"}

    def test_keep_archives_nothing(self, sample_template, make_instance):
        instances = _instances(make_instance, sample_template, 3)
        _pending(sample_template)

        finalize_retirement(sample_template, instances, now=NOW)

        assert not any(i.is_archived for i in instances)

    def test_archive_future_skips_past_and_completed(self, sample_template, make_instance):
        # 01-06 07:00 is before NOW; 01-07 is completed; 01-08 and 01-09 are upcoming.
        instances = _instances(make_instance, sample_template, 4)
        instances[1].is_completed = True
        retire(sample_template, None, grace=GRACE, future_action=RetirementFutureAction.ARCHIVE_FUTURE, now=NOW)

        finalize_retirement(sample_template, instances, now=NOW)

        assert [i.is_archived for i in instances] == [False, False, True, True]
        assert all(i.is_orphan for i in instances)

    def test_archive_after_date(self, sample_template, make_instance):
        instances = _instances(make_instance, sample_template, 5)
        retire(
            sample_template,
            None,
            grace=GRACE,
            future_action=RetirementFutureAction.ARCHIVE_AFTER_DATE,
            delete_after_date=date(2025, 1, 8),
            now=NOW,
        )

        finalize_retirement(sample_template, instances, now=NOW)

        archived = [i.scheduled_day for i in instances if i.is_archived]
        assert archived == [date(2025, 1, 9), date(2025, 1, 10)]

    def test_requires_pending(self, sample_template):
        with pytest.raises(RetirementStateError):
            finalize_retirement(sample_template, [])


class TestDuplicateTemplate:
    def test_copy_is_active_with_fresh_atom_ids(self, sample_template):
        _pending(sample_template)

        copy = duplicate_template(sample_template)

        assert copy.id != sample_template.id
        assert copy.title == "Morning Routine Copy"
        assert copy.retirement_status == RetirementStatus.NONE
        assert [a.title for a in copy.atoms] == ["Drink water", "Stretch"]
        assert not {a.id for a in copy.atoms} & {a.id for a in sample_template.atoms}
        assert copy.rule == sample_template.rule


class TestRetirementCascade:
    @pytest.mark.asyncio
    async def test_completes_and_orphans(self, sample_template, make_instance):
        notifications = InMemoryNotificationScheduler(now=NOW - timedelta(days=1))
        instances = _instances(make_instance, sample_template, 3)
        for instance in instances:
            notifications.schedule(instance)
        assert len(notifications.pending) == 3
        _pending(sample_template)

        cascade = RetirementCascade(sample_template, instances, notifications)
        state = await cascade.run()

        assert state == CascadeState.COMPLETED
        assert cascade.progress == 1.0
        assert cascade.status == "Complete"
        assert sample_template.retirement_status == RetirementStatus.RETIRED
        assert all(i.is_orphan and i.notifications_cancelled_at for i in instances)
        assert notifications.pending == {}

    @pytest.mark.asyncio
    async def test_requires_pending_template(self, sample_template, notifications):
        cascade = RetirementCascade(sample_template, [], notifications)
        with pytest.raises(RetirementStateError):
            await cascade.run()

    @pytest.mark.asyncio
    async def test_empty_template_retires(self, sample_template, notifications):
        _pending(sample_template)
        cascade = RetirementCascade(sample_template, [], notifications)

        assert cascade.progress == 0.0
        assert await cascade.run() == CascadeState.COMPLETED
        assert cascade.progress == 1.0

    @pytest.mark.asyncio
    async def test_cancel_leaves_template_pending(self, sample_template, make_instance, notifications):
        instances = _instances(make_instance, sample_template, 5)
        _pending(sample_template)

        cascade = RetirementCascade(sample_template, instances, notifications).start()
        cascade.cancel()
        state = await cascade.wait()

        assert state == CascadeState.CANCELLED
        assert cascade.done
        assert sample_template.retirement_status == RetirementStatus.PENDING
        assert not any(i.is_orphan for i in instances)

    @pytest.mark.asyncio
    async def test_stops_without_writing_once_undone(self, sample_template, make_instance):
        notifications = InMemoryNotificationScheduler(now=NOW - timedelta(days=1))
        instances = _instances(make_instance, sample_template, 4)
        for instance in instances:
            notifications.schedule(instance)
        _pending(sample_template)
        stored = {"status": RetirementStatus.PENDING}
        persist = Mock()

        def cancel(instance):
            notifications.cancel(instance)
            if instance.id == instances[1].id:
                # Another request commits the undo while this item is processed.
                stored["status"] = RetirementStatus.NONE

        scheduler = Mock(cancel=Mock(side_effect=cancel), schedule=Mock(side_effect=notifications.schedule))
        cascade = RetirementCascade(
            sample_template,
            instances,
            scheduler,
            persist=persist,
            still_pending=lambda template_id: stored["status"] == RetirementStatus.PENDING,
        )
        state = await cascade.run()

        assert state == CascadeState.CANCELLED
        assert cascade.status == "Retirement undone"
        assert cascade.current == 2
        persist.assert_not_called()
        assert sample_template.retirement_status == RetirementStatus.PENDING
        assert not any(i.is_orphan or i.notifications_cancelled_at for i in instances)
        assert set(notifications.pending) == {i.id for i in instances}

    @pytest.mark.asyncio
    async def test_undo_before_final_write_skips_finalize(self, sample_template, make_instance, notifications):
        instances = _instances(make_instance, sample_template, 2)
        _pending(sample_template)
        checks = iter([True, True, False])
        persist = Mock()

        cascade = RetirementCascade(
            sample_template,
            instances,
            notifications,
            persist=persist,
            still_pending=lambda template_id: next(checks),
        )

        assert await cascade.run() == CascadeState.CANCELLED
        persist.assert_not_called()
        assert sample_template.retirement_status == RetirementStatus.PENDING
        assert not any(i.is_orphan for i in instances)

    @pytest.mark.asyncio
    async def test_failed_cancellation_is_counted_not_fatal(self, sample_template, make_instance):
        instances = _instances(make_instance, sample_template, 3)
        scheduler = Mock()
        scheduler.cancel.side_effect = [None, RuntimeError("notification center unavailable"), None]
        _pending(sample_template)

        cascade = RetirementCascade(sample_template, instances, scheduler)
        state = await cascade.run()

        assert state == CascadeState.COMPLETED
        assert cascade.failed_items == 1
        assert instances[1].notifications_cancelled_at is None
        assert instances[0].notifications_cancelled_at is not None
        assert all(i.is_orphan for i in instances)

    @pytest.mark.asyncio
    async def test_rerun_skips_already_cancelled(self, sample_template, make_instance):
        instances = _instances(make_instance, sample_template, 3)
        instances[0].notifications_cancelled_at = NOW
        scheduler = Mock()
        _pending(sample_template)

        await RetirementCascade(sample_template, instances, scheduler).run()

        cancelled = [c.args[0].id for c in scheduler.cancel.call_args_list]
        assert cancelled == [instances[1].id, instances[2].id]

    @pytest.mark.asyncio
    async def test_persists_in_batches(self, sample_template, make_instance, notifications):
        instances = _instances(make_instance, sample_template, 120)
        _pending(sample_template)
        batches = []

        cascade = RetirementCascade(
            sample_template,
            instances,
            notifications,
            persist=lambda template, batch: batches.append(len(batch)),
        )
        await cascade.run()

        # Two progress batches, then the final write of every instance.
        assert batches == [50, 50, 120]

    @pytest.mark.asyncio
    async def test_processes_in_date_order(self, sample_template, make_instance):
        instances = _instances(make_instance, sample_template, 3)
        scheduler = Mock()
        _pending(sample_template)

        await RetirementCascade(sample_template, list(reversed(instances)), scheduler).run()

        cancelled = [c.args[0].id for c in scheduler.cancel.call_args_list]
        assert cancelled == [i.id for i in instances]


class TestRetirementCountdown:
    def test_arm_without_loop(self, sample_template):
        countdown = RetirementCountdown(Mock())
        _pending(sample_template)
        assert countdown.arm(sample_template) is False

    @pytest.mark.asyncio
    async def test_overdue_deadline_fires(self, sample_template):
        fired = []

        async def on_deadline(template_id):
            fired.append(template_id)

        countdown = RetirementCountdown(on_deadline)
        _pending(sample_template)

        assert countdown.arm(sample_template, now=NOW + GRACE + timedelta(minutes=1)) is True
        await _settle()

        assert fired == [sample_template.id]
        assert countdown.armed(sample_template.id) is False

    @pytest.mark.asyncio
    async def test_disarm_prevents_firing(self, sample_template):
        on_deadline = Mock()
        countdown = RetirementCountdown(on_deadline)
        _pending(sample_template)

        countdown.arm(sample_template, now=NOW)
        assert countdown.armed(sample_template.id) is True
        assert countdown.disarm(sample_template.id) is True
        await _settle()

        on_deadline.assert_not_called()
        assert countdown.disarm(sample_template.id) is False

    @pytest.mark.asyncio
    async def test_rearm_only_pending(self, make_template):
        pending = _pending(make_template(title="Pending"))
        active = make_template(title="Active")
        countdown = RetirementCountdown(Mock())

        assert countdown.rearm([pending, active], now=NOW) == 1
        assert countdown.armed(pending.id)
        await countdown.shutdown()
        assert not countdown.armed(pending.id)

    @pytest.mark.asyncio
    async def test_deadline_errors_are_logged(self, sample_template, caplog):
        async def on_deadline(template_id):
            raise RuntimeError("boom")

        countdown = RetirementCountdown(on_deadline)
        _pending(sample_template)

        countdown.arm(sample_template, now=NOW + GRACE)
        await _settle()

        assert "boom" in caplog.text
