"""Tests for instance materialization (generation and backfill)."""

from datetime import date, datetime

from habitcore.engine.exceptions import make_exception
from habitcore.models.recurrence import EndRuleType, RecurrenceKind, RecurrenceRule
from habitcore.recurrence.materialize import backfill_instances, generate_instances

JAN_1 = datetime(2025, 1, 1, 6, 0)


class TestGenerateInstances:
    def test_generates_from_today(self, sample_template):
        created = generate_instances(sample_template, date(2025, 1, 15), now=JAN_1)

        assert [i.scheduled_date for i in created] == [
            datetime(2025, 1, d, 7, 0) for d in (1, 3, 6, 8, 10, 13, 15)
        ]
        assert all(i.template_id == sample_template.id for i in created)

    def test_skips_days_before_now(self, sample_template):
        created = generate_instances(sample_template, date(2025, 1, 15), now=datetime(2025, 1, 9, 12, 0))
        assert [i.scheduled_day for i in created] == [date(2025, 1, 10), date(2025, 1, 13), date(2025, 1, 15)]

    def test_clones_atoms_in_order(self, sample_template):
        instance = generate_instances(sample_template, date(2025, 1, 1), now=JAN_1)[0]

        assert [a.title for a in instance.atoms] == ["Drink water", "Stretch"]
        assert [a.source_template_id for a in instance.atoms] == [d.id for d in sample_template.sorted_atoms()]
        assert instance.atoms[0].target_value == 8
        assert not any(a.is_completed for a in instance.atoms)

    def test_inherits_alerts_and_all_day(self, make_template):
        template = make_template(alert_offsets=[5, 30], is_all_day=True)
        instance = generate_instances(template, date(2025, 1, 1), now=JAN_1)[0]
        assert instance.alert_offsets == [5, 30]
        assert instance.is_all_day is True

    def test_idempotent(self, sample_template):
        """A second run over the same range with the first result as existing adds nothing."""
        first = generate_instances(sample_template, date(2025, 1, 15), now=JAN_1)
        second = generate_instances(sample_template, date(2025, 1, 15), existing=first, now=JAN_1)
        assert second == []

    def test_exception_day_is_not_regenerated(self, sample_template):
        """A moved occurrence still occupies its new day and keeps its time."""
        first = generate_instances(sample_template, date(2025, 1, 15), now=JAN_1)
        moved = first[1]  # Fri 2025-01-03
        make_exception(moved, datetime(2025, 1, 3, 18, 30))

        again = generate_instances(sample_template, date(2025, 1, 15), existing=first, now=JAN_1)

        assert again == []
        assert moved.scheduled_date == datetime(2025, 1, 3, 18, 30)

    def test_instances_of_other_templates_do_not_block(self, sample_template, make_template, mwf_rule):
        other = make_template(title="Other", rule=mwf_rule)
        others = generate_instances(other, date(2025, 1, 15), now=JAN_1)
        created = generate_instances(sample_template, date(2025, 1, 15), existing=others, now=JAN_1)
        assert len(created) == 7

    def test_empty_range_returns_nothing(self, sample_template):
        assert generate_instances(sample_template, date(2024, 12, 31), now=JAN_1) == []

    def test_count_budget_across_resumed_generation(self, make_template):
        rule = RecurrenceRule(kind=RecurrenceKind.DAILY, end_rule=EndRuleType.AFTER_OCCURRENCES, end_count=4)
        template = make_template(rule=rule)

        first = generate_instances(template, date(2025, 1, 2), now=JAN_1)
        later = generate_instances(template, date(2025, 1, 31), existing=first, now=datetime(2025, 1, 3, 6, 0))

        assert [i.scheduled_day for i in first + later] == [
            date(2025, 1, 1),
            date(2025, 1, 2),
            date(2025, 1, 3),
            date(2025, 1, 4),
        ]


class TestBackfillInstances:
    def test_december_backfill(self, sample_template):
        """One instance per Mon/Wed/Fri in December, no duplicates of January instances."""
        january = generate_instances(sample_template, date(2025, 1, 15), now=JAN_1)

        december = backfill_instances(
            sample_template, date(2024, 12, 1), date(2024, 12, 31), existing=january, now=JAN_1
        )

        assert [i.scheduled_day for i in december] == [
            date(2024, 12, d) for d in (2, 4, 6, 9, 11, 13, 16, 18, 20, 23, 25, 27, 30)
        ]
        assert all(i.scheduled_date.hour == 7 for i in december)
        assert not {i.scheduled_day for i in december} & {i.scheduled_day for i in january}

    def test_overlapping_backfill_skips_existing(self, sample_template):
        january = generate_instances(sample_template, date(2025, 1, 15), now=JAN_1)
        backfilled = backfill_instances(
            sample_template, date(2024, 12, 30), date(2025, 1, 10), existing=january, now=JAN_1
        )
        assert [i.scheduled_day for i in backfilled] == [date(2024, 12, 30)]

    def test_inverted_range_is_empty(self, sample_template):
        assert backfill_instances(sample_template, date(2025, 1, 10), date(2025, 1, 1)) == []
