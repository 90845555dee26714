"""Evaluate a RecurrenceRule into candidate occurrence timestamps.

Everything here is pure: same rule + range -> same sequence, no I/O.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Iterable, Iterator

from habitcore.models.recurrence import EndRuleType, RecurrenceKind, RecurrenceRule, weekday_of


def daterange(start: date, end_inclusive: date) -> Iterable[date]:
    cur = start
    while cur <= end_inclusive:
        yield cur
        cur = cur + timedelta(days=1)


def _as_day(value) -> date:
    return value.date() if isinstance(value, datetime) else value


def count_anchor(rule: RecurrenceRule, base_time: datetime) -> date:
    """First day of the template; occurrence counting starts here."""
    return rule.start_date or base_time.date()


def _pattern_matches(rule: RecurrenceRule, base_time: datetime, day: date) -> bool:
    if rule.kind == RecurrenceKind.DAILY:
        return True

    if rule.kind == RecurrenceKind.WEEKLY:
        if rule.weekdays:
            return weekday_of(day) in rule.weekdays
        return day.weekday() == base_time.weekday()

    if rule.kind == RecurrenceKind.CUSTOM:
        return weekday_of(day) in rule.weekdays

    if rule.kind == RecurrenceKind.MONTHLY:
        return day.day == base_time.day

    if rule.kind == RecurrenceKind.NONE:
        return day == base_time.date()

    return False


def rule_matches(rule: RecurrenceRule, base_time: datetime, day: date) -> bool:
    """Whether `day` matches the pattern and the on_date end rule.

    The occurrence-count end rule is not checked here since it depends on the
    days before `day`; use candidate_dates for that.
    """
    if rule.end_rule == EndRuleType.ON_DATE and rule.end_date is not None and day > rule.end_date:
        return False
    return _pattern_matches(rule, base_time, day)


def at_base_time(day: date, base_time: datetime) -> datetime:
    return datetime.combine(day, base_time.time().replace(second=0, microsecond=0))


def candidate_dates(
    rule: RecurrenceRule,
    base_time: datetime,
    start,
    until,
) -> Iterator[datetime]:
    """Yield occurrence timestamps for every matching day in [start, until].

    `start` and `until` may be dates or datetimes; only their calendar day is used.
    Each candidate is the matching day at base_time's hour and minute.

    For AFTER_OCCURRENCES the N allowed occurrences are counted from the
    template's first day (rule.start_date, else base_time's day), not from
    `start`. Resuming generation over a later range therefore yields exactly the
    occurrences that remain in the original budget, and days before the anchor
    never match.
    """
    start_day = _as_day(start)
    end_day = _as_day(until)
    if end_day < start_day:
        return

    if rule.end_rule == EndRuleType.ON_DATE and rule.end_date is not None:
        end_day = min(end_day, rule.end_date)

    if rule.end_rule == EndRuleType.AFTER_OCCURRENCES and rule.end_count is not None:
        anchor = count_anchor(rule, base_time)
        seen = 0
        # Walk from the anchor so the count is absolute, but only emit inside the range.
        for day in daterange(anchor, end_day):
            if seen >= rule.end_count:
                return
            if not _pattern_matches(rule, base_time, day):
                continue
            seen += 1
            if day >= start_day:
                yield at_base_time(day, base_time)
        return

    for day in daterange(start_day, end_day):
        if _pattern_matches(rule, base_time, day):
            yield at_base_time(day, base_time)
