"""Human-readable descriptions of recurrence rules (display only)."""

from __future__ import annotations

from habitcore.models.recurrence import EndRuleType, RecurrenceKind, RecurrenceRule, WEEKDAY_ORDER, Weekday


_KIND_NAMES: dict[RecurrenceKind, str] = {
    RecurrenceKind.DAILY: "Every Day",
    RecurrenceKind.WEEKLY: "Every Week",
    RecurrenceKind.CUSTOM: "Custom",
    RecurrenceKind.MONTHLY: "Every Month",
    RecurrenceKind.NONE: "Once",
}

_WD_SHORT: dict[Weekday, str] = {
    Weekday.MO: "Mon",
    Weekday.TU: "Tue",
    Weekday.WE: "Wed",
    Weekday.TH: "Thu",
    Weekday.FR: "Fri",
    Weekday.SA: "Sat",
    Weekday.SU: "Sun",
}


def describe_weekdays(days: list[Weekday]) -> str:
    """[FR, MO, WE] -> 'Mon, Wed, Fri' (calendar order)."""
    ordered = sorted(days, key=WEEKDAY_ORDER.index)
    return ", ".join(_WD_SHORT[d] for d in ordered)


def describe_rule(rule: RecurrenceRule) -> str:
    description = _KIND_NAMES[rule.kind]
    if rule.kind in (RecurrenceKind.CUSTOM, RecurrenceKind.WEEKLY) and rule.weekdays:
        description = f"Every {describe_weekdays(rule.weekdays)}"

    if rule.end_rule == EndRuleType.ON_DATE and rule.end_date is not None:
        description += f" until {rule.end_date.isoformat()}"
    elif rule.end_rule == EndRuleType.AFTER_OCCURRENCES and rule.end_count is not None:
        description += f" ({rule.end_count}x)"
    return description
