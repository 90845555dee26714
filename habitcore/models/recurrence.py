"""Recurrence models for habit templates.

A template carries one RecurrenceRule. The rule is evaluated against the
template's base time (see habitcore.recurrence.evaluate); it never stores
concrete occurrence dates itself.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class RecurrenceKind(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    CUSTOM = "custom"
    MONTHLY = "monthly"
    NONE = "none"


class EndRuleType(str, Enum):
    NEVER = "never"
    ON_DATE = "on_date"
    AFTER_OCCURRENCES = "after_occurrences"


class Weekday(str, Enum):
    MO = "mo"
    TU = "tu"
    WE = "we"
    TH = "th"
    FR = "fr"
    SA = "sa"
    SU = "su"


# Python weekday(): Monday=0 ... Sunday=6
WEEKDAY_ORDER: List[Weekday] = [
    Weekday.MO,
    Weekday.TU,
    Weekday.WE,
    Weekday.TH,
    Weekday.FR,
    Weekday.SA,
    Weekday.SU,
]


def weekday_of(d: date) -> Weekday:
    return WEEKDAY_ORDER[d.weekday()]


class RecurrenceRule(BaseModel):
    """How often a template repeats and when it stops.

    Notes:
    - `weekdays` is required for CUSTOM; for WEEKLY an empty set means "the base day's weekday".
    - `start_date` anchors occurrence counting for AFTER_OCCURRENCES. When unset the
      template's base day is used.
    """

    kind: RecurrenceKind = RecurrenceKind.DAILY
    weekdays: List[Weekday] = Field(default_factory=list, description="Weekdays for weekly/custom rules")

    end_rule: EndRuleType = EndRuleType.NEVER
    end_date: Optional[date] = Field(None, description="Last day that may produce an occurrence (on_date)")
    end_count: Optional[int] = Field(None, ge=1, description="Total occurrences allowed (after_occurrences)")

    start_date: Optional[date] = Field(None, description="First occurrence day of the template")

    @field_validator("weekdays")
    @classmethod
    def _dedupe_weekdays(cls, v):
        # Deduplicate but preserve order
        seen = set()
        out: List[Weekday] = []
        for day in v or []:
            if day not in seen:
                seen.add(day)
                out.append(day)
        return out

    @model_validator(mode="after")
    def _validate_rule(self):
        if self.kind == RecurrenceKind.CUSTOM and not self.weekdays:
            raise ValueError("custom recurrence requires at least one weekday")
        if self.end_rule == EndRuleType.ON_DATE and self.end_date is None:
            raise ValueError("on_date end rule requires end_date")
        if self.end_rule == EndRuleType.AFTER_OCCURRENCES and self.end_count is None:
            raise ValueError("after_occurrences end rule requires end_count")
        if self.end_date is not None and self.start_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be >= start_date")
        return self
