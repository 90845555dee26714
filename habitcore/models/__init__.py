"""Data models for habitcore."""

from habitcore.models.atom import AtomDefinition, AtomInstance, AtomInputType, STRUCTURAL_FIELDS
from habitcore.models.recurrence import RecurrenceRule, RecurrenceKind, EndRuleType, Weekday
from habitcore.models.template import HabitTemplate, RetirementFutureAction, RetirementStatus
from habitcore.models.instance import HabitInstance
from habitcore.models.audit_event import AuditEntry, AuditOperation, AuditEntityType

__all__ = [
    "AtomDefinition",
    "AtomInstance",
    "AtomInputType",
    "STRUCTURAL_FIELDS",
    "RecurrenceRule",
    "RecurrenceKind",
    "EndRuleType",
    "Weekday",
    "HabitTemplate",
    "RetirementStatus",
    "RetirementFutureAction",
    "HabitInstance",
    "AuditEntry",
    "AuditOperation",
    "AuditEntityType",
]
