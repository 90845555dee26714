"""Recurrence evaluation and materialization for habitcore."""

from habitcore.recurrence.evaluate import candidate_dates, rule_matches
from habitcore.recurrence.materialize import generate_instances, backfill_instances
from habitcore.recurrence.describe import describe_rule

__all__ = [
    "candidate_dates",
    "rule_matches",
    "generate_instances",
    "backfill_instances",
    "describe_rule",
]
