"""Constants for habitcore.

This module centralizes default values used throughout the engine.
"""

# Generation
DEFAULT_GENERATION_HORIZON_DAYS = 30
DEFAULT_ALERT_OFFSETS = [15]
DEFAULT_BACKFILL_DAYS = 30

# Retirement
DEFAULT_RETIREMENT_GRACE_HOURS = 24

# Audit log retention (in-memory logger)
AUDIT_MAX_ENTRIES = 1000
AUDIT_MAX_AGE_DAYS = 7
