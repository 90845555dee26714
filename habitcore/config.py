"""Runtime settings for habitcore, read from the environment (.env supported)."""

import os
from datetime import timedelta

from dotenv import load_dotenv

from habitcore.models.constants import DEFAULT_GENERATION_HORIZON_DAYS, DEFAULT_RETIREMENT_GRACE_HOURS

load_dotenv()

LOG_LEVEL = os.getenv("HABITCORE_LOG_LEVEL", "INFO").upper()


def retirement_grace() -> timedelta:
    """Undo window between retire() and the retirement cascade."""
    return timedelta(hours=float(os.getenv("HABITCORE_RETIREMENT_GRACE_HOURS", str(DEFAULT_RETIREMENT_GRACE_HOURS))))


def generation_horizon() -> timedelta:
    """How far ahead generate_instances() looks when no `until` is given."""
    return timedelta(days=int(os.getenv("HABITCORE_GENERATION_HORIZON_DAYS", str(DEFAULT_GENERATION_HORIZON_DAYS))))
