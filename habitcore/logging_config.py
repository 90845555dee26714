"""Process-wide logging setup for the API server."""

import logging
from typing import Optional

from habitcore.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(level=(level or LOG_LEVEL).upper(), format=LOG_FORMAT)
    # SQL echo is controlled by DEBUG on the engine; keep the pool quiet otherwise.
    logging.getLogger("sqlalchemy.pool").setLevel(logging.WARNING)
