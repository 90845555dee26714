#!/usr/bin/env python3
"""Run script for habitcore."""

import uvicorn

from habitcore.database.database import init_db
from habitcore.logging_config import configure_logging

if __name__ == "__main__":
    configure_logging()
    init_db()
    uvicorn.run(
        "habitcore.api.app:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
