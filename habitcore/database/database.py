"""Database connection and session management for habitcore.

SQLite is the default store (a single file next to the app); any SQLAlchemy
URL, e.g. PostgreSQL, can be supplied through `DATABASE_URL`.
"""

import os
import sqlite3
from typing import Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./habitcore.db")


def _is_sqlite_url(database_url: str) -> bool:
    return "sqlite" in (database_url or "")


def _is_memory_url(database_url: str) -> bool:
    return _is_sqlite_url(database_url) and (":memory:" in database_url or database_url.rstrip("/") == "sqlite:")


def get_engine_kwargs(database_url: str) -> dict:
    """create_engine kwargs for a URL, computed without connecting."""
    engine_kwargs: dict = {
        "echo": os.getenv("DEBUG", "False").lower() == "true",
        "pool_pre_ping": True,
    }

    if _is_sqlite_url(database_url):
        # Request handlers and retirement timers touch the DB from different threads.
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        return engine_kwargs

    engine_kwargs["pool_size"] = int(os.getenv("DB_POOL_SIZE", "5"))
    engine_kwargs["max_overflow"] = int(os.getenv("DB_MAX_OVERFLOW", "5"))
    engine_kwargs["pool_timeout"] = int(os.getenv("DB_POOL_TIMEOUT_SEC", "30"))
    return engine_kwargs


def build_engine(database_url: str) -> Engine:
    return create_engine(database_url, **get_engine_kwargs(database_url))


@event.listens_for(Engine, "connect")
def set_sqlite_pragmas(dbapi_conn, connection_record):
    """Turn on foreign keys for every SQLite connection.

    SQLite ignores ON DELETE SET NULL (instances.template_id) and ON DELETE
    CASCADE (atom rows) unless the pragma is set per connection. WAL is
    enabled unless the configured database is in-memory.
    """
    if not isinstance(dbapi_conn, sqlite3.Connection):
        return
    cursor = dbapi_conn.cursor()
    try:
        cursor.execute("PRAGMA foreign_keys=ON")
        if not _is_memory_url(DATABASE_URL):
            cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


engine = build_engine(DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Session:
    """Get database session (dependency for FastAPI)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None, database_url: Optional[str] = None) -> str:
    """Create or migrate the schema.

    SQLite databases are created with `create_all()`. Other databases run the
    Alembic migrations when `RUN_MIGRATIONS=true`.

    Returns:
        "alembic" or "create_all", whichever was used
    """
    # Register the mapped classes on Base.metadata.
    from habitcore.database import models  # noqa: F401

    bind = bind or engine
    database_url = database_url or DATABASE_URL
    run_migrations = os.getenv("RUN_MIGRATIONS", "False").lower() == "true"
    if run_migrations and not _is_sqlite_url(database_url):
        from alembic import command
        from alembic.config import Config

        alembic_cfg = Config(os.getenv("ALEMBIC_INI", "alembic.ini"))
        alembic_cfg.set_main_option("sqlalchemy.url", database_url)
        command.upgrade(alembic_cfg, "head")
        return "alembic"

    Base.metadata.create_all(bind=bind)
    return "create_all"
