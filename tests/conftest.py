"""Pytest fixtures and configuration for habitcore tests."""

import pytest
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from habitcore.database.database import Base, get_db
from habitcore.database import models  # noqa: F401
from habitcore.database.instance_repository import InstanceRepository
from habitcore.database.template_repository import TemplateRepository
from habitcore.engine.service import HabitEngine
from habitcore.integrations.audit import InMemoryAuditLogger
from habitcore.integrations.notifications import InMemoryNotificationScheduler
from habitcore.models.atom import AtomInputType
from habitcore.models.factory import create_atom_definition, create_instance_base, create_template_base
from habitcore.models.recurrence import RecurrenceKind, RecurrenceRule, Weekday


# Use in-memory SQLite database for tests
TEST_DATABASE_URL = "sqlite:///:memory:"

# Wed 2025-01-01 07:00
BASE_TIME = datetime(2025, 1, 1, 7, 0)


@pytest.fixture(scope="function")
def db_session():
    """Create a database session for testing.

    Uses an in-memory SQLite database that is created fresh for each test.
    """
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    Base.metadata.create_all(bind=engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def template_repository(db_session: Session):
    return TemplateRepository(db_session)


@pytest.fixture
def instance_repository(db_session: Session):
    return InstanceRepository(db_session)


@pytest.fixture
def notifications():
    return InMemoryNotificationScheduler()


@pytest.fixture
def audit_logger():
    return InMemoryAuditLogger()


@pytest.fixture
def habit_engine(db_session, notifications, audit_logger):
    """HabitEngine over the test session with in-memory collaborators."""
    return HabitEngine(db_session, notifications=notifications, audit=audit_logger)


@pytest.fixture
def mwf_rule():
    """Mon/Wed/Fri custom rule."""
    return RecurrenceRule(kind=RecurrenceKind.CUSTOM, weekdays=[Weekday.MO, Weekday.WE, Weekday.FR])


@pytest.fixture
def make_template():
    """Build (unpersisted) templates with two atoms by default."""

    def _make(title="Morning Routine", base_time=BASE_TIME, rule=None, atoms=None, **kwargs):
        if atoms is None:
            atoms = [
                create_atom_definition("Drink water", order=0, input_type=AtomInputType.COUNTER, target_value=8, unit="glasses"),
                create_atom_definition("Stretch", order=1),
            ]
        return create_template_base(title=title, base_time=base_time, rule=rule, atoms=atoms, **kwargs)

    return _make


@pytest.fixture
def sample_template(make_template, mwf_rule):
    return make_template(rule=mwf_rule)


@pytest.fixture
def make_instance():
    """Build an (unpersisted) instance of a template at a given time."""

    def _make(scheduled_date, template=None, **updates):
        instance = create_instance_base(scheduled_date, template=template)
        for field, value in updates.items():
            setattr(instance, field, value)
        return instance

    return _make


@pytest.fixture
def test_client(db_session: Session):
    """Create a FastAPI test client with overridden database dependency."""
    from habitcore.api.app import app

    def override_get_db():
        try:
            yield db_session
        finally:
            pass  # Don't close the session here, let the fixture handle it

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
