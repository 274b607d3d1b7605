"""
Shared pytest fixtures for the Cadence Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - default_org: Pre-created Organization entity
    - drop_all_tables: FK-safe schema drop helper
    - captured_events: domain events published during the test
"""

import pytest

from cadence import create_app
from cadence.models import db as _db
from cadence.services import domain_events


def _ensure_default_org():
    """Create the default organization for tests if it doesn't exist.

    Returns the organization ID.
    """
    from cadence.models.organization import Organization
    org = Organization.query.filter_by(slug="test-default").first()
    if not org:
        org = Organization(name="Test Default", slug="test-default")
        _db.session.add(org)
        _db.session.commit()
    return org.id


def _drop_all():
    """Drop every table with SQLite FK enforcement paused.

    Self-referencing RESTRICT keys on objective_nodes would otherwise fail
    the implicit DELETE that SQLite runs during DROP TABLE.
    """
    with _db.engine.connect() as conn:
        sqlite = conn.dialect.name == "sqlite"
        if sqlite:
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
        _db.metadata.drop_all(bind=conn)
        if sqlite:
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")
        conn.commit()


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        _ensure_default_org()
        yield
        _db.session.rollback()
        _drop_all()
        _db.create_all()


@pytest.fixture()
def default_org():
    """Return the auto-created default test organization."""
    from cadence.models.organization import Organization
    return Organization.query.filter_by(slug="test-default").first()


@pytest.fixture()
def drop_all_tables():
    """The FK-safe schema drop used by the teardown fixtures."""
    return _drop_all


@pytest.fixture()
def captured_events():
    """Collect every published domain event for the duration of a test."""
    events = []

    def _capture(event):
        events.append(event)

    domain_events.subscribe("*")(_capture)
    yield events
    domain_events.unsubscribe("*", _capture)
