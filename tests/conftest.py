"""
Shared pytest fixtures for the Admissions Milestones test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - call / reviewer: Pre-created Call and staff User
    - make_application / make_milestones: ORM factories committed to the DB
"""

import pytest

from admissions import create_app
from admissions.models import db as _db
from admissions.models.directory import Applicant, Application, Call, User
from admissions.models.milestone import MilestoneDefinition


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
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def call():
    """An open call with no milestones yet."""
    c = Call(name="Doctoral Call 2026", year=2026, status="OPEN")
    _db.session.add(c)
    _db.session.commit()
    return c


@pytest.fixture()
def reviewer():
    """Staff user who performs reviews."""
    u = User(email="reviewer@uni.test", full_name="Dana Reviewer", role="REVIEWER")
    _db.session.add(u)
    _db.session.commit()
    return u


@pytest.fixture()
def make_application():
    """Factory: create an applicant + application in the given call."""
    counter = {"n": 0}

    def _make(call, full_name=None, email=None):
        counter["n"] += 1
        n = counter["n"]
        applicant = Applicant(
            full_name=full_name or f"Applicant {n}",
            email=email or f"applicant{n}@uni.test",
        )
        _db.session.add(applicant)
        _db.session.flush()
        application = Application(call_id=call.id, applicant_id=applicant.id, status="SUBMITTED")
        _db.session.add(application)
        _db.session.commit()
        return application

    return _make


@pytest.fixture()
def make_milestones():
    """Factory: define milestones 1..N on a call directly (no backfill)."""

    def _make(call, names):
        milestones = []
        for index, name in enumerate(names, start=1):
            m = MilestoneDefinition(call_id=call.id, name=name, order_index=index)
            _db.session.add(m)
            milestones.append(m)
        _db.session.commit()
        return milestones

    return _make
