"""
Shared pytest fixtures for the production planning engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - box_template: the three-step "Box-3step" template (Cut, Glue, Pack)
    - reference_data: seeded positions and workplaces
"""

import pytest

from prodplan import create_app
from prodplan.models import db as _db
from prodplan.services.personnel_directory import SqlPersonnelDirectory


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
        app.extensions["personnel_directory"] = SqlPersonnelDirectory()
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
def box_template():
    """Create the Box-3step template: Cut(1) → Glue(2) → Pack(3)."""
    from prodplan.services.template_service import create_template

    return create_template({
        "name": "Box-3step",
        "description": "Cardboard box, three operations",
        "steps": [
            {"name": "Cut", "expected_duration_min": 30,
             "default_workplace_ref": "w_cutting", "required_position_ref": "cutter"},
            {"name": "Glue", "expected_duration_min": 45,
             "default_workplace_ref": "w_bottom_glue_hot", "required_position_ref": "bottom_gluer"},
            {"name": "Pack", "expected_duration_min": 15,
             "required_position_ref": "assembler"},
        ],
    })


@pytest.fixture()
def reference_data():
    """Seed the standard positions and workplaces."""
    from prodplan.models.personnel import seed_reference_data

    count = seed_reference_data()
    _db.session.commit()
    return count
