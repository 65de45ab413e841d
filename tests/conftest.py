"""
Shared pytest fixtures for the Workflow Progression & Alert Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - roofing: Seeded default ROOFING catalog
    - mini: Seeded three-item MINI catalog (LEAD {A: item1, item2}, PROSPECT {B: item3})
    - users / project / run: directory entries and an initialized ROOFING run
"""

import pytest

from workflow_engine import create_app
from workflow_engine.models import db as _db
from workflow_engine.services.alert_cache import get_alert_cache
from workflow_engine.services.catalog import get_catalog, invalidate_catalogs, seed_catalog


MINI_PHASES = [
    {"phase_type": "LEAD", "name": "Lead", "display_order": 1, "sections": [
        {"name": "Section A", "display_order": 1, "line_items": [
            {"name": "item1", "display_order": 1, "responsible_role": "OFFICE"},
            {"name": "item2", "display_order": 2, "responsible_role": "PROJECT_MANAGER",
             "alert_lead_days": 2},
        ]},
    ]},
    {"phase_type": "PROSPECT", "name": "Prospect", "display_order": 2, "sections": [
        {"name": "Section B", "display_order": 1, "line_items": [
            {"name": "item3", "display_order": 1, "responsible_role": "ADMINISTRATION"},
        ]},
    ]},
]


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
        # Ids are reused after every recreate; cached catalogs and alert
        # lists keyed by id must not leak between tests.
        invalidate_catalogs()
        get_alert_cache().clear()
        yield
        invalidate_catalogs()
        get_alert_cache().clear()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


def make_user(email, full_name=None, is_active=True):
    from workflow_engine.models.project import User
    u = User(email=email, full_name=full_name or email.split("@")[0], is_active=is_active)
    _db.session.add(u)
    _db.session.flush()
    return u


def make_project(name="Smith Residence Re-roof", manager=None, status="PENDING", archived=False):
    from workflow_engine.models.project import Project
    p = Project(
        name=name,
        status=status,
        archived=archived,
        project_manager_id=manager.id if manager is not None else None,
    )
    _db.session.add(p)
    _db.session.flush()
    return p


def assign(role_type, user):
    from workflow_engine.models.project import RoleAssignment
    a = RoleAssignment(role_type=role_type, user_id=user.id, is_active=True)
    _db.session.add(a)
    _db.session.flush()
    return a


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def roofing():
    """Seed the default ROOFING catalog and return it frozen."""
    seed_catalog()
    _db.session.commit()
    return get_catalog("ROOFING")


@pytest.fixture()
def mini():
    """Seed the three-item MINI catalog and return it frozen."""
    seed_catalog("MINI", MINI_PHASES)
    _db.session.commit()
    return get_catalog("MINI")


@pytest.fixture()
def users():
    """One active user per company role, each holding that role."""
    people = {
        "office": make_user("office@example.com", "Olive Office"),
        "admin": make_user("admin@example.com", "Adam Admin"),
        "pm": make_user("pm@example.com", "Paula Manager"),
        "field": make_user("field@example.com", "Fred Field"),
    }
    assign("OFFICE_STAFF", people["office"])
    assign("ADMINISTRATION", people["admin"])
    assign("PROJECT_MANAGER", people["pm"])
    assign("FIELD_DIRECTOR", people["field"])
    _db.session.commit()
    return people


@pytest.fixture()
def project(users):
    p = make_project(manager=users["pm"])
    _db.session.commit()
    return p


@pytest.fixture()
def run(project, roofing):
    """Initialized ROOFING run for ``project``."""
    from workflow_engine.services import workflow_service
    result = workflow_service.initialize_workflow(project.id, "ROOFING", actor="test")
    from workflow_engine.models.workflow import WorkflowRun
    return _db.session.get(WorkflowRun, result["run"]["id"])


@pytest.fixture()
def mini_run(project, mini):
    """Initialized MINI run for ``project``."""
    from workflow_engine.services import workflow_service
    result = workflow_service.initialize_workflow(project.id, "MINI", actor="test")
    from workflow_engine.models.workflow import WorkflowRun
    return _db.session.get(WorkflowRun, result["run"]["id"])
