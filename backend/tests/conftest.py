"""
Pytest fixtures for PharmaFlow backend tests.

Provides the application on in-memory SQLite, a per-test table wipe with
the default catalog and workflow re-seeded, users per role, and helpers
for stage grants and bearer headers.
"""

import pytest

from pharmaflow import create_app
from pharmaflow.extensions import db
from pharmaflow.models import StagePermission, WorkflowStage
from pharmaflow.services import (
    permission_service,
    procurement_service,
    session_service,
    stage_permission_service,
    user_service,
)
from pharmaflow.services.workflow_engine import get_engine
from pharmaflow.workflow_seed import seed_default_workflow


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'NOTIFICATION_BACKEND': 'memory',
        'WORKFLOW_REQUEST_TIMEOUT_SECONDS': 30,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh database for each test, with catalog, roles and default workflow seeded."""
    db.session.rollback()
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    permission_service.initialize_permissions()
    permission_service.create_default_roles()
    permission_service.assign_default_role_permissions()
    seed_default_workflow()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def engine(db_session):
    """The application's workflow engine with an empty notification outbox."""
    engine = get_engine()
    engine.notification_sink.sent.clear()
    return engine


def make_user(username: str, role: str | None = None, *, full_name: str | None = None):
    user = user_service.create_user(username, f"{username}@pharmaflow.test", full_name or username.title())
    if role:
        user_service.assign_role(user.id, role)
    return user


def stage(code: str) -> WorkflowStage:
    return db.session.query(WorkflowStage).filter_by(code=code).one()


def grant(user, stage_code: str, *permission_names: str, assigned_by=None, expiry_date=None) -> StagePermission:
    """Give user a stage grant holding exactly permission_names."""
    permissions = permission_service.get_permissions_by_names(permission_names)
    return stage_permission_service.assign(
        {
            "user_id": user.id,
            "stage_id": stage(stage_code).id,
            "permissions": [p.id for p in permissions],
            "expiry_date": expiry_date,
        },
        assigned_by=assigned_by or user,
    )


def grant_stage_requirements(user, *stage_codes: str, assigned_by=None) -> None:
    """Grant user every permission each stage requires."""
    for code in stage_codes:
        grant(user, code, *[p.name for p in stage(code).required_permissions], assigned_by=assigned_by)


def auth_headers(user) -> dict:
    """Bearer headers for a fresh session of user."""
    _session, token = session_service.create_session(user.id)
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin(db_session):
    return make_user("admin", "admin", full_name="Administrator")


@pytest.fixture(scope='function')
def buyer(db_session, admin):
    """Procurement officer holding every PO stage grant."""
    user = make_user("buyer", "procurement", full_name="Pat Buyer")
    grant_stage_requirements(
        user, "DRAFT", "APPROVED", "ORDERED", "PARTIAL_RECEIVED", "RECEIVED", "IR_DRAFT",
        assigned_by=admin,
    )
    return user


@pytest.fixture(scope='function')
def approver(db_session, admin):
    """Manager who approves POs and QC outcomes."""
    user = make_user("approver", "procurement", full_name="Morgan Approver")
    grant_stage_requirements(user, "PENDING_APPROVAL", "QC_PENDING", "QC_PASSED", "QC_FAILED", assigned_by=admin)
    return user


@pytest.fixture(scope='function')
def qa(db_session, admin):
    user = make_user("qa_inspector", "quality_assurance", full_name="Quinn Inspector")
    grant_stage_requirements(user, "QC_INSPECTION", "QC_REVIEW", assigned_by=admin)
    return user


@pytest.fixture(scope='function')
def storekeeper(db_session, admin):
    user = make_user("storekeeper", "warehouse", full_name="Sam Storekeeper")
    grant_stage_requirements(user, "WH_PENDING", "WH_APPROVED", assigned_by=admin)
    return user


@pytest.fixture(scope='function')
def viewer(db_session):
    return make_user("viewer", "viewer")


@pytest.fixture(scope='function')
def outsider(db_session):
    """Active user with no roles and no stage grants."""
    return make_user("outsider")


@pytest.fixture(scope='function')
def purchase_order(buyer):
    return procurement_service.create_purchase_order(
        {
            "supplier_name": "Acme Pharma",
            "lines": [
                {"product_name": "Paracetamol 500mg", "product_code": "PCM500", "quantity": 100,
                 "unit_price_cents": 25},
                {"product_name": "Amoxicillin 250mg", "product_code": "AMX250", "quantity": 50,
                 "unit_price_cents": 80},
            ],
        },
        created_by=buyer,
    )


@pytest.fixture(scope='function')
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture(scope='function')
def viewer_headers(viewer):
    return auth_headers(viewer)


@pytest.fixture(scope='function')
def outsider_headers(outsider):
    return auth_headers(outsider)
