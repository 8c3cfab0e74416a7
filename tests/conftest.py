"""
Shared pytest fixtures for the case workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - tenant / manager / case_factory: ORM factories that bypass the service
      so tests can start from arbitrary case and step states
"""

from datetime import datetime, timezone

import pytest

from caseflow import create_app
from caseflow.models import db as _db
from caseflow.models.auth import Tenant, User
from caseflow.models.case import Case, CaseParticipant


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
        yield _db.session
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ═════════════════════════════════════════════════════════════════════════════
# ORM Helper Factories (DB-level, bypass the service to set arbitrary states)
# ═════════════════════════════════════════════════════════════════════════════


def make_tenant(slug="test-default") -> Tenant:
    t = Tenant(name=f"Tenant {slug}", slug=slug)
    _db.session.add(t)
    _db.session.flush()
    return t


def make_user(tenant: Tenant, email: str, status: str = "active") -> User:
    u = User(
        tenant_id=tenant.id, email=email, full_name=email.split("@")[0].title(), status=status,
    )
    _db.session.add(u)
    _db.session.flush()
    return u


def make_case(
    tenant: Tenant,
    manager: User | None,
    *,
    status: str = "intake",
    has_will: bool = False,
    requires_legal_support: bool = False,
    requires_financial_support: bool = False,
    intake_completed: bool = True,
) -> Case:
    """Create a Case whose intake snapshot carries the given flags."""
    case = Case(
        tenant_id=tenant.id,
        case_number=f"CASE-{_db.session.query(Case).count() + 1:04d}",
        deceased_full_name="Jane Doe",
        status=status,
        manager_user_id=manager.id if manager else None,
        intake_data={
            "has_will": has_will,
            "requires_legal_support": requires_legal_support,
            "requires_financial_support": requires_financial_support,
        } if intake_completed else None,
        intake_completed_at=datetime.now(timezone.utc) if intake_completed else None,
    )
    _db.session.add(case)
    _db.session.flush()
    return case


def make_participant(case: Case, user: User, role: str, status: str = "accepted") -> CaseParticipant:
    p = CaseParticipant(
        tenant_id=case.tenant_id,
        case_id=case.id,
        email=user.email,
        role=role,
        status=status,
        participant_user_id=user.id,
        accepted_at=datetime.now(timezone.utc) if status == "accepted" else None,
    )
    _db.session.add(p)
    _db.session.flush()
    return p


@pytest.fixture()
def tenant():
    return make_tenant()


@pytest.fixture()
def manager(tenant):
    return make_user(tenant, "manager@example.com")


@pytest.fixture()
def case_factory(tenant, manager):
    """Return a callable that creates committed cases for the default tenant."""

    def _factory(**kwargs):
        case = make_case(tenant, manager, **kwargs)
        _db.session.commit()
        return case

    return _factory


@pytest.fixture()
def user_factory(tenant):
    """Return a callable that creates committed users (default tenant unless given)."""

    def _factory(email, *, in_tenant=None, status="active"):
        user = make_user(in_tenant or tenant, email, status)
        _db.session.commit()
        return user

    return _factory


@pytest.fixture()
def tenant_factory():
    def _factory(slug):
        t = make_tenant(slug)
        _db.session.commit()
        return t

    return _factory


@pytest.fixture()
def participant_factory():
    def _factory(case, user, role, status="accepted"):
        p = make_participant(case, user, role, status)
        _db.session.commit()
        return p

    return _factory
