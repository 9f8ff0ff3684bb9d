"""
Shared pytest fixtures for the Property Back Office test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - head_office / branch_office: two business units (tenants)
    - roles: Staff (0), Manager (1), Approver (2), Director (3)
    - people: users with memberships; ``outsider`` belongs to branch_office only
    - ctx_of: builds the AccessContext for a user from the database
    - auth_headers: Bearer header carrying a user's current assignments

Fixture rows are committed, not flushed: a failing service call rolls the
session back and must not take the fixture data with it.
"""

from types import SimpleNamespace

import pytest

from backoffice import create_app
from backoffice.models import db as _db
from backoffice.models.auth import BusinessUnit, BusinessUnitMember, Role, RolePermission, User
from backoffice.services.access_context import build_access_context
from backoffice.services.jwt_service import generate_access_token


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Builders ─────────────────────────────────────────────────────────────


def _make_business_unit(name, is_active=True):
    bu = BusinessUnit(name=name, is_active=is_active)
    _db.session.add(bu)
    _db.session.commit()
    return bu


def _make_role(name, level, *, approve=True):
    role = Role(name=name, level=level, description=f"{name} role")
    role.permissions = [
        RolePermission(module="APPROVAL", can_read=True, can_approve=approve),
        RolePermission(module="PROPERTY", can_read=True, can_create=True),
    ]
    _db.session.add(role)
    _db.session.commit()
    return role


def _make_user(username, memberships=()):
    """Create a user with (business_unit, role) memberships."""
    user = User(username=username, email=f"{username}@example.com",
                first_name=username.capitalize(), last_name="Tester")
    _db.session.add(user)
    _db.session.flush()
    for bu, role in memberships:
        _db.session.add(BusinessUnitMember(user_id=user.id, business_unit_id=bu.id, role_id=role.id))
    _db.session.commit()
    return user


# ── Tenancy fixtures ─────────────────────────────────────────────────────


@pytest.fixture()
def head_office():
    return _make_business_unit("Head Office")


@pytest.fixture()
def branch_office():
    return _make_business_unit("Branch Office")


@pytest.fixture()
def roles():
    return SimpleNamespace(
        staff=_make_role("Staff", 0, approve=False),
        manager=_make_role("Manager", 1),
        approver=_make_role("Approver", 2),
        director=_make_role("Director", 3),
    )


@pytest.fixture()
def people(head_office, branch_office, roles):
    return SimpleNamespace(
        requester=_make_user("requester", [(head_office, roles.staff)]),
        manager=_make_user("manager", [(head_office, roles.manager)]),
        approver=_make_user("approver", [(head_office, roles.approver)]),
        director=_make_user("director", [(head_office, roles.director)]),
        outsider=_make_user("outsider", [(branch_office, roles.director)]),
    )


@pytest.fixture()
def ctx_of():
    """Return a function mapping a user to their AccessContext."""

    def _ctx(user):
        return build_access_context(user.id)

    return _ctx


@pytest.fixture()
def auth_headers():
    """Return a function mapping a user to an Authorization header."""

    def _headers(user):
        ctx = build_access_context(user.id)
        token = generate_access_token(ctx.user_id, ctx.to_token_payload())
        return {"Authorization": f"Bearer {token}"}

    return _headers
