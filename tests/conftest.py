"""
Shared pytest fixtures for the signposting test suite.

Provides:
    - app: Flask application (session-scoped, testing config, in-memory SQLite)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB reset + view cache flush (autouse)
    - client: Flask test client
    - view_cache: the app's MemoryViewCache
    - tenant / other_tenant: two surgeries
    - make_base / make_custom: factories going through the services
    - superuser_headers / admin_headers: caller-identity headers
"""

import pytest

from signposting import create_app
from signposting.models import db as _db
from signposting.models.tenant import Tenant
from signposting.services import library_service


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
    """Per-test: open app context, reset tables and the view cache afterwards."""
    with app.app_context():
        app.extensions["view_cache"].flush()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
        app.extensions["view_cache"].flush()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def view_cache(app):
    return app.extensions["view_cache"]


# ── Surgeries ────────────────────────────────────────────────────────────


def _make_tenant(name, slug):
    t = Tenant(name=name, slug=slug)
    _db.session.add(t)
    _db.session.commit()
    return t


@pytest.fixture()
def tenant():
    return _make_tenant("Riverside Surgery", "riverside")


@pytest.fixture()
def other_tenant():
    return _make_tenant("Hillview Practice", "hillview")


# ── Item factories ───────────────────────────────────────────────────────


@pytest.fixture()
def make_base():
    def _make(name, **fields):
        return library_service.create_base_item({"name": name, **fields}, actor="super")
    return _make


@pytest.fixture()
def make_custom():
    def _make(tenant_id, name, **fields):
        return library_service.create_custom_item(tenant_id, {"name": name, **fields}, actor="admin")
    return _make


# ── Caller identity headers ──────────────────────────────────────────────


@pytest.fixture()
def superuser_headers():
    return {"X-Caller-Id": "super-1", "X-Caller-Role": "SUPERUSER"}


@pytest.fixture()
def admin_headers(tenant):
    return {
        "X-Caller-Id": "admin-1",
        "X-Caller-Role": "USER",
        "X-Caller-Admin-Tenants": str(tenant.id),
    }
