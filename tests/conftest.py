"""
tests/conftest.py -- Shared fixtures for the Neóptica test suite.

This module provides:
  - memory_url(): a named shared-memory SQLite URI unique to the caller
  - user_store / catalog_store / audit_store: fresh stores for unit tests
  - api: an ApiEnv (TestClient + stores + a seeded admin) per test module

Named shared-memory SQLite URIs (not plain :memory:) are required because
TestClient runs sync route handlers in a thread pool; a plain :memory:
database is per-connection and would look empty to every worker thread.

Settings are read once and cached, and several modules read them at import
time (rate limiter, TrustedHostMiddleware, OAuth registry), so the test
environment is fixed here before anything from the project is imported.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from unittest.mock import MagicMock

# CRITICAL: before any project import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["*"]')
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-google-client")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-google-secret")
os.environ.setdefault("FRONTEND_URL", "http://frontend.test")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from audit.store import AuditStore
from auth.models import ROLE_ADMIN, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from catalog.store import CatalogStore

DEFAULT_PASSWORD = "Secret123"


def memory_url(name: str) -> str:
    """Return a shared-memory SQLite URI that no other test will reuse."""
    return f"sqlite:///file:{name}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def unique(prefix: str) -> str:
    """Short unique suffix for names and e-mails in module-scoped databases."""
    return f"{prefix}{uuid.uuid4().hex[:8]}"


# ---------------------------------------------------------------------------
# Store fixtures (unit tests)
# ---------------------------------------------------------------------------


@pytest.fixture()
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=memory_url("auth"))
    store.seed_roles()
    yield store
    store.close()


@pytest.fixture()
def catalog_store() -> Generator[CatalogStore, None, None]:
    store = CatalogStore(db_url=memory_url("catalog"))
    yield store
    store.close()


@pytest.fixture()
def audit_store() -> Generator[AuditStore, None, None]:
    store = AuditStore(db_url=memory_url("audit"))
    yield store
    store.close()


# ---------------------------------------------------------------------------
# API fixture (integration tests)
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    """Everything an integration test needs: the client, the stores and an admin."""

    client: TestClient
    users: UserStore
    catalog: CatalogStore
    audit: AuditStore
    admin: User

    def add_user(self, roles: list[str], password: str | None = DEFAULT_PASSWORD, **fields) -> User:
        """Create a user directly in the store and return it with its ID and roles."""
        fields.setdefault("name", "Test User")
        fields.setdefault("email", f"{unique('user')}@neoptica.test")
        user = User(hashed_password=hash_password(password) if password else None, **fields)
        user_id = self.users.create_user(user, roles=roles)
        return self.users.get_by_id(user_id)

    def headers_for(self, user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user, expire_seconds=3600)}"}

    @property
    def admin_headers(self) -> dict[str, str]:
        return self.headers_for(self.admin)


def _patch_lifespan(users: UserStore, catalog: CatalogStore, audit: AuditStore):
    """Return a lifespan that wires the test stores into app.state.

    The OAuth registry is a MagicMock so no test can reach a real provider.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = users
        app.state.catalog = catalog
        app.state.audit = audit
        app.state.oauth = MagicMock()
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api(request) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv backed by fresh in-memory databases for this test module."""
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    users = UserStore(db_url=memory_url(f"auth_{suffix}"))
    users.seed_roles()
    catalog = CatalogStore(db_url=memory_url(f"catalog_{suffix}"))
    audit = AuditStore(db_url=memory_url(f"audit_{suffix}"))

    admin_id = users.create_user(
        User(name="Admin User", email="admin@neoptica.test", hashed_password=hash_password(DEFAULT_PASSWORD)),
        roles=[ROLE_ADMIN],
    )

    app.router.lifespan_context = _patch_lifespan(users, catalog, audit)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(client=client, users=users, catalog=catalog, audit=audit, admin=users.get_by_id(admin_id))

    audit.close()
    catalog.close()
    users.close()
