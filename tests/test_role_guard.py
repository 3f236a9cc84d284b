"""
tests/test_role_guard.py -- Unit tests for auth/dependencies.py.

The dependencies are plain functions of the Request, so they are called
directly with a minimal fake request carrying app.state.user_store.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from auth.dependencies import get_current_user, require_admin, require_roles, try_get_current_user
from auth.models import ROLE_ADMIN, ROLE_CLIENT, ROLE_OPTOMETRIST, ROLE_VENDOR, User
from auth.store import UserStore
from auth.tokens import create_access_token


def _request(store: UserStore, token: str | None = None, scheme: str = "Bearer") -> SimpleNamespace:
    headers = {"Authorization": f"{scheme} {token}"} if token else {}
    return SimpleNamespace(
        headers=headers,
        app=SimpleNamespace(state=SimpleNamespace(user_store=store)),
        state=SimpleNamespace(),
    )


def _make(store: UserStore, roles: list[str], active: bool = True) -> User:
    email = f"{'-'.join(roles) or 'none'}@guard.test"
    uid = store.create_user(User(name="Guard Test", email=email, is_active=active), roles=roles)
    return store.get_by_id(uid)


class TestCurrentUser:
    def test_missing_header_is_401(self, user_store: UserStore) -> None:
        with pytest.raises(HTTPException) as exc:
            get_current_user(_request(user_store))
        assert exc.value.status_code == 401

    def test_wrong_scheme_is_ignored(self, user_store: UserStore) -> None:
        user = _make(user_store, [ROLE_CLIENT])
        assert try_get_current_user(_request(user_store, create_access_token(user), scheme="Basic")) is None

    def test_valid_token_sets_request_state(self, user_store: UserStore) -> None:
        user = _make(user_store, [ROLE_VENDOR])
        request = _request(user_store, create_access_token(user))
        assert get_current_user(request).id == user.id
        assert request.state.user.id == user.id

    def test_deactivated_user_is_rejected_with_valid_token(self, user_store: UserStore) -> None:
        user = _make(user_store, [ROLE_CLIENT])
        token = create_access_token(user)
        user_store.deactivate_user(user.id)
        assert try_get_current_user(_request(user_store, token)) is None


class TestRequireRoles:
    def test_admin_passes_admin_guard(self, user_store: UserStore) -> None:
        admin = _make(user_store, [ROLE_ADMIN])
        assert require_admin(_request(user_store, create_access_token(admin))).id == admin.id

    def test_any_listed_role_is_enough(self, user_store: UserStore) -> None:
        guard = require_roles(ROLE_ADMIN, ROLE_VENDOR)
        staff = _make(user_store, [ROLE_OPTOMETRIST, ROLE_VENDOR])
        assert guard(_request(user_store, create_access_token(staff))).id == staff.id

    def test_missing_role_is_403(self, user_store: UserStore) -> None:
        client = _make(user_store, [ROLE_CLIENT])
        with pytest.raises(HTTPException) as exc:
            require_admin(_request(user_store, create_access_token(client)))
        assert exc.value.status_code == 403

    def test_user_without_roles_is_always_refused(self, user_store: UserStore) -> None:
        nobody = _make(user_store, [])
        with pytest.raises(HTTPException) as exc:
            require_roles(ROLE_CLIENT)(_request(user_store, create_access_token(nobody)))
        assert exc.value.status_code == 403

    def test_roles_come_from_the_database_not_the_token(self, user_store: UserStore) -> None:
        user = _make(user_store, [ROLE_ADMIN])
        token = create_access_token(user)
        user_store.set_roles(user.id, [ROLE_CLIENT])
        with pytest.raises(HTTPException) as exc:
            require_admin(_request(user_store, token))
        assert exc.value.status_code == 403, "a revoked admin role must take effect before the token expires"
