"""
tests/test_auth_store.py -- Unit tests for auth/store.py (UserStore).

Each test gets a fresh shared-memory database with the four roles seeded.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import ALL_ROLES, ROLE_ADMIN, ROLE_CLIENT, ROLE_OPTOMETRIST, ROLE_VENDOR, ResetToken, User
from auth.store import UserStore


def _user(email: str, **kwargs) -> User:
    kwargs.setdefault("name", "Store Test")
    return User(email=email, **kwargs)


class TestRoles:
    def test_seed_is_idempotent(self, user_store: UserStore) -> None:
        assert user_store.seed_roles() == 0, "fixture already seeded; second seed must insert nothing"
        assert [r.name for r in user_store.list_roles()] == list(ALL_ROLES)

    def test_missing_roles_reports_unknown_names(self, user_store: UserStore) -> None:
        assert user_store.missing_roles([ROLE_ADMIN, "manager", "guest"]) == ["manager", "guest"]

    def test_set_roles_replaces_the_set(self, user_store: UserStore) -> None:
        uid = user_store.create_user(_user("roles@neoptica.test"), roles=[ROLE_CLIENT])
        user_store.set_roles(uid, [ROLE_VENDOR, ROLE_OPTOMETRIST])
        assert sorted(user_store.get_by_id(uid).roles) == sorted([ROLE_VENDOR, ROLE_OPTOMETRIST])

    def test_set_roles_rejects_unknown_role(self, user_store: UserStore) -> None:
        uid = user_store.create_user(_user("bad-role@neoptica.test"), roles=[ROLE_CLIENT])
        with pytest.raises(ValueError):
            user_store.set_roles(uid, ["superuser"])
        assert user_store.get_by_id(uid).roles == [ROLE_CLIENT], "failed set_roles must not change roles"


class TestUsers:
    def test_create_and_fetch(self, user_store: UserStore) -> None:
        uid = user_store.create_user(_user("Ana@Neoptica.test", phone="0991234567"), roles=[ROLE_CLIENT])
        user = user_store.get_by_email("ana@neoptica.TEST")
        assert user is not None, "e-mail lookup must be case-insensitive"
        assert user.id == uid
        assert user.phone == "0991234567"
        assert user.roles == [ROLE_CLIENT]
        assert user.is_active is True
        assert user.created_at

    def test_duplicate_email_raises_integrity_error(self, user_store: UserStore) -> None:
        user_store.create_user(_user("dup@neoptica.test"), roles=[ROLE_CLIENT])
        with pytest.raises(IntegrityError):
            user_store.create_user(_user("dup@neoptica.test"), roles=[ROLE_CLIENT])

    def test_create_with_unknown_role_writes_nothing(self, user_store: UserStore) -> None:
        with pytest.raises(ValueError):
            user_store.create_user(_user("ghost@neoptica.test"), roles=["wizard"])
        assert user_store.get_by_email("ghost@neoptica.test") is None

    def test_users_without_email_can_coexist(self, user_store: UserStore) -> None:
        a = user_store.create_user(_user(None, oauth_provider="instagram", oauth_subject="1"), roles=[ROLE_CLIENT])
        b = user_store.create_user(_user(None, oauth_provider="instagram", oauth_subject="2"), roles=[ROLE_CLIENT])
        assert a != b

    def test_update_rejects_unknown_fields(self, user_store: UserStore) -> None:
        uid = user_store.create_user(_user("upd@neoptica.test"), roles=[ROLE_CLIENT])
        with pytest.raises(ValueError):
            user_store.update_user(uid, roles=["admin"])

    def test_update_stamps_updated_at(self, user_store: UserStore) -> None:
        uid = user_store.create_user(_user("stamp@neoptica.test"), roles=[ROLE_CLIENT])
        assert user_store.update_user(uid, name="New Name", address="Av. Amazonas")
        user = user_store.get_by_id(uid)
        assert user.name == "New Name"
        assert user.address == "Av. Amazonas"
        assert user.updated_at is not None

    def test_deactivate_is_soft_and_single_shot(self, user_store: UserStore) -> None:
        uid = user_store.create_user(_user("soft@neoptica.test"), roles=[ROLE_CLIENT])
        assert user_store.deactivate_user(uid, voided_by=99) is True
        assert user_store.deactivate_user(uid, voided_by=99) is False
        user = user_store.get_by_id(uid)
        assert user is not None, "soft delete must keep the row"
        assert user.is_active is False
        assert user.voided_at is not None
        assert user.voided_by == 99

    def test_list_users_hides_inactive_by_default(self, user_store: UserStore) -> None:
        keep = user_store.create_user(_user("keep@neoptica.test"), roles=[ROLE_CLIENT])
        drop = user_store.create_user(_user("drop@neoptica.test"), roles=[ROLE_CLIENT])
        user_store.deactivate_user(drop)
        ids = {u.id for u in user_store.list_users()}
        assert keep in ids and drop not in ids
        assert drop in {u.id for u in user_store.list_users(active_only=False)}

    def test_paginated_search_and_total(self, user_store: UserStore) -> None:
        for i in range(5):
            user_store.create_user(_user(f"page{i}@neoptica.test", name=f"Paula {i}"), roles=[ROLE_CLIENT])
        user_store.create_user(_user("other@neoptica.test", name="Otto"), roles=[ROLE_CLIENT])
        users, total = user_store.list_users_page(page=2, page_size=2, search="paula")
        assert total == 5
        assert [u.name for u in users] == ["Paula 2", "Paula 3"]

    def test_count_active_admins(self, user_store: UserStore) -> None:
        a1 = user_store.create_user(_user("a1@neoptica.test"), roles=[ROLE_ADMIN])
        user_store.create_user(_user("a2@neoptica.test"), roles=[ROLE_ADMIN, ROLE_VENDOR])
        assert user_store.count_active_admins() == 2
        user_store.deactivate_user(a1)
        assert user_store.count_active_admins() == 1


class TestOAuthLinks:
    def test_get_by_oauth_and_link(self, user_store: UserStore) -> None:
        uid = user_store.create_user(_user("link@neoptica.test"), roles=[ROLE_CLIENT])
        assert user_store.get_by_oauth("google", "g-1") is None
        user_store.link_oauth(uid, "google", "g-1")
        assert user_store.get_by_oauth("google", "g-1").id == uid

    def test_link_refuses_identity_owned_by_someone_else(self, user_store: UserStore) -> None:
        owner = user_store.create_user(_user("owner@neoptica.test"), roles=[ROLE_CLIENT])
        other = user_store.create_user(_user("other2@neoptica.test"), roles=[ROLE_CLIENT])
        user_store.link_oauth(owner, "facebook", "fb-9")
        with pytest.raises(ValueError):
            user_store.link_oauth(other, "facebook", "fb-9")


class TestResetTokens:
    def test_valid_then_expired(self, user_store: UserStore) -> None:
        uid = user_store.create_user(_user("reset@neoptica.test"), roles=[ROLE_CLIENT])
        future = (datetime.now(timezone.utc) + timedelta(hours=1)).isoformat()
        user_store.create_reset_token(ResetToken(user_id=uid, token_hash="h1", expires_at=future))
        assert user_store.get_valid_reset_token(uid, "h1") is not None
        assert user_store.get_valid_reset_token(uid, "h2") is None
        assert user_store.expire_reset_tokens(uid) == 1
        assert user_store.get_valid_reset_token(uid, "h1") is None

    def test_past_expiry_is_not_valid(self, user_store: UserStore) -> None:
        uid = user_store.create_user(_user("old@neoptica.test"), roles=[ROLE_CLIENT])
        past = (datetime.now(timezone.utc) - timedelta(minutes=1)).isoformat()
        user_store.create_reset_token(ResetToken(user_id=uid, token_hash="old", expires_at=past))
        assert user_store.get_valid_reset_token(uid, "old") is None
