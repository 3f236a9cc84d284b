"""
tests/test_oauth.py -- Unit tests for auth/oauth.py.

Profile extraction is tested against fake authlib clients (no network);
upsert_oauth_user() is tested against a real in-memory UserStore because the
linking rules are all about what is already in the database.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from auth.models import ROLE_ADMIN, ROLE_CLIENT, OAuthProfile, User
from auth.oauth import OAuthAccountError, get_enabled_providers, get_oauth_profile, upsert_oauth_user
from auth.store import UserStore


def _graph_client(payload: dict) -> MagicMock:
    """Fake authlib client whose GET returns `payload` as JSON."""
    resp = MagicMock()
    resp.json.return_value = payload
    resp.raise_for_status.return_value = None
    client = MagicMock()
    client.get = AsyncMock(return_value=resp)
    return client


class TestProfileExtraction:
    def test_google_reads_userinfo_from_token(self) -> None:
        token = {"userinfo": {"sub": "g-123", "email": "ana@gmail.com", "email_verified": True, "name": "Ana"}}
        profile = asyncio.run(get_oauth_profile(MagicMock(), "google", token))
        assert profile == OAuthProfile("google", "g-123", "ana@gmail.com", True, "Ana")

    def test_google_without_sub_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            asyncio.run(get_oauth_profile(MagicMock(), "google", {"userinfo": {"email": "x@gmail.com"}}))

    def test_facebook_email_counts_as_verified(self) -> None:
        client = _graph_client({"id": "fb-1", "name": "Fer", "email": "fer@example.com"})
        profile = asyncio.run(get_oauth_profile(client, "facebook", {"access_token": "t"}))
        assert profile.subject == "fb-1"
        assert profile.email == "fer@example.com"
        assert profile.email_verified is True
        client.get.assert_awaited_once()
        assert client.get.await_args.args[0] == "me?fields=id,name,email"

    def test_instagram_has_no_email(self) -> None:
        client = _graph_client({"id": "ig-7", "username": "lentes.lover"})
        profile = asyncio.run(get_oauth_profile(client, "instagram", {"access_token": "t"}))
        assert profile.email is None
        assert profile.email_verified is False
        assert profile.name == "lentes.lover"

    def test_unknown_provider(self) -> None:
        with pytest.raises(ValueError):
            asyncio.run(get_oauth_profile(MagicMock(), "myspace", {}))


class TestUpsert:
    def test_known_identity_returns_same_user(self, user_store: UserStore) -> None:
        first = upsert_oauth_user(user_store, OAuthProfile("google", "g-1", "one@gmail.com", True, "One"))
        again = upsert_oauth_user(user_store, OAuthProfile("google", "g-1", "changed@gmail.com", True, "One"))
        assert again.id == first.id

    def test_new_identity_creates_client(self, user_store: UserStore) -> None:
        user = upsert_oauth_user(user_store, OAuthProfile("google", "g-2", "New@Gmail.com", True, None))
        assert user.roles == [ROLE_CLIENT]
        assert user.email == "new@gmail.com"
        assert user.name == "New", "name falls back to the e-mail local part"
        assert user.hashed_password is None
        assert user.email_verified is True

    def test_instagram_account_created_without_email(self, user_store: UserStore) -> None:
        user = upsert_oauth_user(user_store, OAuthProfile("instagram", "ig-1", None, False, "insta.user"))
        assert user.email is None
        assert user.oauth_provider == "instagram"

    def test_verified_email_links_existing_local_account(self, user_store: UserStore) -> None:
        uid = user_store.create_user(User(name="Local", email="local@neoptica.test"), roles=[ROLE_ADMIN])
        user = upsert_oauth_user(user_store, OAuthProfile("google", "g-3", "local@neoptica.test", True, "L"))
        assert user.id == uid
        assert user.oauth_provider == "google"
        assert user.roles == [ROLE_ADMIN], "linking must not change the existing roles"
        assert user.email_verified is True

    def test_unverified_email_does_not_link(self, user_store: UserStore) -> None:
        user_store.create_user(User(name="Victim", email="victim@neoptica.test"), roles=[ROLE_CLIENT])
        with pytest.raises(OAuthAccountError):
            upsert_oauth_user(user_store, OAuthProfile("google", "g-4", "victim@neoptica.test", False, "X"))

    def test_email_linked_to_other_provider_conflicts(self, user_store: UserStore) -> None:
        upsert_oauth_user(user_store, OAuthProfile("facebook", "fb-5", "shared@example.com", True, "S"))
        with pytest.raises(OAuthAccountError):
            upsert_oauth_user(user_store, OAuthProfile("google", "g-5", "shared@example.com", True, "S"))


def test_enabled_providers_follow_settings() -> None:
    """conftest configures Google only."""
    names = [p["name"] for p in get_enabled_providers()]
    assert names == ["google"]
