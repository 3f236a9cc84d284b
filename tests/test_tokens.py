"""
tests/test_tokens.py -- Unit tests for auth/tokens.py.

Covers password hashing, JWT round-trip and rejection, authenticate_user()
outcomes, and reset-token hashing.
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from jose import jwt

from auth.models import ROLE_CLIENT, ROLE_VENDOR, User
from auth.store import UserStore
from auth.tokens import (
    LoginError,
    authenticate_user,
    create_access_token,
    decode_access_token,
    generate_reset_token,
    hash_password,
    hash_token,
    reset_token_expiry,
    verify_password,
)
from core.config import get_settings


class TestPasswordHashing:
    def test_hash_verifies(self) -> None:
        hashed = hash_password("Secret123")
        assert hashed != "Secret123"
        assert verify_password("Secret123", hashed)
        assert not verify_password("Secret124", hashed)

    def test_malformed_hash_is_a_mismatch_not_an_error(self) -> None:
        assert verify_password("Secret123", "not-a-bcrypt-hash") is False


class TestAccessToken:
    def test_round_trip_carries_identity_and_roles(self) -> None:
        user = User(name="Vera Vendor", email="vera@neoptica.test", id=7, roles=[ROLE_VENDOR])
        payload = decode_access_token(create_access_token(user))
        assert payload is not None
        assert payload["user_id"] == 7
        assert payload["email"] == "vera@neoptica.test"
        assert payload["name"] == "Vera Vendor"
        assert payload["roles"] == [ROLE_VENDOR]

    def test_user_without_email_gets_synthetic_subject(self) -> None:
        user = User(name="insta", email=None, id=12, roles=[ROLE_CLIENT])
        payload = decode_access_token(create_access_token(user))
        assert payload is not None
        assert payload["sub"] == "user:12"

    def test_tampered_token_is_rejected(self) -> None:
        token = create_access_token(User(name="x", email="x@neoptica.test", id=1))
        assert decode_access_token(token[:-2] + "xx") is None

    def test_token_signed_with_other_key_is_rejected(self) -> None:
        forged = jwt.encode({"user_id": 1, "exp": 9999999999}, "k" * 40, algorithm="HS256")
        assert decode_access_token(forged) is None

    def test_non_integer_user_id_is_rejected(self) -> None:
        token = jwt.encode(
            {"user_id": "1", "exp": 9999999999}, get_settings().secret_key, algorithm="HS256"
        )
        assert decode_access_token(token) is None

    def test_expired_token_is_rejected(self) -> None:
        token = jwt.encode({"user_id": 1, "exp": 1}, get_settings().secret_key, algorithm="HS256")
        assert decode_access_token(token) is None


class TestAuthenticateUser:
    def _add(self, store: UserStore, email: str, password: str | None, active: bool = True) -> int:
        user = User(
            name="Login Test",
            email=email,
            hashed_password=hash_password(password) if password else None,
            is_active=active,
        )
        return store.create_user(user, roles=[ROLE_CLIENT])

    def test_valid_credentials_return_user(self, user_store: UserStore) -> None:
        self._add(user_store, "ok@neoptica.test", "Secret123")
        user = authenticate_user(user_store, "ok@neoptica.test", "Secret123")
        assert user.email == "ok@neoptica.test"
        assert user.roles == [ROLE_CLIENT]

    def test_unknown_email_and_wrong_password_share_a_code(self, user_store: UserStore) -> None:
        self._add(user_store, "pw@neoptica.test", "Secret123")
        with pytest.raises(LoginError) as unknown:
            authenticate_user(user_store, "nobody@neoptica.test", "Secret123")
        with pytest.raises(LoginError) as wrong:
            authenticate_user(user_store, "pw@neoptica.test", "Wrong1234")
        assert unknown.value.code == wrong.value.code == "bad_credentials"
        assert unknown.value.message == wrong.value.message
        assert unknown.value.status_code == 401

    def test_oauth_only_account_cannot_use_password(self, user_store: UserStore) -> None:
        self._add(user_store, "social@neoptica.test", None)
        with pytest.raises(LoginError) as exc:
            authenticate_user(user_store, "social@neoptica.test", "Secret123")
        assert exc.value.code == "no_local_password"
        assert exc.value.status_code == 401

    def test_inactive_account_is_forbidden(self, user_store: UserStore) -> None:
        self._add(user_store, "gone@neoptica.test", "Secret123", active=False)
        with pytest.raises(LoginError) as exc:
            authenticate_user(user_store, "gone@neoptica.test", "Secret123")
        assert exc.value.code == "inactive"
        assert exc.value.status_code == 403


class TestResetTokens:
    def test_tokens_are_random_and_hashed_deterministically(self) -> None:
        a, b = generate_reset_token(), generate_reset_token()
        assert a != b
        assert len(a) == 64
        assert hash_token(a) == hash_token(a)
        assert hash_token(a) != hash_token(b)
        assert hash_token(a) != a

    def test_expiry_is_in_the_future(self) -> None:
        assert datetime.fromisoformat(reset_token_expiry()) > datetime.now(timezone.utc)
