"""
tests/test_cli.py -- Unit tests for the management commands in main.py.

ensure_system_user() and create_admin() run against a real in-memory
UserStore. Command functions that open their own stores are run with the
store classes patched.
"""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from auth.models import ROLE_ADMIN
from auth.store import UserStore
from auth.tokens import verify_password
from core.config import get_settings
from main import build_parser, create_admin, ensure_system_user, main


class TestSystemUser:
    def test_created_inactive_without_roles(self, user_store: UserStore) -> None:
        user_id = ensure_system_user(user_store)
        user = user_store.get_by_id(user_id)
        assert user.email == get_settings().system_user_email
        assert user.is_active is False
        assert user.roles == []
        assert user.hashed_password is None

    def test_idempotent(self, user_store: UserStore) -> None:
        assert ensure_system_user(user_store) == ensure_system_user(user_store)


class TestCreateAdmin:
    def test_creates_active_admin(self, user_store: UserStore) -> None:
        user_id = create_admin(user_store, " Boss@Neoptica.test ", "Boss Admin", "Secret123")
        user = user_store.get_by_id(user_id)
        assert user.email == "boss@neoptica.test"
        assert user.roles == [ROLE_ADMIN]
        assert verify_password("Secret123", user.hashed_password)

    def test_duplicate_email(self, user_store: UserStore) -> None:
        create_admin(user_store, "boss@neoptica.test", "Boss Admin", "Secret123")
        with pytest.raises(ValueError):
            create_admin(user_store, "boss@neoptica.test", "Other", "Secret123")

    def test_invalid_email(self, user_store: UserStore) -> None:
        with pytest.raises(ValueError):
            create_admin(user_store, "not-an-email", "Boss Admin", "Secret123")


class TestCommands:
    def test_parser_requires_a_command(self) -> None:
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_purge_audit_rejects_zero_days(self) -> None:
        with patch("main.AuditStore") as store_cls:
            assert main(["purge-audit", "--days", "0"]) == 1
        store_cls.assert_not_called()

    def test_purge_audit_uses_cutoff(self) -> None:
        audit = MagicMock()
        audit.purge_older_than.return_value = 3
        with patch("main.AuditStore", return_value=audit):
            assert main(["purge-audit", "--days", "30"]) == 0
        cutoff = audit.purge_older_than.call_args.args[0]
        assert cutoff[:4].isdigit()
        audit.close.assert_called_once()

    @pytest.mark.parametrize("password", ["weak", "Aa1" + "x" * 80])
    def test_create_admin_rejects_configured_password(self, password: str) -> None:
        settings = get_settings().model_copy(update={"admin_password": password})
        with patch("main.get_settings", return_value=settings), \
                patch("main.UserStore", return_value=MagicMock()), \
                patch("main.AuditStore", return_value=MagicMock()), \
                patch("main.getpass.getpass") as prompt:
            with pytest.raises(SystemExit):
                main(["create-admin", "--email", "a@neoptica.test", "--name", "Ana Admin"])
        prompt.assert_not_called()

    def test_configured_password_is_used_without_prompt(self, user_store: UserStore) -> None:
        settings = get_settings().model_copy(update={"admin_password": "Config123"})
        user_store.close = lambda: None
        with patch("main.get_settings", return_value=settings), \
                patch("main.UserStore", return_value=user_store), \
                patch("main.getpass.getpass") as prompt:
            assert main(["seed", "--admin-email", "cfg@neoptica.test", "--admin-name", "Cfg Admin"]) == 0
        prompt.assert_not_called()
        admin = user_store.get_by_email("cfg@neoptica.test")
        assert verify_password("Config123", admin.hashed_password)
