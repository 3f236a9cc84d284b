"""
tests/test_audit_store.py -- Unit tests for audit/store.py and audit/trail.py.

Covers filtering, paging and ordering of AuditStore.query(), purging, the
JSON description written by the trail helpers, and the guarantee that a
failed audit write never raises.
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError

from audit.models import RESULT_FAILURE, RESULT_SUCCESS, AuditEntry, AuditFilter
from audit.store import AuditStore
from audit.trail import client_ip, log_error, log_success


def _entry(action: str, created_at: str, **kwargs) -> AuditEntry:
    kwargs.setdefault("module", "products")
    kwargs.setdefault("entity_type", "Product")
    return AuditEntry(action=action, created_at=created_at, **kwargs)


class TestQuery:
    def _seed(self, store: AuditStore) -> None:
        store.record(_entry("create_product", "2025-01-10T09:00:00+00:00", actor_id=1, ip="10.0.0.1"))
        store.record(_entry("update_product", "2025-01-11T09:00:00+00:00", actor_id=1, ip="10.0.0.2"))
        store.record(
            _entry("login", "2025-01-12T09:00:00+00:00", module="auth", entity_type="User", result=RESULT_FAILURE)
        )
        store.record(_entry("delete_product", "2025-01-13T09:00:00+00:00", actor_id=2, entity_id="7"))

    def test_newest_first_by_default(self, audit_store: AuditStore) -> None:
        self._seed(audit_store)
        entries, total = audit_store.query()
        assert total == 4
        assert [e.action for e in entries] == ["delete_product", "login", "update_product", "create_product"]

    def test_oldest_first(self, audit_store: AuditStore) -> None:
        self._seed(audit_store)
        entries, _ = audit_store.query(newest_first=False)
        assert entries[0].action == "create_product"

    def test_exact_filters(self, audit_store: AuditStore) -> None:
        self._seed(audit_store)
        assert audit_store.query(AuditFilter(actor_id=1))[1] == 2
        assert audit_store.query(AuditFilter(module="auth"))[1] == 1
        assert audit_store.query(AuditFilter(result=RESULT_FAILURE))[1] == 1
        assert audit_store.query(AuditFilter(entity_type="Product", entity_id="7"))[1] == 1

    def test_ip_is_a_substring_match(self, audit_store: AuditStore) -> None:
        self._seed(audit_store)
        assert audit_store.query(AuditFilter(ip="10.0.0"))[1] == 2

    def test_date_range_is_half_open(self, audit_store: AuditStore) -> None:
        self._seed(audit_store)
        entries, total = audit_store.query(AuditFilter(date_from="2025-01-11", date_to="2025-01-13"))
        assert total == 2, f"expected 11th and 12th only, got {[e.created_at for e in entries]}"

    def test_paging(self, audit_store: AuditStore) -> None:
        self._seed(audit_store)
        entries, total = audit_store.query(page=2, per_page=3)
        assert total == 4
        assert [e.action for e in entries] == ["create_product"]

    def test_recent(self, audit_store: AuditStore) -> None:
        self._seed(audit_store)
        assert [e.action for e in audit_store.recent(2)] == ["delete_product", "login"]

    def test_purge_older_than(self, audit_store: AuditStore) -> None:
        self._seed(audit_store)
        assert audit_store.purge_older_than("2025-01-12") == 2
        assert audit_store.query()[1] == 2


class TestTrail:
    def test_log_success_writes_json_description(self, audit_store: AuditStore) -> None:
        entry_id = log_success(
            audit_store,
            action="create_brand",
            module="brands",
            entity_type="Brand",
            entity_id=3,
            message="Brand created: Oakley",
            actor_id=1,
            ip="127.0.0.1",
            details={"name": "Oakley"},
        )
        assert entry_id is not None
        entry = audit_store.recent(1)[0]
        assert entry.result == RESULT_SUCCESS
        assert entry.entity_id == "3", "entity IDs are stored as text"
        description = json.loads(entry.description)
        assert description["message"] == "Brand created: Oakley"
        assert description["details"] == {"name": "Oakley"}
        assert "timestamp" in description

    def test_log_error_sets_error_message(self, audit_store: AuditStore) -> None:
        log_error(audit_store, action="delete_color", module="colors", entity_type="Color", error="in use")
        entry = audit_store.recent(1)[0]
        assert entry.result == RESULT_FAILURE
        assert entry.error_message == "in use"
        assert entry.actor_id is None

    def test_record_failure_returns_none(self) -> None:
        broken = AuditStore.__new__(AuditStore)
        broken.engine = MagicMock()
        broken.engine.connect.side_effect = OperationalError("INSERT", {}, Exception("database is locked"))
        assert broken.record(_entry("login", "")) is None


class TestClientIp:
    def test_prefers_forwarded_for(self) -> None:
        request = MagicMock()
        request.headers = {"X-Forwarded-For": "203.0.113.9, 10.0.0.1"}
        assert client_ip(request) == "203.0.113.9"

    def test_falls_back_to_peer(self) -> None:
        request = MagicMock()
        request.headers = {}
        request.client.host = "192.168.1.20"
        assert client_ip(request) == "192.168.1.20"
