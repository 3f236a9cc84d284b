"""
tests/test_audit_routes.py -- Integration tests for GET /api/audit.

Every test seeds its own module name so entries written by other requests in
the same module database do not leak into the counts.
"""

from __future__ import annotations

from audit.models import RESULT_FAILURE, AuditEntry
from auth.models import ROLE_OPTOMETRIST
from conftest import ApiEnv, unique


def _seed(api: ApiEnv) -> str:
    module = unique("mod")
    api.audit.record(AuditEntry(action="create_brand", module=module, entity_type="Brand", actor_id=1,
                                created_at="2025-03-01T10:00:00+00:00"))
    api.audit.record(AuditEntry(action="update_brand", module=module, entity_type="Brand", actor_id=1,
                                created_at="2025-03-02T23:59:59+00:00"))
    api.audit.record(AuditEntry(action="delete_brand", module=module, entity_type="Brand", actor_id=2,
                                result=RESULT_FAILURE, error_message="in use",
                                created_at="2025-03-03T08:00:00+00:00"))
    return module


def test_admin_queries_newest_first(api: ApiEnv) -> None:
    module = _seed(api)
    resp = api.client.get("/api/audit", params={"module": module}, headers=api.admin_headers)
    assert resp.status_code == 200, resp.text
    page = resp.json()["data"]
    assert page["total"] == 3
    assert [e["action"] for e in page["items"]] == ["delete_brand", "update_brand", "create_brand"]


def test_sort_ascending_and_paging(api: ApiEnv) -> None:
    module = _seed(api)
    resp = api.client.get(
        "/api/audit", params={"module": module, "sort": "asc", "per_page": 2, "page": 1}, headers=api.admin_headers
    )
    page = resp.json()["data"]
    assert [e["action"] for e in page["items"]] == ["create_brand", "update_brand"]
    assert page["total_pages"] == 2


def test_filters_combine(api: ApiEnv) -> None:
    module = _seed(api)
    by_actor = api.client.get("/api/audit", params={"module": module, "actor_id": 1}, headers=api.admin_headers)
    assert by_actor.json()["data"]["total"] == 2
    failures = api.client.get("/api/audit", params={"module": module, "result": "failure"}, headers=api.admin_headers)
    items = failures.json()["data"]["items"]
    assert [e["error_message"] for e in items] == ["in use"]


def test_date_to_includes_the_whole_day(api: ApiEnv) -> None:
    module = _seed(api)
    resp = api.client.get(
        "/api/audit",
        params={"module": module, "date_from": "2025-03-01", "date_to": "2025-03-02"},
        headers=api.admin_headers,
    )
    assert resp.json()["data"]["total"] == 2


def test_date_from_after_date_to_is_400(api: ApiEnv) -> None:
    resp = api.client.get(
        "/api/audit", params={"date_from": "2025-03-05", "date_to": "2025-03-01"}, headers=api.admin_headers
    )
    assert resp.status_code == 400
    assert resp.json()["error"] == "date_from must not be after date_to."


def test_malformed_date_is_400(api: ApiEnv) -> None:
    resp = api.client.get("/api/audit", params={"date_from": "yesterday"}, headers=api.admin_headers)
    assert resp.status_code == 400
    assert any(e["field"] == "date_from" for e in resp.json()["data"])


def test_unknown_result_value_is_400(api: ApiEnv) -> None:
    resp = api.client.get("/api/audit", params={"result": "maybe"}, headers=api.admin_headers)
    assert resp.status_code == 400


def test_non_admin_is_403(api: ApiEnv) -> None:
    optometrist = api.add_user([ROLE_OPTOMETRIST])
    resp = api.client.get("/api/audit", headers=api.headers_for(optometrist))
    assert resp.status_code == 403
