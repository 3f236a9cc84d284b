"""
audit/trail.py -- Helpers that turn a route outcome into an AuditEntry.

Every mutating route calls log_success() after the store call succeeds, or
log_error() when it refuses or fails the request. Both build the JSON
description ({"message", "timestamp", "details"}) and hand the entry to
AuditStore.record(), which never raises.

client_ip() reads X-Forwarded-For first (the intranet runs behind a reverse
proxy), falling back to the socket peer address.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from audit.models import RESULT_FAILURE, RESULT_SUCCESS, AuditEntry
from audit.store import AuditStore
from core.db import now_iso


def client_ip(request) -> Optional[str]:
    forwarded = request.headers.get("X-Forwarded-For", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _describe(message: str, details: Optional[dict[str, Any]]) -> str:
    payload: dict[str, Any] = {"message": message, "timestamp": now_iso()}
    if details:
        payload["details"] = details
    return json.dumps(payload, default=str, ensure_ascii=False)


def log_success(
    store: AuditStore,
    *,
    action: str,
    module: str,
    entity_type: str,
    message: str,
    entity_id: Any = None,
    actor_id: Optional[int] = None,
    ip: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> Optional[int]:
    return store.record(
        AuditEntry(
            action=action,
            module=module,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            actor_id=actor_id,
            result=RESULT_SUCCESS,
            description=_describe(message, details),
            ip=ip,
        )
    )


def log_error(
    store: AuditStore,
    *,
    action: str,
    module: str,
    entity_type: str,
    error: str,
    entity_id: Any = None,
    actor_id: Optional[int] = None,
    ip: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> Optional[int]:
    return store.record(
        AuditEntry(
            action=action,
            module=module,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            actor_id=actor_id,
            result=RESULT_FAILURE,
            description=_describe(error, details),
            error_message=error,
            ip=ip,
        )
    )
