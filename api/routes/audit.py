"""
api/routes/audit.py -- Read access to the audit trail (admin only).

GET /api/audit accepts exact-match filters (actor_id, action, entity_type,
entity_id, module, result), a substring match on ip, and an inclusive
calendar-day range date_from..date_to. Malformed dates fail query validation
and come back as 400 like any other bad input.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import AuditEntryResponse, Envelope, Page, ok, page_of
from audit.models import AuditFilter
from auth.dependencies import require_admin
from auth.models import User

router = APIRouter()


@router.get("/audit", response_model=Envelope[Page[AuditEntryResponse]])
def list_audit_entries(
    request: Request,
    actor_id: int | None = Query(None, ge=1),
    action: str | None = Query(None, max_length=100),
    entity_type: str | None = Query(None, max_length=50),
    entity_id: str | None = Query(None, max_length=64),
    module: str | None = Query(None, max_length=50),
    result: Literal["success", "failure"] | None = Query(None),
    ip: str | None = Query(None, max_length=64),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    per_page: int = Query(20, ge=1, le=100),
    sort: Literal["asc", "desc"] = Query("desc"),
    _admin: User = Depends(require_admin),
) -> Envelope:
    if date_from and date_to and date_from > date_to:
        raise HTTPException(status_code=400, detail="date_from must not be after date_to.")

    filters = AuditFilter(
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        module=module,
        result=result,
        ip=ip,
        date_from=date_from.isoformat() if date_from else None,
        # Stored timestamps are ISO strings; the next midnight is an exclusive bound.
        date_to=(date_to + timedelta(days=1)).isoformat() if date_to else None,
    )
    entries, total = request.app.state.audit.query(
        filters, page=page, per_page=per_page, newest_first=(sort == "desc")
    )
    return ok(page_of([AuditEntryResponse.model_validate(e) for e in entries], total, page, per_page))
