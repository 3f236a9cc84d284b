"""
api/auditing.py -- Route-side glue for the audit trail.

Route handlers know the request and the acting user; audit/trail.py knows how
to build an AuditEntry. These helpers join the two so a handler writes one
line per outcome:

    audit_success(request, user, action="create_brand", module="brands",
                  entity_type="Brand", entity_id=brand_id, message="Brand created")

    raise refuse(request, user, 409, "A brand with that name already exists.",
                 action="create_brand", module="brands", entity_type="Brand")

refuse() records the failure and returns (not raises) the HTTPException so
the raise stays visible in the handler.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import HTTPException, Request

from audit.trail import client_ip, log_error, log_success
from auth.models import User


def audit_success(
    request: Request,
    actor: Optional[User],
    *,
    action: str,
    module: str,
    entity_type: str,
    message: str,
    entity_id: Any = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    log_success(
        request.app.state.audit,
        action=action,
        module=module,
        entity_type=entity_type,
        entity_id=entity_id,
        message=message,
        actor_id=actor.id if actor else None,
        ip=client_ip(request),
        details=details,
    )


def audit_failure(
    request: Request,
    actor: Optional[User],
    *,
    action: str,
    module: str,
    entity_type: str,
    error: str,
    entity_id: Any = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    log_error(
        request.app.state.audit,
        action=action,
        module=module,
        entity_type=entity_type,
        entity_id=entity_id,
        error=error,
        actor_id=actor.id if actor else None,
        ip=client_ip(request),
        details=details,
    )


def refuse(
    request: Request,
    actor: Optional[User],
    status_code: int,
    message: str,
    *,
    action: str,
    module: str,
    entity_type: str,
    entity_id: Any = None,
) -> HTTPException:
    """Audit a refused mutation and return the HTTPException to raise."""
    audit_failure(
        request,
        actor,
        action=action,
        module=module,
        entity_type=entity_type,
        entity_id=entity_id,
        error=message,
    )
    return HTTPException(status_code=status_code, detail=message)
