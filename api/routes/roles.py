"""
api/routes/roles.py -- Read-only role catalogue.

Roles are seeded at startup and fixed in code (admin, vendor, optometrist,
client). GET is admin-only; every write method answers 405 so the frontend
gets an explicit "not supported" rather than a misleading 404.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import Envelope, RoleResponse, ok
from auth.dependencies import require_admin
from auth.models import User

router = APIRouter()

_WRITE_METHODS = ["POST", "PUT", "PATCH", "DELETE"]


@router.get("/roles", response_model=Envelope[list[RoleResponse]])
def list_roles(request: Request, _admin: User = Depends(require_admin)) -> Envelope:
    return ok([RoleResponse.model_validate(r) for r in request.app.state.user_store.list_roles()])


@router.api_route("/roles", methods=_WRITE_METHODS, include_in_schema=False)
@router.api_route("/roles/{role_id}", methods=_WRITE_METHODS, include_in_schema=False)
def roles_read_only(request: Request) -> None:
    raise HTTPException(
        status_code=405,
        detail=f"Method {request.method} is not allowed on roles.",
        headers={"Allow": "GET"},
    )
