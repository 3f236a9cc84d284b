"""
api/routes/branches.py -- Store branch endpoints.

Routes:
  GET    /api/branches             -- active branches (authenticated)
  GET    /api/branches/paginated   -- page/search/is_active filter (authenticated)
  GET    /api/branches/{id}        -- one branch; 404 if missing or voided
  POST   /api/branches             -- create (admin)
  PUT    /api/branches/{id}        -- partial update (admin); empty body is a 400
  DELETE /api/branches/{id}        -- soft delete (admin)

Branch names are unique among non-voided branches; e-mails are unique across
all branches.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.auditing import audit_success, refuse
from api.models import BranchCreate, BranchResponse, BranchUpdate, Envelope, MessageResponse, Page, ok, page_of
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from catalog.models import Branch
from catalog.store import CatalogStore

_MODULE = "branches"
_ENTITY = "Branch"

router = APIRouter(dependencies=[Depends(get_current_user)])


def _catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


@router.get("/branches", response_model=Envelope[list[BranchResponse]])
def list_branches(request: Request) -> Envelope:
    return ok([BranchResponse.model_validate(b) for b in _catalog(request).list_branches()])


@router.get("/branches/paginated", response_model=Envelope[Page[BranchResponse]])
def list_branches_paginated(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = Query(None),
) -> Envelope:
    branches, total = _catalog(request).list_branches_page(page, page_size, search, is_active)
    return ok(page_of([BranchResponse.model_validate(b) for b in branches], total, page, page_size))


@router.get("/branches/{branch_id}", response_model=Envelope[BranchResponse])
def get_branch(request: Request, branch_id: int) -> Envelope:
    branch = _catalog(request).get_branch(branch_id)
    if branch is None:
        raise HTTPException(status_code=404, detail="Branch not found.")
    return ok(BranchResponse.model_validate(branch))


@router.post("/branches", response_model=Envelope[BranchResponse], status_code=201)
def create_branch(request: Request, body: BranchCreate, admin: User = Depends(require_admin)) -> Envelope:
    catalog = _catalog(request)

    def _refuse(message: str) -> HTTPException:
        return refuse(request, admin, 409, message, action="create_branch", module=_MODULE, entity_type=_ENTITY)

    if catalog.branch_name_taken(body.name):
        raise _refuse("A branch with that name already exists.")
    if body.email and catalog.branch_email_taken(body.email):
        raise _refuse("A branch with that e-mail already exists.")

    branch = Branch(**body.model_dump(exclude={"is_active"}))
    branch_id = catalog.create_branch(branch, created_by=admin.id)
    audit_success(
        request, admin,
        action="create_branch", module=_MODULE, entity_type=_ENTITY, entity_id=branch_id,
        message=f"Branch created: {body.name}",
    )
    return ok(BranchResponse.model_validate(catalog.get_branch(branch_id)))


@router.put("/branches/{branch_id}", response_model=Envelope[BranchResponse])
def update_branch(
    request: Request, branch_id: int, body: BranchUpdate, admin: User = Depends(require_admin)
) -> Envelope:
    catalog = _catalog(request)

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(
            request, admin, status, message,
            action="update_branch", module=_MODULE, entity_type=_ENTITY, entity_id=branch_id,
        )

    fields = body.model_dump(exclude_unset=True, exclude={"is_active"})
    if not fields:
        raise _refuse(400, "At least one field is required to update a branch.")
    before = catalog.get_branch(branch_id)
    if before is None:
        raise _refuse(404, "Branch not found.")
    if "name" in fields:
        if fields["name"] is None:
            raise _refuse(400, "Name cannot be empty.")
        if catalog.branch_name_taken(fields["name"], exclude_id=branch_id):
            raise _refuse(409, "A branch with that name already exists.")
    if fields.get("email") and catalog.branch_email_taken(fields["email"], exclude_id=branch_id):
        raise _refuse(409, "A branch with that e-mail already exists.")

    catalog.update_branch(branch_id, updated_by=admin.id, **fields)
    audit_success(
        request, admin,
        action="update_branch", module=_MODULE, entity_type=_ENTITY, entity_id=branch_id,
        message="Branch updated",
        details={k: {"before": getattr(before, k), "after": v} for k, v in fields.items()},
    )
    return ok(BranchResponse.model_validate(catalog.get_branch(branch_id)))


@router.delete("/branches/{branch_id}", response_model=Envelope[MessageResponse])
def delete_branch(request: Request, branch_id: int, admin: User = Depends(require_admin)) -> Envelope:
    catalog = _catalog(request)
    branch = catalog.get_branch(branch_id)
    if branch is None:
        raise refuse(
            request, admin, 404, "Branch not found.",
            action="delete_branch", module=_MODULE, entity_type=_ENTITY, entity_id=branch_id,
        )
    catalog.void_branch(branch_id, voided_by=admin.id)
    audit_success(
        request, admin,
        action="delete_branch", module=_MODULE, entity_type=_ENTITY, entity_id=branch_id,
        message=f"Branch deleted: {branch.name}",
    )
    return ok(MessageResponse(message="Branch deleted."))
