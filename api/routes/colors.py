"""
api/routes/colors.py -- Color catalogue endpoints.

Routes:
  GET    /api/colors             -- active colors (authenticated)
  GET    /api/colors/paginated   -- page/search/is_active filter (authenticated)
  GET    /api/colors/{id}        -- one color; 404 if missing or voided
  POST   /api/colors             -- create (admin)
  PUT    /api/colors/{id}        -- partial update of name / hex_code (admin)
  DELETE /api/colors/{id}        -- soft delete (admin); 409 while products use it

hex_code is normalized to a leading '#' and must be #RGB or #RRGGBB.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.auditing import audit_success, refuse
from api.limiter import limiter
from api.models import ColorCreate, ColorResponse, ColorUpdate, Envelope, MessageResponse, Page, ok, page_of
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from catalog.models import Color
from catalog.store import CatalogStore

_MODULE = "colors"
_ENTITY = "Color"

router = APIRouter(dependencies=[Depends(get_current_user)])


def _catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


@limiter.limit("60/minute")
@router.get("/colors", response_model=Envelope[list[ColorResponse]])
def list_colors(request: Request) -> Envelope:
    return ok([ColorResponse.model_validate(c) for c in _catalog(request).list_colors()])


@limiter.limit("60/minute")
@router.get("/colors/paginated", response_model=Envelope[Page[ColorResponse]])
def list_colors_paginated(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = Query(None),
) -> Envelope:
    colors, total = _catalog(request).list_colors_page(page, page_size, search, is_active)
    return ok(page_of([ColorResponse.model_validate(c) for c in colors], total, page, page_size))


@router.get("/colors/{color_id}", response_model=Envelope[ColorResponse])
def get_color(request: Request, color_id: int) -> Envelope:
    color = _catalog(request).get_color(color_id)
    if color is None:
        raise HTTPException(status_code=404, detail="Color not found.")
    return ok(ColorResponse.model_validate(color))


@router.post("/colors", response_model=Envelope[ColorResponse], status_code=201)
def create_color(request: Request, body: ColorCreate, admin: User = Depends(require_admin)) -> Envelope:
    catalog = _catalog(request)
    if catalog.color_name_taken(body.name):
        raise refuse(
            request, admin, 409, "A color with that name already exists.",
            action="create_color", module=_MODULE, entity_type=_ENTITY,
        )
    color_id = catalog.create_color(Color(name=body.name, hex_code=body.hex_code), created_by=admin.id)
    audit_success(
        request, admin,
        action="create_color", module=_MODULE, entity_type=_ENTITY, entity_id=color_id,
        message=f"Color created: {body.name}", details={"hex_code": body.hex_code},
    )
    return ok(ColorResponse.model_validate(catalog.get_color(color_id)))


@router.put("/colors/{color_id}", response_model=Envelope[ColorResponse])
def update_color(request: Request, color_id: int, body: ColorUpdate, admin: User = Depends(require_admin)) -> Envelope:
    catalog = _catalog(request)

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(
            request, admin, status, message,
            action="update_color", module=_MODULE, entity_type=_ENTITY, entity_id=color_id,
        )

    before = catalog.get_color(color_id)
    if before is None:
        raise _refuse(404, "Color not found.")
    fields = body.model_dump(exclude_unset=True)
    if "name" in fields and fields["name"] is None:
        raise _refuse(400, "Name cannot be empty.")
    if not fields:
        raise _refuse(400, "No fields to update.")
    if "name" in fields and catalog.color_name_taken(fields["name"], exclude_id=color_id):
        raise _refuse(409, "A color with that name already exists.")

    catalog.update_color(color_id, updated_by=admin.id, **fields)
    audit_success(
        request, admin,
        action="update_color", module=_MODULE, entity_type=_ENTITY, entity_id=color_id,
        message="Color updated",
        details={k: {"before": getattr(before, k), "after": v} for k, v in fields.items()},
    )
    return ok(ColorResponse.model_validate(catalog.get_color(color_id)))


@router.delete("/colors/{color_id}", response_model=Envelope[MessageResponse])
def delete_color(request: Request, color_id: int, admin: User = Depends(require_admin)) -> Envelope:
    catalog = _catalog(request)

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(
            request, admin, status, message,
            action="delete_color", module=_MODULE, entity_type=_ENTITY, entity_id=color_id,
        )

    color = catalog.get_color(color_id)
    if color is None:
        raise _refuse(404, "Color not found.")
    in_use = catalog.count_products_for_color(color_id)
    if in_use:
        raise _refuse(409, f"Color is used by {in_use} product(s) and cannot be deleted.")
    catalog.void_color(color_id, voided_by=admin.id)
    audit_success(
        request, admin,
        action="delete_color", module=_MODULE, entity_type=_ENTITY, entity_id=color_id,
        message=f"Color deleted: {color.name}",
    )
    return ok(MessageResponse(message="Color deleted."))
