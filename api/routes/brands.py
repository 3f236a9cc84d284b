"""
api/routes/brands.py -- Brand catalogue endpoints.

Routes:
  GET    /api/brands             -- active brands (authenticated)
  GET    /api/brands/paginated   -- page/search/is_active filter (authenticated)
  GET    /api/brands/{id}        -- one brand; 404 if missing or voided
  POST   /api/brands             -- create (admin)
  PUT    /api/brands/{id}        -- rename (admin)
  DELETE /api/brands/{id}        -- soft delete (admin); 409 while products use it

Names are unique case-insensitively among non-voided brands. is_active is
not writable through POST/PUT; DELETE is the only way to deactivate.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.auditing import audit_success, refuse
from api.limiter import limiter
from api.models import BrandCreate, BrandResponse, BrandUpdate, Envelope, MessageResponse, Page, ok, page_of
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from catalog.models import Brand
from catalog.store import CatalogStore

_MODULE = "brands"
_ENTITY = "Brand"

router = APIRouter(dependencies=[Depends(get_current_user)])


def _catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


@limiter.limit("60/minute")
@router.get("/brands", response_model=Envelope[list[BrandResponse]])
def list_brands(request: Request) -> Envelope:
    return ok([BrandResponse.model_validate(b) for b in _catalog(request).list_brands()])


@limiter.limit("60/minute")
@router.get("/brands/paginated", response_model=Envelope[Page[BrandResponse]])
def list_brands_paginated(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = Query(None),
) -> Envelope:
    brands, total = _catalog(request).list_brands_page(page, page_size, search, is_active)
    return ok(page_of([BrandResponse.model_validate(b) for b in brands], total, page, page_size))


@router.get("/brands/{brand_id}", response_model=Envelope[BrandResponse])
def get_brand(request: Request, brand_id: int) -> Envelope:
    brand = _catalog(request).get_brand(brand_id)
    if brand is None:
        raise HTTPException(status_code=404, detail="Brand not found.")
    return ok(BrandResponse.model_validate(brand))


@router.post("/brands", response_model=Envelope[BrandResponse], status_code=201)
def create_brand(request: Request, body: BrandCreate, admin: User = Depends(require_admin)) -> Envelope:
    catalog = _catalog(request)
    if catalog.brand_name_taken(body.name):
        raise refuse(
            request, admin, 409, "A brand with that name already exists.",
            action="create_brand", module=_MODULE, entity_type=_ENTITY,
        )
    brand_id = catalog.create_brand(Brand(name=body.name), created_by=admin.id)
    audit_success(
        request, admin,
        action="create_brand", module=_MODULE, entity_type=_ENTITY, entity_id=brand_id,
        message=f"Brand created: {body.name}",
    )
    return ok(BrandResponse.model_validate(catalog.get_brand(brand_id)))


@router.put("/brands/{brand_id}", response_model=Envelope[BrandResponse])
def update_brand(request: Request, brand_id: int, body: BrandUpdate, admin: User = Depends(require_admin)) -> Envelope:
    catalog = _catalog(request)

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(
            request, admin, status, message,
            action="update_brand", module=_MODULE, entity_type=_ENTITY, entity_id=brand_id,
        )

    before = catalog.get_brand(brand_id)
    if before is None:
        raise _refuse(404, "Brand not found.")
    if catalog.brand_name_taken(body.name, exclude_id=brand_id):
        raise _refuse(409, "A brand with that name already exists.")
    catalog.update_brand(brand_id, updated_by=admin.id, name=body.name)
    audit_success(
        request, admin,
        action="update_brand", module=_MODULE, entity_type=_ENTITY, entity_id=brand_id,
        message="Brand updated", details={"name": {"before": before.name, "after": body.name}},
    )
    return ok(BrandResponse.model_validate(catalog.get_brand(brand_id)))


@router.delete("/brands/{brand_id}", response_model=Envelope[MessageResponse])
def delete_brand(request: Request, brand_id: int, admin: User = Depends(require_admin)) -> Envelope:
    catalog = _catalog(request)

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(
            request, admin, status, message,
            action="delete_brand", module=_MODULE, entity_type=_ENTITY, entity_id=brand_id,
        )

    brand = catalog.get_brand(brand_id)
    if brand is None:
        raise _refuse(404, "Brand not found.")
    in_use = catalog.count_products_for_brand(brand_id)
    if in_use:
        raise _refuse(409, f"Brand is used by {in_use} product(s) and cannot be deleted.")
    catalog.void_brand(brand_id, voided_by=admin.id)
    audit_success(
        request, admin,
        action="delete_brand", module=_MODULE, entity_type=_ENTITY, entity_id=brand_id,
        message=f"Brand deleted: {brand.name}",
    )
    return ok(MessageResponse(message="Brand deleted."))
