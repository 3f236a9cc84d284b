"""
api/routes/products.py -- Product catalogue endpoints.

Routes:
  GET    /api/products             -- active products, optional brand_id / color_id
  GET    /api/products/paginated   -- page/search/is_active/brand/color/category
  GET    /api/products/{id}        -- one product; 404 if missing or voided
  POST   /api/products             -- create (admin, vendor)
  PUT    /api/products/{id}        -- partial update (admin, vendor)
  DELETE /api/products/{id}        -- soft delete (admin)

brand_id and color_id must point at an active brand/color; anything else is
a 400 rather than a 404 because the product itself was found.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.auditing import audit_success, refuse
from api.limiter import limiter
from api.models import Envelope, MessageResponse, Page, ProductCreate, ProductResponse, ProductUpdate, ok, page_of
from auth.dependencies import get_current_user, require_admin, require_roles
from auth.models import ROLE_ADMIN, ROLE_VENDOR, User
from catalog.models import Product
from catalog.store import CatalogStore

logger = logging.getLogger("neoptica.api.products")

_MODULE = "products"
_ENTITY = "Product"

require_catalog_editor = require_roles(ROLE_ADMIN, ROLE_VENDOR)

router = APIRouter(dependencies=[Depends(get_current_user)])


def _catalog(request: Request) -> CatalogStore:
    return request.app.state.catalog


def _bad_reference(catalog: CatalogStore, fields: dict[str, Any]) -> Optional[str]:
    """Return an error message if brand_id/color_id do not resolve, else None."""
    brand_id = fields.get("brand_id")
    if brand_id is not None:
        brand = catalog.get_brand(brand_id)
        if brand is None or not brand.is_active:
            return f"Brand {brand_id} does not exist."
    color_id = fields.get("color_id")
    if color_id is not None:
        color = catalog.get_color(color_id)
        if color is None or not color.is_active:
            return f"Color {color_id} does not exist."
    return None


@limiter.limit("60/minute")
@router.get("/products", response_model=Envelope[list[ProductResponse]])
def list_products(
    request: Request,
    brand_id: int | None = Query(None, ge=1),
    color_id: int | None = Query(None, ge=1),
) -> Envelope:
    products = _catalog(request).list_products(brand_id=brand_id, color_id=color_id)
    return ok([ProductResponse.model_validate(p) for p in products])


@limiter.limit("60/minute")
@router.get("/products/paginated", response_model=Envelope[Page[ProductResponse]])
def list_products_paginated(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = Query(None),
    brand_id: int | None = Query(None, ge=1),
    color_id: int | None = Query(None, ge=1),
    category: str | None = Query(None, max_length=100),
) -> Envelope:
    products, total = _catalog(request).list_products_page(
        page, page_size, search, is_active, brand_id=brand_id, color_id=color_id, category=category
    )
    return ok(page_of([ProductResponse.model_validate(p) for p in products], total, page, page_size))


@router.get("/products/{product_id}", response_model=Envelope[ProductResponse])
def get_product(request: Request, product_id: int) -> Envelope:
    product = _catalog(request).get_product(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found.")
    return ok(ProductResponse.model_validate(product))


@router.post("/products", response_model=Envelope[ProductResponse], status_code=201)
def create_product(
    request: Request, body: ProductCreate, editor: User = Depends(require_catalog_editor)
) -> Envelope:
    catalog = _catalog(request)

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(request, editor, status, message, action="create_product", module=_MODULE, entity_type=_ENTITY)

    if catalog.product_name_taken(body.name):
        raise _refuse(409, "A product with that name already exists.")
    fields = body.model_dump()
    error = _bad_reference(catalog, fields)
    if error:
        raise _refuse(400, error)

    product_id = catalog.create_product(Product(**fields), created_by=editor.id)
    logger.info("Product %d created by user %d", product_id, editor.id)
    audit_success(
        request, editor,
        action="create_product", module=_MODULE, entity_type=_ENTITY, entity_id=product_id,
        message=f"Product created: {body.name}",
        details={"price": body.price, "brand_id": body.brand_id, "color_id": body.color_id},
    )
    return ok(ProductResponse.model_validate(catalog.get_product(product_id)))


@router.put("/products/{product_id}", response_model=Envelope[ProductResponse])
def update_product(
    request: Request, product_id: int, body: ProductUpdate, editor: User = Depends(require_catalog_editor)
) -> Envelope:
    catalog = _catalog(request)

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(
            request, editor, status, message,
            action="update_product", module=_MODULE, entity_type=_ENTITY, entity_id=product_id,
        )

    before = catalog.get_product(product_id)
    if before is None:
        raise _refuse(404, "Product not found.")
    fields = body.model_dump(exclude_unset=True)
    if not fields:
        raise _refuse(400, "No fields to update.")
    for required in ("name", "price", "is_active"):
        if required in fields and fields[required] is None:
            raise _refuse(400, f"{required} cannot be null.")
    if "name" in fields and catalog.product_name_taken(fields["name"], exclude_id=product_id):
        raise _refuse(409, "A product with that name already exists.")
    error = _bad_reference(catalog, fields)
    if error:
        raise _refuse(400, error)

    catalog.update_product(product_id, updated_by=editor.id, **fields)
    audit_success(
        request, editor,
        action="update_product", module=_MODULE, entity_type=_ENTITY, entity_id=product_id,
        message="Product updated",
        details={k: {"before": getattr(before, k), "after": v} for k, v in fields.items()},
    )
    return ok(ProductResponse.model_validate(catalog.get_product(product_id)))


@router.delete("/products/{product_id}", response_model=Envelope[MessageResponse])
def delete_product(request: Request, product_id: int, admin: User = Depends(require_admin)) -> Envelope:
    catalog = _catalog(request)
    product = catalog.get_product(product_id)
    if product is None:
        raise refuse(
            request, admin, 404, "Product not found.",
            action="delete_product", module=_MODULE, entity_type=_ENTITY, entity_id=product_id,
        )
    catalog.void_product(product_id, voided_by=admin.id)
    audit_success(
        request, admin,
        action="delete_product", module=_MODULE, entity_type=_ENTITY, entity_id=product_id,
        message=f"Product deleted: {product.name}",
    )
    return ok(MessageResponse(message="Product deleted."))
