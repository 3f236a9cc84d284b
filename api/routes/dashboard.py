"""
api/routes/dashboard.py -- Role dashboards.

The frontend has one dashboard per role. GET /api/dashboard tells it which
ones the caller may open (users can hold several roles); GET
/api/dashboard/{role} returns the menu and the widget data for one of them.
"""

from __future__ import annotations

from typing import Any, Callable

from fastapi import APIRouter, Depends, HTTPException, Request

from api.models import (
    AuditEntryResponse,
    AuthUser,
    BranchResponse,
    DashboardInfo,
    DashboardSummary,
    Envelope,
    MenuItem,
    ProductResponse,
    UserResponse,
    ok,
)
from auth.dependencies import get_current_user
from auth.models import ALL_ROLES, ROLE_ADMIN, ROLE_CLIENT, ROLE_OPTOMETRIST, ROLE_VENDOR, User

router = APIRouter()

_LABELS = {
    ROLE_ADMIN: "Administration",
    ROLE_VENDOR: "Sales",
    ROLE_OPTOMETRIST: "Optometry",
    ROLE_CLIENT: "My account",
}

_MENUS: dict[str, list[MenuItem]] = {
    ROLE_ADMIN: [
        MenuItem(id="users", label="Users", path="/admin/users"),
        MenuItem(id="products", label="Products", path="/admin/products"),
        MenuItem(id="brands", label="Brands", path="/admin/brands"),
        MenuItem(id="colors", label="Colors", path="/admin/colors"),
        MenuItem(id="branches", label="Branches", path="/admin/branches"),
        MenuItem(id="roles", label="Roles", path="/admin/roles"),
        MenuItem(id="audit", label="Audit log", path="/admin/audit"),
    ],
    ROLE_VENDOR: [
        MenuItem(id="products", label="Products", path="/vendor/products"),
        MenuItem(id="brands", label="Brands", path="/vendor/brands"),
        MenuItem(id="colors", label="Colors", path="/vendor/colors"),
        MenuItem(id="branches", label="Branches", path="/vendor/branches"),
    ],
    ROLE_OPTOMETRIST: [
        MenuItem(id="products", label="Products", path="/optometrist/products"),
        MenuItem(id="branches", label="Branches", path="/optometrist/branches"),
    ],
    ROLE_CLIENT: [
        MenuItem(id="profile", label="My profile", path="/client/profile"),
        MenuItem(id="products", label="Catalog", path="/client/products"),
        MenuItem(id="branches", label="Our stores", path="/client/branches"),
    ],
}


def _admin_widgets(request: Request, user: User) -> dict[str, Any]:
    users = request.app.state.user_store
    return {
        "users": {"total": users.count_users(), "active": users.count_users(active_only=True)},
        "catalog": request.app.state.catalog.active_counts(),
        "recent_audit": [
            AuditEntryResponse.model_validate(e).model_dump() for e in request.app.state.audit.recent(10)
        ],
    }


def _vendor_widgets(request: Request, user: User) -> dict[str, Any]:
    catalog = request.app.state.catalog
    return {
        "catalog": catalog.active_counts(),
        "latest_products": [ProductResponse.model_validate(p).model_dump() for p in catalog.latest_products(5)],
    }


def _optometrist_widgets(request: Request, user: User) -> dict[str, Any]:
    catalog = request.app.state.catalog
    return {
        "branches": [BranchResponse.model_validate(b).model_dump() for b in catalog.list_branches()],
        "product_count": catalog.active_counts()["products"],
    }


def _client_widgets(request: Request, user: User) -> dict[str, Any]:
    return {
        "profile": UserResponse.model_validate(user).model_dump(),
        "branches": [BranchResponse.model_validate(b).model_dump() for b in request.app.state.catalog.list_branches()],
    }


_WIDGETS: dict[str, Callable[[Request, User], dict[str, Any]]] = {
    ROLE_ADMIN: _admin_widgets,
    ROLE_VENDOR: _vendor_widgets,
    ROLE_OPTOMETRIST: _optometrist_widgets,
    ROLE_CLIENT: _client_widgets,
}


@router.get("/dashboard", response_model=Envelope[list[DashboardInfo]])
def list_dashboards(user: User = Depends(get_current_user)) -> Envelope:
    dashboards = [
        DashboardInfo(role=role, label=_LABELS[role], path=f"/{role}", menu=_MENUS[role])
        for role in ALL_ROLES
        if role in user.roles
    ]
    return ok(dashboards)


@router.get("/dashboard/{role}", response_model=Envelope[DashboardSummary])
def get_dashboard(request: Request, role: str, user: User = Depends(get_current_user)) -> Envelope:
    if role not in _WIDGETS:
        raise HTTPException(status_code=404, detail=f"Unknown dashboard '{role}'.")
    if not user.has_any_role(role):
        raise HTTPException(status_code=403, detail="You do not have permission to perform this action.")
    return ok(
        DashboardSummary(
            role=role,
            user=AuthUser.model_validate(user),
            menu=_MENUS[role],
            widgets=_WIDGETS[role](request, user),
        )
    )
