"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and roles.

Authentication is a JWT in the Authorization: Bearer header. The token is
decoded, the user is re-read from the store (so deactivation and role changes
take effect immediately rather than at token expiry), and the identity is
attached to request.state.user for downstream code such as the audit trail.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_roles(*roles) builds a dependency that additionally raises HTTP 403
when the caller's role set does not intersect the required set.

Layer rule: no imports from api/, audit/, or catalog/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import decode_access_token


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request from its Bearer token.

    Returns the active User on success, None on any failure. Never raises.
    """
    token = _bearer_token(request)
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    user = request.app.state.user_store.get_by_id(payload["user_id"])
    if user is None or not user.is_active:
        return None
    request.state.user = user
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail="Invalid or missing token.",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def require_roles(*roles: str) -> Callable[[Request], User]:
    """Return a dependency that admits only users holding one of `roles`.

    Raises HTTP 401 if unauthenticated, HTTP 403 if the caller's roles and
    `roles` do not intersect. A user with no roles at all is always refused.

    Use as a FastAPI dependency:
        @router.post("/brands")
        def create(user: User = Depends(require_roles("admin"))): ...
    """
    required = frozenset(roles)

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if not user.roles or not required.intersection(user.roles):
            raise HTTPException(
                status_code=403,
                detail="You do not have permission to perform this action.",
            )
        return user

    dependency.__name__ = f"require_roles_{'_'.join(sorted(required))}"
    return dependency


require_admin = require_roles("admin")
