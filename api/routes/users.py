"""
api/routes/users.py -- User management endpoints.

Routes:
  GET    /api/users                     -- active users (staff)
  GET    /api/users/paginated           -- page/search/is_active filter (staff)
  PUT    /api/users/profile             -- edit own profile (any authenticated user)
  GET    /api/users/{id}                -- one user (staff; clients only themselves)
  POST   /api/users                     -- create user with roles (admin)
  PUT    /api/users/{id}                -- edit user (admin, or the user themself)
  DELETE /api/users/{id}                -- soft delete (admin)
  PUT    /api/users/{id}/password       -- change own password (self only)
  PUT    /api/users/{id}/reset-password -- set a new password for a user (admin)

Guards:
  The system user (SYSTEM_USER_EMAIL) cannot be modified or deleted.
  Only an admin may change roles; the new set must be non-empty and known.
  dni can be set once; changing an existing dni is refused.
  An admin cannot delete themself, and the last active admin cannot be
  deleted or stripped of the admin role.

Every mutation writes an audit entry for both outcomes.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.exc import IntegrityError

from api.auditing import audit_success, refuse
from api.models import (
    Envelope,
    MessageResponse,
    Page,
    PasswordChange,
    PasswordSet,
    UserCreate,
    UserResponse,
    UserUpdate,
    ok,
    page_of,
)
from auth.dependencies import get_current_user, require_admin, require_roles
from auth.models import ROLE_ADMIN, ROLE_CLIENT, STAFF_ROLES, User
from auth.store import UserStore
from auth.tokens import hash_password, verify_password
from core.config import get_settings

_MODULE = "users"
_ENTITY = "User"

router = APIRouter()

require_staff = require_roles(*STAFF_ROLES)


def _store(request: Request) -> UserStore:
    return request.app.state.user_store


def _is_system_user(user: User) -> bool:
    return bool(user.email) and user.email.lower() == get_settings().system_user_email.lower()


def _load_target(request: Request, actor: User, user_id: int, action: str, *, allow_inactive: bool = True) -> User:
    """Fetch the user being acted on, refusing missing users and the system user."""
    target = _store(request).get_by_id(user_id)
    if target is None or (not allow_inactive and not target.is_active):
        raise refuse(
            request, actor, 404, "User not found.",
            action=action, module=_MODULE, entity_type=_ENTITY, entity_id=user_id,
        )
    if _is_system_user(target):
        raise refuse(
            request, actor, 403, "The system user cannot be modified.",
            action=action, module=_MODULE, entity_type=_ENTITY, entity_id=user_id,
        )
    return target


def _apply_update(request: Request, actor: User, target: User, body: UserUpdate, action: str) -> User:
    """Validate and apply a partial update. Shared by PUT /{id} and PUT /profile."""
    store = _store(request)
    fields = body.model_dump(exclude_unset=True)
    roles = fields.pop("roles", None)

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(
            request, actor, status, message,
            action=action, module=_MODULE, entity_type=_ENTITY, entity_id=target.id,
        )

    if "name" in fields and fields["name"] is None:
        raise _refuse(400, "Name cannot be empty.")
    if "email" in fields:
        if fields["email"] is None:
            raise _refuse(400, "E-mail cannot be empty.")
        other = store.get_by_email(fields["email"])
        if other is not None and other.id != target.id:
            raise _refuse(409, "That e-mail is already in use.")
        if fields["email"] == (target.email or "").lower():
            fields.pop("email")
    if "dni" in fields:
        if target.dni and fields["dni"] != target.dni:
            raise _refuse(400, "DNI is already set and cannot be changed.")
        if fields["dni"] and not target.dni:
            other = store.get_by_dni(fields["dni"])
            if other is not None and other.id != target.id:
                raise _refuse(409, "That DNI is already registered.")
        if fields["dni"] == target.dni:
            fields.pop("dni")
    if roles is not None:
        if not actor.has_any_role(ROLE_ADMIN):
            raise _refuse(403, "Only an administrator can change roles.")
        unique_roles = list(dict.fromkeys(roles))
        unknown = store.missing_roles(unique_roles)
        if unknown:
            raise _refuse(400, f"Unknown roles: {', '.join(unknown)}.")
        if (
            ROLE_ADMIN in target.roles
            and ROLE_ADMIN not in unique_roles
            and target.is_active
            and store.count_active_admins() <= 1
        ):
            raise _refuse(400, "Cannot remove the admin role from the last active administrator.")

    if not fields and roles is None:
        raise _refuse(400, "No fields to update.")

    try:
        if fields:
            store.update_user(target.id, updated_by=actor.id, **fields)
        if roles is not None:
            store.set_roles(target.id, list(dict.fromkeys(roles)))
    except IntegrityError:
        raise _refuse(409, "That e-mail or DNI is already in use.") from None

    changes = sorted(fields) + (["roles"] if roles is not None else [])
    details: dict = {"changed": changes}
    if roles is not None:
        details["roles"] = {"before": target.roles, "after": list(dict.fromkeys(roles))}
    audit_success(
        request, actor,
        action=action, module=_MODULE, entity_type=_ENTITY, entity_id=target.id,
        message=f"User updated: {', '.join(changes)}", details=details,
    )
    return store.get_by_id(target.id)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/users", response_model=Envelope[list[UserResponse]])
def list_users(request: Request, _user: User = Depends(require_staff)) -> Envelope:
    """Return all active users ordered by name."""
    return ok([UserResponse.model_validate(u) for u in _store(request).list_users(active_only=True)])


@router.get("/users/paginated", response_model=Envelope[Page[UserResponse]])
def list_users_paginated(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(10, ge=1, le=100),
    search: str | None = Query(None, max_length=100),
    is_active: bool | None = Query(None),
    _user: User = Depends(require_staff),
) -> Envelope:
    users, total = _store(request).list_users_page(page, page_size, search, is_active)
    return ok(page_of([UserResponse.model_validate(u) for u in users], total, page, page_size))


@router.put("/users/profile", response_model=Envelope[UserResponse])
def update_profile(request: Request, body: UserUpdate, current_user: User = Depends(get_current_user)) -> Envelope:
    """Edit the caller's own profile. Roles and e-mail cannot be changed here."""
    fields = body.model_fields_set
    if "roles" in fields:
        raise refuse(
            request, current_user, 403, "You cannot change your own roles.",
            action="update_profile", module=_MODULE, entity_type=_ENTITY, entity_id=current_user.id,
        )
    if "email" in fields and body.email != (current_user.email or "").lower():
        raise refuse(
            request, current_user, 403, "You cannot change your e-mail from the profile page.",
            action="update_profile", module=_MODULE, entity_type=_ENTITY, entity_id=current_user.id,
        )
    target = _load_target(request, current_user, current_user.id, "update_profile")
    updated = _apply_update(request, current_user, target, body, "update_profile")
    return ok(UserResponse.model_validate(updated))


@router.get("/users/{user_id}", response_model=Envelope[UserResponse])
def get_user(request: Request, user_id: int, current_user: User = Depends(get_current_user)) -> Envelope:
    """Return one user. Clients without a staff role may only read themselves."""
    if current_user.id != user_id and not current_user.has_any_role(*STAFF_ROLES):
        raise HTTPException(status_code=403, detail="You can only view your own account.")
    user = _store(request).get_by_id(user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found.")
    return ok(UserResponse.model_validate(user))


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


@router.post("/users", response_model=Envelope[UserResponse], status_code=201)
def create_user(request: Request, body: UserCreate, admin: User = Depends(require_admin)) -> Envelope:
    """Create a user with an explicit role set (defaults to ["client"])."""
    store = _store(request)
    roles = list(dict.fromkeys(body.roles or [ROLE_CLIENT]))

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(request, admin, status, message, action="create_user", module=_MODULE, entity_type=_ENTITY)

    unknown = store.missing_roles(roles)
    if unknown:
        raise _refuse(400, f"Unknown roles: {', '.join(unknown)}.")
    if store.get_by_email(body.email) is not None:
        raise _refuse(409, "That e-mail is already registered.")
    if body.dni and store.get_by_dni(body.dni) is not None:
        raise _refuse(409, "That DNI is already registered.")

    new_user = User(
        name=body.name,
        email=body.email,
        hashed_password=hash_password(body.password),
        phone=body.phone,
        dni=body.dni,
        address=body.address,
    )
    try:
        user_id = store.create_user(new_user, roles=roles, created_by=admin.id)
    except IntegrityError:
        raise _refuse(409, "That e-mail or DNI is already registered.") from None

    audit_success(
        request, admin,
        action="create_user", module=_MODULE, entity_type=_ENTITY, entity_id=user_id,
        message="User created", details={"email": body.email, "roles": roles},
    )
    return ok(UserResponse.model_validate(store.get_by_id(user_id)))


@router.put("/users/{user_id}", response_model=Envelope[UserResponse])
def update_user(
    request: Request, user_id: int, body: UserUpdate, current_user: User = Depends(get_current_user)
) -> Envelope:
    """Edit a user. Admins may edit anyone; other users only themselves."""
    if current_user.id != user_id and not current_user.has_any_role(ROLE_ADMIN):
        raise refuse(
            request, current_user, 403, "You can only edit your own account.",
            action="update_user", module=_MODULE, entity_type=_ENTITY, entity_id=user_id,
        )
    target = _load_target(request, current_user, user_id, "update_user")
    updated = _apply_update(request, current_user, target, body, "update_user")
    return ok(UserResponse.model_validate(updated))


@router.delete("/users/{user_id}", response_model=Envelope[MessageResponse])
def delete_user(request: Request, user_id: int, admin: User = Depends(require_admin)) -> Envelope:
    """Soft-delete a user (is_active = false, voided_at stamped)."""
    store = _store(request)

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(
            request, admin, status, message,
            action="delete_user", module=_MODULE, entity_type=_ENTITY, entity_id=user_id,
        )

    target = _load_target(request, admin, user_id, "delete_user")
    if not target.is_active:
        raise _refuse(409, "User is already inactive.")
    if target.id == admin.id:
        raise _refuse(400, "You cannot delete your own account.")
    if ROLE_ADMIN in target.roles and store.count_active_admins() <= 1:
        raise _refuse(400, "Cannot delete the last active administrator.")

    if not store.deactivate_user(user_id, voided_by=admin.id):
        raise _refuse(409, "User is already inactive.")
    audit_success(
        request, admin,
        action="delete_user", module=_MODULE, entity_type=_ENTITY, entity_id=user_id,
        message="User deactivated", details={"email": target.email},
    )
    return ok(MessageResponse(message="User deactivated."))


@router.put("/users/{user_id}/password", response_model=Envelope[MessageResponse])
def change_password(
    request: Request, user_id: int, body: PasswordChange, current_user: User = Depends(get_current_user)
) -> Envelope:
    """Change the caller's own password after verifying the current one."""

    def _refuse(status: int, message: str) -> HTTPException:
        return refuse(
            request, current_user, status, message,
            action="change_password", module=_MODULE, entity_type=_ENTITY, entity_id=user_id,
        )

    if current_user.id != user_id:
        raise _refuse(403, "You can only change your own password.")
    target = _load_target(request, current_user, user_id, "change_password")
    if target.hashed_password is None:
        raise _refuse(400, "This account signs in with a social provider and has no password.")
    if not verify_password(body.current_password, target.hashed_password):
        raise _refuse(401, "Current password is incorrect.")

    _store(request).update_user(user_id, hashed_password=hash_password(body.new_password), updated_by=user_id)
    audit_success(
        request, current_user,
        action="change_password", module=_MODULE, entity_type=_ENTITY, entity_id=user_id,
        message="Password changed",
    )
    return ok(MessageResponse(message="Password updated."))


@router.put("/users/{user_id}/reset-password", response_model=Envelope[MessageResponse])
def admin_reset_password(
    request: Request, user_id: int, body: PasswordSet, admin: User = Depends(require_admin)
) -> Envelope:
    """Set a new password for any user (admin)."""
    target = _load_target(request, admin, user_id, "reset_password")
    _store(request).update_user(target.id, hashed_password=hash_password(body.new_password), updated_by=admin.id)
    audit_success(
        request, admin,
        action="reset_password", module=_MODULE, entity_type=_ENTITY, entity_id=target.id,
        message="Password reset by administrator",
    )
    return ok(MessageResponse(message="Password reset."))
