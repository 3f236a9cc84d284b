"""
API request and response models for Neóptica REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py,
catalog/models.py and audit/models.py, which own the internal domain
representation. Route handlers map between the two.

Every response body is an Envelope: {"ok": bool, "data": ..., "error": str|null}.
Field-format rules (e-mail, phone, strong password, catalog names, hex codes,
asset URLs) come from core/validators.py so the CLI applies the same rules.
Uniqueness and reference checks need the database and live in the routes.
"""

import json
import math
from decimal import Decimal
from typing import Annotated, Any, Generic, Optional, TypeVar

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

from core import validators

T = TypeVar("T")

# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class Envelope(BaseModel, Generic[T]):
    """Uniform response wrapper for every endpoint, success or failure."""

    ok: bool = True
    data: Optional[T] = None
    error: Optional[str] = None


class Page(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int
    total_pages: int


class FieldError(BaseModel):
    field: str
    message: str


def ok(data: Any = None) -> Envelope:
    return Envelope(ok=True, data=data)


def fail(error: str, data: Any = None) -> dict:
    """Failure body as a plain dict, ready for JSONResponse(content=...)."""
    return Envelope(ok=False, data=data, error=error).model_dump(mode="json")


def page_of(items: list, total: int, page: int, page_size: int) -> Page:
    return Page(
        items=items,
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


# ---------------------------------------------------------------------------
# Shared field types
#
# Annotated + AfterValidator attaches the core/validators rules to a type, so
# every model that takes an e-mail or phone applies the same check. The
# validator runs after str_strip_whitespace.
# ---------------------------------------------------------------------------


def _check_email(v: str) -> str:
    v = v.strip().lower()
    if not validators.is_valid_email(v):
        raise ValueError("Invalid e-mail address.")
    return v


def _check_phone(v: str) -> Optional[str]:
    if v == "":
        return None
    if not validators.is_valid_phone(v):
        raise ValueError("Phone must be exactly 10 digits.")
    return v


def _check_password_bytes(v: str) -> str:
    if not validators.fits_password_limit(v):
        raise ValueError(validators.PASSWORD_TOO_LONG_MESSAGE)
    return v


def _check_dni(v: str) -> Optional[str]:
    return v or None


def _check_strong_password(v: str) -> str:
    if not validators.is_strong_password(v):
        raise ValueError(validators.PASSWORD_RULES_MESSAGE)
    return v


def _check_catalog_name(v: str) -> str:
    if not validators.is_valid_catalog_name(v):
        raise ValueError("Name must be 2-100 characters: letters, digits, spaces and - . , ' & ( ) only.")
    return v.strip()


def _reject_is_active(v: Optional[bool]) -> Optional[bool]:
    if v is not None:
        raise ValueError("is_active cannot be set here; use DELETE to deactivate.")
    return v


Email = Annotated[str, Field(max_length=255), AfterValidator(_check_email)]
Phone = Annotated[str, AfterValidator(_check_phone)]
PasswordText = Annotated[str, AfterValidator(_check_password_bytes)]
StrongPassword = Annotated[PasswordText, AfterValidator(_check_strong_password)]
# A blank DNI means "not given"; the column is UNIQUE.
Dni = Annotated[str, Field(max_length=20), AfterValidator(_check_dni)]
CatalogName = Annotated[str, AfterValidator(_check_catalog_name)]
# Brands and branches are deactivated only through DELETE.
NoActiveFlag = Annotated[Optional[bool], AfterValidator(_reject_is_active)]


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login.

    The e-mail is not format-checked here: a malformed address simply fails
    authentication with the same 401 as an unknown one.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class AuthUser(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: Optional[str] = None
    roles: list[str]


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password
    expires_in: int
    user: AuthUser


class RegisterRequest(BaseModel):
    """Self-registration body.

    Two shapes are accepted:
      local  -- name (3+ chars), email, password (8+ chars)
      social -- email, oauth_provider, oauth_id (name optional; defaults to the
                local part of the e-mail)
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, max_length=255)
    email: Email
    password: Optional[PasswordText] = None
    phone: Optional[Phone] = None
    dni: Optional[Dni] = None
    address: Optional[str] = Field(default=None, max_length=500)
    oauth_provider: Optional[str] = Field(default=None, max_length=30)
    oauth_id: Optional[str] = Field(default=None, max_length=255)

    @model_validator(mode="after")
    def check_shape(self) -> "RegisterRequest":
        if self.is_social:
            if not (self.oauth_provider and self.oauth_id):
                raise ValueError("Social registration requires both oauth_provider and oauth_id.")
            return self
        if not self.name or len(self.name) < 3:
            raise ValueError("Name must be at least 3 characters.")
        if not self.password or len(self.password) < 8:
            raise ValueError("Password must be at least 8 characters.")
        return self

    @property
    def is_social(self) -> bool:
        return bool(self.oauth_provider or self.oauth_id)


class ForgotPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: Email


class ResetPasswordRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=128)
    email: Email
    password: StrongPassword


class OAuthProviderInfo(BaseModel):
    name: str
    label: str


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Users and roles
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    dni: Optional[str] = None
    address: Optional[str] = None
    is_active: bool
    email_verified: bool
    oauth_provider: Optional[str] = None
    roles: list[str]
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    last_login: Optional[str] = None


class UserCreate(BaseModel):
    """Request body for POST /api/users (admin). roles defaults to ["client"]."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=255)
    email: Email
    password: StrongPassword
    phone: Optional[Phone] = None
    dni: Optional[Dni] = None
    address: Optional[str] = Field(default=None, max_length=500)
    roles: Optional[list[str]] = None


class UserUpdate(BaseModel):
    """Partial update body for PUT /api/users/{id} and PUT /api/users/profile.

    Only fields present in the request are applied (model_fields_set).
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=3, max_length=255)
    email: Optional[Email] = None
    phone: Optional[Phone] = None
    dni: Optional[Dni] = None
    address: Optional[str] = Field(default=None, max_length=500)
    roles: Optional[list[str]] = None

    @field_validator("roles")
    @classmethod
    def roles_not_empty(cls, v: Optional[list[str]]) -> Optional[list[str]]:
        if v is not None and not v:
            raise ValueError("A user must keep at least one role.")
        return v


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1, max_length=128)
    new_password: StrongPassword


class PasswordSet(BaseModel):
    new_password: StrongPassword


class RoleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class _CatalogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    is_active: bool
    created_at: str
    updated_at: Optional[str] = None


class BrandCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: CatalogName
    is_active: NoActiveFlag = None


class BrandUpdate(BrandCreate):
    pass


class BrandResponse(_CatalogResponse):
    pass


class ColorCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: CatalogName
    hex_code: Optional[str] = None

    @field_validator("hex_code")
    @classmethod
    def normalize_hex(cls, v: Optional[str]) -> Optional[str]:
        """Accept "fff", "#fff", "A1B2C3"; store with a leading '#'."""
        if v is None or v == "":
            return None
        return validators.normalize_hex_color(v)


class ColorUpdate(ColorCreate):
    name: Optional[CatalogName] = None


class ColorResponse(_CatalogResponse):
    hex_code: Optional[str] = None


class BranchCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=3, max_length=255)
    address: Optional[str] = Field(default=None, max_length=500)
    latitude: Optional[float] = Field(default=None, ge=-90, le=90)
    longitude: Optional[float] = Field(default=None, ge=-180, le=180)
    phone: Optional[Phone] = None
    email: Optional[Email] = None
    is_active: NoActiveFlag = None


class BranchUpdate(BranchCreate):
    name: Optional[str] = Field(default=None, min_length=3, max_length=255)


class BranchResponse(_CatalogResponse):
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    email: Optional[str] = None


class ProductCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=255)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: float = Field(ge=0)
    category: Optional[str] = Field(default=None, max_length=100)
    image_url: Optional[str] = None
    model3d_url: Optional[str] = None
    brand_id: Optional[int] = Field(default=None, ge=1)
    color_id: Optional[int] = Field(default=None, ge=1)
    is_active: bool = True

    @field_validator("price")
    @classmethod
    def two_decimals(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and Decimal(str(v)).as_tuple().exponent < -2:
            raise ValueError("Price may have at most 2 decimal places.")
        return v

    @field_validator("image_url")
    @classmethod
    def check_image_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not validators.is_valid_image_url(v):
            raise ValueError("image_url must be an http(s) URL (max 500 chars) ending in an image extension.")
        return v

    @field_validator("model3d_url")
    @classmethod
    def check_model3d_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == "":
            return None
        if not validators.is_valid_model3d_url(v):
            raise ValueError("model3d_url must be an http(s) URL (max 500 chars) ending in a 3D model extension.")
        return v


class ProductUpdate(ProductCreate):
    name: Optional[str] = Field(default=None, min_length=2, max_length=255)
    price: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None


class ProductResponse(_CatalogResponse):
    description: Optional[str] = None
    price: float
    category: Optional[str] = None
    image_url: Optional[str] = None
    model3d_url: Optional[str] = None
    brand_id: Optional[int] = None
    color_id: Optional[int] = None


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor_id: Optional[int] = None
    action: str
    result: str
    entity_type: str
    entity_id: Optional[str] = None
    module: str
    description: Any = None
    error_message: Optional[str] = None
    ip: Optional[str] = None
    created_at: str

    @field_validator("description", mode="before")
    @classmethod
    def parse_description(cls, v: Any) -> Any:
        """Stored as JSON text; expose as an object when it parses."""
        if isinstance(v, str):
            try:
                return json.loads(v)
            except ValueError:
                return v
        return v


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


class MenuItem(BaseModel):
    id: str
    label: str
    path: str


class DashboardInfo(BaseModel):
    role: str
    label: str
    path: str
    menu: list[MenuItem]


class DashboardSummary(BaseModel):
    role: str
    user: AuthUser
    menu: list[MenuItem]
    widgets: dict[str, Any]
