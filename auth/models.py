"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (plain data containers). Dataclasses own domain
shape; stores and routes do the work.

Layer rule: no imports from api/, audit/, or catalog/.
"""

from __future__ import annotations

from dataclasses import dataclass, field

# Role names seeded on first startup. Order matters for dashboard menus:
# a user holding several roles lands on the first one in this tuple.
ROLE_ADMIN = "admin"
ROLE_VENDOR = "vendor"
ROLE_OPTOMETRIST = "optometrist"
ROLE_CLIENT = "client"
ALL_ROLES = (ROLE_ADMIN, ROLE_VENDOR, ROLE_OPTOMETRIST, ROLE_CLIENT)
STAFF_ROLES = (ROLE_ADMIN, ROLE_VENDOR, ROLE_OPTOMETRIST)

ROLE_DESCRIPTIONS = {
    ROLE_ADMIN: "Full access to the intranet",
    ROLE_VENDOR: "Sales staff",
    ROLE_OPTOMETRIST: "Eye care professional",
    ROLE_CLIENT: "Customer account",
}


@dataclass
class User:
    """A person who can sign in to the intranet.

    email is None only for OAuth accounts whose provider does not share an
    address (Instagram). hashed_password is None for OAuth-only users.
    oauth_provider / oauth_subject identify the linked external account; the
    pair is unique across the users table.

    roles holds role names ("admin", "client", ...) loaded from user_roles.
    voided_at / voided_by are set by a soft delete.
    """

    name: str
    email: str | None = None
    id: int | None = None
    hashed_password: str | None = None
    phone: str | None = None
    dni: str | None = None
    address: str | None = None
    is_active: bool = True
    email_verified: bool = False
    oauth_provider: str | None = None  # "google", "facebook", "instagram"
    oauth_subject: str | None = None  # provider's stable user ID
    roles: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None
    voided_at: str | None = None
    voided_by: int | None = None

    def has_any_role(self, *names: str) -> bool:
        return bool(set(self.roles) & set(names))


@dataclass
class Role:
    name: str
    id: int | None = None
    description: str | None = None


@dataclass
class ResetToken:
    """A single-use password-reset credential.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token only ever
    exists in the e-mail sent to the user.
    """

    user_id: int
    token_hash: str
    expires_at: str  # ISO 8601
    id: int | None = None
    created_at: str | None = None


@dataclass
class OAuthProfile:
    """Provider-neutral view of an OAuth identity after the code exchange."""

    provider: str
    subject: str
    email: str | None = None
    email_verified: bool = False
    name: str | None = None
