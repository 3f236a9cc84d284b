"""
auth/tokens.py -- JWT, password hashing, and reset-token utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, email, name, roles, and expiry. Verification returns None on
       any failure -- the dependency layer turns that into a 401.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an e-mail is registered.

  Reset tokens: secrets.token_hex(32) gives 256 bits of entropy. We store
       HMAC-SHA256(SECRET_KEY, raw_token) so lookup is a direct equality match
       and a leaked database does not expose usable links.

Layer rule: no imports from api/, audit/, or catalog/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("neoptica.auth")

_settings = get_settings()

_ALGORITHM = "HS256"


class LoginError(Exception):
    """Password login refused.

    code is a stable machine-readable reason; status_code is the HTTP status
    the route layer should answer with.
    """

    def __init__(self, code: str, message: str, status_code: int = 401) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Input longer than 72 bytes raises ValueError (bcrypt 5); request models
    reject such passwords with a 400 before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB, or a login attempt over 72 bytes.
        return False


_DUMMY_HASH: str = hash_password("neoptica_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user: User, expire_seconds: int = 0) -> str:
    """Encode a signed JWT carrying the user's identity and roles.

    expire_seconds of 0 means Settings.token_expire_seconds (8 hours).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": user.email or f"user:{user.id}",
        "user_id": user.id,
        "email": user.email,
        "name": user.name,
        "roles": list(user.roles),
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if not isinstance(payload.get("user_id"), int):
        return None
    payload.setdefault("roles", [])
    return payload


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User:
    """Authenticate a local e-mail/password login with timing equalization.

    Always runs bcrypt whether or not the user exists, so an attacker cannot
    enumerate registered e-mails by measuring response times.

    Raises LoginError:
      bad_credentials   (401) -- unknown e-mail or wrong password
      no_local_password (401) -- OAuth-only account
      inactive          (403) -- account has been deactivated
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        raise LoginError("bad_credentials", "Invalid e-mail or password.")
    if user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        raise LoginError(
            "no_local_password",
            "This account signs in with a social provider.",
        )
    if not verify_password(password, user.hashed_password):
        raise LoginError("bad_credentials", "Invalid e-mail or password.")
    if not user.is_active:
        raise LoginError("inactive", "This account is deactivated.", status_code=403)
    return user


# ---------------------------------------------------------------------------
# Password-reset tokens
# ---------------------------------------------------------------------------


def generate_reset_token() -> str:
    """Return a fresh raw reset token (64 hex chars, 256 bits of entropy)."""
    return secrets.token_hex(32)


def hash_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as a hex string."""
    return hmac.new(
        _settings.secret_key.encode(),
        raw_token.encode(),
        hashlib.sha256,
    ).hexdigest()


def reset_token_expiry() -> str:
    """ISO 8601 expiry for a reset token issued now."""
    expires = datetime.now(timezone.utc) + timedelta(hours=_settings.reset_token_expire_hours)
    return expires.isoformat()
