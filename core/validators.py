"""
core/validators.py -- Field rules shared by the API models and the CLI.

Pure functions over plain strings. No I/O, no framework imports, so the same
rules apply whether a user is created through POST /api/users or through
`python main.py create-admin`.
"""

from __future__ import annotations

import re
from urllib.parse import urlparse

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
# At least one lowercase, one uppercase, one digit, 8+ chars.
STRONG_PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d).{8,}$")
PHONE_PATTERN = re.compile(r"^\d{10}$")
CATALOG_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9áéíóúÁÉÍÓÚñÑüÜ\s\-.,'&()]+$")
HEX_COLOR_PATTERN = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")

# bcrypt refuses input longer than this.
PASSWORD_MAX_BYTES = 72

CATALOG_NAME_MIN = 2
CATALOG_NAME_MAX = 100
URL_MAX_LENGTH = 500

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg")
MODEL3D_EXTENSIONS = (".glb", ".gltf", ".obj", ".fbx", ".stl")

PASSWORD_TOO_LONG_MESSAGE = f"Password must be at most {PASSWORD_MAX_BYTES} bytes."
PASSWORD_RULES_MESSAGE = (
    "Password must be at least 8 characters and include an uppercase letter, a lowercase letter and a number."
)


def is_valid_email(value: str) -> bool:
    return bool(EMAIL_PATTERN.match(value or ""))


def is_strong_password(value: str) -> bool:
    return bool(STRONG_PASSWORD_PATTERN.match(value or ""))


def fits_password_limit(value: str) -> bool:
    return len((value or "").encode("utf-8")) <= PASSWORD_MAX_BYTES


def is_valid_phone(value: str) -> bool:
    return bool(PHONE_PATTERN.match(value or ""))


def is_valid_catalog_name(value: str) -> bool:
    """Return True for a brand/color name of 2..100 allowed characters."""
    value = (value or "").strip()
    if not CATALOG_NAME_MIN <= len(value) <= CATALOG_NAME_MAX:
        return False
    return bool(CATALOG_NAME_PATTERN.match(value))


def normalize_hex_color(value: str) -> str:
    """Return the hex code with a leading '#'.

    Raises ValueError when the result is not #RGB or #RRGGBB.
    """
    value = (value or "").strip()
    if not value.startswith("#"):
        value = f"#{value}"
    if not HEX_COLOR_PATTERN.match(value):
        raise ValueError("Hex code must look like #RGB or #RRGGBB.")
    return value


def _is_http_url_with_extension(value: str, extensions: tuple[str, ...]) -> bool:
    if not value or len(value) > URL_MAX_LENGTH:
        return False
    parsed = urlparse(value)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return False
    return parsed.path.lower().endswith(extensions)


def is_valid_image_url(value: str) -> bool:
    return _is_http_url_with_extension(value, IMAGE_EXTENSIONS)


def is_valid_model3d_url(value: str) -> bool:
    return _is_http_url_with_extension(value, MODEL3D_EXTENSIONS)
