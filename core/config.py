"""
core/config.py -- Neóptica settings, read once from the environment.

Every environment lookup goes through get_settings(); the rest of the code
never touches os.environ for configuration. Field names map to upper-case
variables (auth_database_url -> AUTH_DATABASE_URL) and a local .env file is
honoured when present.

get_settings() is memoized, so the first call fixes the configuration for
the life of the process. Tests set their variables before importing the app.

SECRET_KEY signs access tokens and keys the HMAC over password-reset tokens:
  - DEBUG=true without a key: a random key is generated and a warning logged
  - DEBUG off without a key: startup fails
  - a key under 32 characters is refused either way

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
audit/, or catalog/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("neoptica.config")

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file.

    List fields (allowed_hosts, cors_origins) are read as JSON arrays, e.g.
    ALLOWED_HOSTS='["intranet.neoptica.com"]'.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    app_name: str = "Neóptica Intranet"

    # ------------------------------------------------------------------
    # Databases -- one URL per store; point them at the same server DB in
    # production if a single schema is preferred.
    # ------------------------------------------------------------------

    auth_database_url: str = f"sqlite:///{_DATA_DIR / 'neoptica_auth.db'}"
    catalog_database_url: str = f"sqlite:///{_DATA_DIR / 'neoptica_catalog.db'}"
    audit_database_url: str = f"sqlite:///{_DATA_DIR / 'neoptica_audit.db'}"

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    frontend_url: str = "http://localhost:5173"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:5173", "http://localhost:3000"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # 8 hours -- one working shift.
    token_expire_seconds: int = 8 * 3600
    reset_token_expire_hours: int = 24
    system_user_email: str = "system@internal.neoptica.com"
    # Password for `main.py seed --admin-email` / `create-admin`; prompted for when empty.
    admin_password: str = ""

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    facebook_client_id: str = ""
    facebook_client_secret: str = ""
    instagram_client_id: str = ""
    instagram_client_secret: str = ""
    # Public base URL used to build provider callback URLs when the API sits
    # behind a proxy. Empty means "derive from the incoming request".
    oauth_redirect_base: str = ""

    # ------------------------------------------------------------------
    # Mail (password recovery)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = "Neóptica <no-reply@neoptica.com>"

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Issued tokens will not survive restart -- acceptable for local dev.

        Production mode: refuse to start if SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() if you need to inject different
    environment variables.
    """
    return Settings()
