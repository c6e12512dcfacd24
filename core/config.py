"""
core/config.py -- Runtime configuration for the member portal (pydantic-settings).

Settings reads environment variables, falling back to a .env file in the
working directory. Field names map to upper-case variable names
(database_url <- DATABASE_URL). Modules never read os.environ themselves;
they call get_settings(), which builds Settings on first use and caches it.

Startup checks (validate_secret_key):
  [M7] No SECRET_KEY: DEBUG=true gets a random per-process key and a
       warning; anything else refuses to start. Tokens signed with a random
       key die with the process, which is fine on a laptop and an outage in
       production.
  [M6] SECRET_KEY under 32 characters is refused in every mode. The HS256
       session tokens are only as strong as this key.
  BCRYPT_ROUNDS under 12 starts, with a warning unless DEBUG is set. The
  suite runs at 4; deployments should not.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or membership/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("memberportal.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'memberportal.db'}"


class Settings(BaseSettings):
    """Every tunable the portal reads at runtime.

    Defaults are safe for local development, so tests can construct
    Settings() with nothing but DEBUG=true in the environment.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- process -------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_secret_key() replaces or rejects it.
    secret_key: str = ""

    # --- sessions and credentials --------------------------------------

    secure_cookies: bool = False
    # Tokens cannot be revoked server-side; the lifetime is the only limit.
    token_expire_seconds: int = Field(default=24 * 3600, gt=0)
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    min_password_length: int = Field(default=8, ge=1)
    # False: only super_admin may log in without naming an association.
    # True reproduces the legacy behaviour where any role could omit it.
    allow_login_without_association: bool = False

    # --- database ------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    db_pool_size: int = Field(default=20, ge=1)
    db_pool_timeout: float = Field(default=2.0, gt=0)

    # --- notifications (empty key means log-only delivery) --------------

    resend_api_key: str = ""
    from_email: str = "noreply@example.com"
    notify_workers: int = Field(default=2, ge=1)

    # --- HTTP (lists are JSON in the environment: ALLOWED_HOSTS='["portal.example.org"]')

    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY must be set outside development. "
                    "Put it in the environment or .env, or set DEBUG=true for a throwaway key."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set -- generated a random key; tokens will not survive a restart")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        if self.bcrypt_rounds < 12 and not self.debug:
            logger.warning("BCRYPT_ROUNDS=%d is below the recommended cost of 12", self.bcrypt_rounds)
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, building it on the first call.

    Tests that need different values must set the environment before the
    first import of any auth/ or membership/ module, or call
    get_settings.cache_clear().
    """
    return Settings()
