"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for rolegate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a signing key and
      reports that at ERROR level so it cannot go unnoticed.

Security notes:
  Settings does not judge the signing key. TokenCodec owns that policy
  (missing, shorter than 32 chars, or trivial -> SigningError), and the API
  lifespan builds the codec at startup, so a bad key still stops the service
  before it serves a request. The CLI never signs tokens and so runs without
  a key.

  In production mode (DEBUG not set or false), a missing SECRET_KEY stays
  empty and fails in TokenCodec. A random per-process key would silently
  invalidate every issued token on restart.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("rolegate.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'rolegate.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Signing key policy lives in
    TokenCodec, not here.
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
    # below fills it in DEBUG mode; otherwise TokenCodec rejects it at startup.
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=24 * 3600, gt=0)
    refresh_token_expire_seconds: int = Field(default=7 * 24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    # bcrypt accepts 4..31. Tests lower this to keep the suite fast.
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    default_role: str = "USER"
    # Created at startup if missing so register() can always find the default.
    bootstrap_roles: list[str] = ["USER", "ADMIN"]

    # ------------------------------------------------------------------
    # Registration and rate limiting
    # ------------------------------------------------------------------

    self_registration_enabled: bool = True
    login_rate_limit: str = "10/minute"
    rate_limit_enabled: bool = True

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_settings(self) -> "Settings":
        """Fill in a dev signing key and check the role settings.

        Dev mode (DEBUG=true) with no SECRET_KEY: generate a random key and
            log an ERROR. Tokens will not survive restart.

        Otherwise the key is left as configured, empty included; TokenCodec
        raises SigningError for it at startup.
        """
        if not self.secret_key and self.debug:
            self.secret_key = secrets.token_hex(32)
            logger.error(
                "SECRET_KEY is not set; using an auto-generated key because DEBUG=true. "
                "Tokens will not persist across restarts. Never run like this in production."
            )
        if self.default_role not in self.bootstrap_roles:
            raise ValueError("DEFAULT_ROLE must be one of BOOTSTRAP_ROLES.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    All modules should call get_settings() rather than constructing Settings() directly.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()
