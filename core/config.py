"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the identity service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. session_expire_seconds -> SESSION_EXPIRE_SECONDS). Type coercion
      and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment.

Security notes:
  Session secrets shorter than 32 bytes are rejected. Every session signs its
  own tokens with HMAC-SHA256 -- a short secret weakens exactly one session,
  but it weakens it for the whole session lifetime.

  There is no global signing key. Each session carries its own secret, so a
  leaked secret compromises one session only.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or cache/.
"""

import logging
from functools import lru_cache
from pathlib import Path

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("identity.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'identity.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    sanity rules at startup.
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
    log_level: str = "INFO"
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Sessions and tokens
    # ------------------------------------------------------------------

    # Lifetime of a session and of the exp claim of its token.
    session_expire_seconds: int = 3600
    # Random bytes per session secret (hex-encoded, so the stored string is twice as long).
    session_secret_bytes: int = 32

    # ------------------------------------------------------------------
    # Verification cache
    # ------------------------------------------------------------------

    cache_ttl_seconds: int = 300
    cache_max_entries: int = 10000
    cache_purge_interval_seconds: int = 600

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    # Status returned when the authorization evaluator denies access.
    unauthorized_status: int = 403
    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "testserver", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_values(self) -> "Settings":
        """Reject settings that would silently weaken or break the token core.

        - session_secret_bytes below 32 leaves HMAC-SHA256 under-keyed.
        - a non-positive session lifetime would issue already-expired tokens.
        - unauthorized_status is either 401 or 403; anything else confuses clients.
        """
        if self.session_secret_bytes < 32:
            raise ValueError("SESSION_SECRET_BYTES must be at least 32.")
        if self.session_expire_seconds <= 0:
            raise ValueError("SESSION_EXPIRE_SECONDS must be positive.")
        if self.cache_ttl_seconds < 0:
            raise ValueError("CACHE_TTL_SECONDS must not be negative.")
        if self.cache_max_entries <= 0:
            raise ValueError("CACHE_MAX_ENTRIES must be positive.")
        if self.unauthorized_status not in (401, 403):
            raise ValueError("UNAUTHORIZED_STATUS must be 401 or 403.")
        if self.debug:
            logger.warning("DEBUG mode enabled -- do not run this configuration in production.")
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
