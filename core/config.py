"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for credgate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment.

Security notes:
  SECRET_KEY has no fallback. A missing key is a hard startup failure in every
  mode, and a key shorter than 32 chars is rejected outright -- JWT signing
  relies on key entropy.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, cache/, or notify/.
"""

import logging
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("credgate.config")

MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Every field except secret_key has a working default. Tests set SECRET_KEY
    in the environment (see tests/conftest.py) or pass it as a keyword.
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
    # Empty string is the "not configured" sentinel; the validator rejects it.
    secret_key: str = ""
    database_url: str = "sqlite:///credgate.db"

    # ------------------------------------------------------------------
    # Sessions and passwords
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    token_expire_seconds: int = Field(default=24 * 60 * 60, gt=0)
    # bcrypt cost 10 keeps a verify in the tens of milliseconds.
    bcrypt_rounds: int = Field(default=10, ge=4, le=31)

    # ------------------------------------------------------------------
    # One-time passcodes
    # ------------------------------------------------------------------

    otp_length: int = Field(default=6, ge=4, le=10)
    otp_expire_seconds: int = Field(default=10 * 60, gt=0)
    otp_sweep_interval: int = Field(default=60, gt=0)

    # ------------------------------------------------------------------
    # Credential store connection
    # ------------------------------------------------------------------

    db_connect_timeout: float = Field(default=5.0, gt=0)
    db_retry_base_delay: float = Field(default=5.0, gt=0)
    db_retry_max_delay: float = Field(default=60.0, gt=0)
    db_health_interval: float = Field(default=30.0, gt=0)
    store_timeout: float = Field(default=5.0, gt=0)

    # ------------------------------------------------------------------
    # Notification channel (empty mail_api_url = log-only notifier)
    # ------------------------------------------------------------------

    mail_api_url: str = ""
    mail_api_key: str = ""
    mail_from: str = "no-reply@localhost"
    notify_timeout: float = Field(default=10.0, gt=0)

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    # Comma-separated list, e.g. "http://localhost:3000,https://app.example.com"
    client_origins: str = "http://localhost:3000"
    # Applied to every route without its own limit (health is exempt).
    default_rate_limit: str = "100/15minutes"
    login_rate_limit: str = "10/minute"

    @property
    def client_origin_list(self) -> list[str]:
        return [o.strip() for o in self.client_origins.split(",") if o.strip()]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Refuse to start without a usable signing secret.

        There is no dev-mode fallback: a generated key would silently
        invalidate every session on restart and hide a misconfiguration.
        """
        if not self.secret_key:
            raise ValueError(
                "SECRET_KEY is required. Set SECRET_KEY in your environment or .env file."
            )
        if len(self.secret_key) < MIN_SECRET_LENGTH:
            raise ValueError(f"SECRET_KEY must be at least {MIN_SECRET_LENGTH} characters.")
        return self

    @model_validator(mode="after")
    def validate_backoff(self) -> "Settings":
        if self.db_retry_max_delay < self.db_retry_base_delay:
            raise ValueError("DB_RETRY_MAX_DELAY must be >= DB_RETRY_BASE_DELAY.")
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
