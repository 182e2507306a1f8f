"""
core/config.py -- FolioAdmin settings, read once from the environment.

Every environment variable the application uses is declared on Settings
below; other modules go through get_settings() and never touch os.environ.
Names map case-insensitively (SECRET_KEY -> secret_key) and a .env file in
the working directory is read as well. List fields take JSON, e.g.
ALLOWED_HOSTS='["cms.example.com"]'.

Deployment profiles:
  DEBUG=true  -- development: auto-generated SECRET_KEY allowed, 30-day
                 session tokens, error responses carry exception detail.
  DEBUG=false -- production: SECRET_KEY required, 7-day session tokens,
                 error responses are generic.

Validation happens at construction: an out-of-range retention window falls
back to the default with a warning, and a missing or short SECRET_KEY in
production raises.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/ or audit/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("folioadmin.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'folioadmin.db'}"

DEV_TOKEN_EXPIRE_SECONDS = 30 * 24 * 60 * 60
PROD_TOKEN_EXPIRE_SECONDS = 7 * 24 * 60 * 60

DEFAULT_RETENTION_DAYS = 90
MINIMUM_RETENTION_DAYS = 7
MAXIMUM_RETENTION_DAYS = 365


class Settings(BaseSettings):
    """FolioAdmin settings. Every field has a default except SECRET_KEY in production."""

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
    database_url: str = _DEFAULT_DB_URL

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:7001", "http://127.0.0.1:7001"]

    # ------------------------------------------------------------------
    # Session tokens and transient secrets
    # ------------------------------------------------------------------

    # 0 = use the deployment-profile default (see validate_profile).
    token_expire_seconds: int = 0
    otp_ttl_seconds: int = 5 * 60
    reset_token_ttl_seconds: int = 30 * 60
    csrf_token_ttl_seconds: int = 60 * 60
    csrf_sweep_interval_seconds: int = 30 * 60

    # ------------------------------------------------------------------
    # Rate limiting (limits library syntax, per client IP)
    # ------------------------------------------------------------------

    login_rate_limit: str = "5 per 15 minutes"
    verify_otp_rate_limit: str = "5 per 10 minutes"
    resend_otp_rate_limit: str = "3 per 15 minutes"
    forgot_password_rate_limit: str = "3 per 15 minutes"
    reset_password_rate_limit: str = "5 per 15 minutes"

    # ------------------------------------------------------------------
    # Outbound mail (empty smtp_host = notifier not configured)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    mail_from: str = ""
    frontend_url: str = "http://localhost:7001"

    # ------------------------------------------------------------------
    # Audit log retention
    # ------------------------------------------------------------------

    audit_log_retention_days: int = DEFAULT_RETENTION_DAYS

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("audit_log_retention_days")
    @classmethod
    def validate_retention_days(cls, value: int) -> int:
        """Fall back to the default when the configured window is out of range.

        A bad value is a warning, not a startup failure: the cleanup CLI is
        the only consumer and it re-validates any --days override itself.
        """
        if MINIMUM_RETENTION_DAYS <= value <= MAXIMUM_RETENTION_DAYS:
            return value
        logger.warning(
            "Invalid AUDIT_LOG_RETENTION_DAYS value: %s. Using default: %d days",
            value,
            DEFAULT_RETENTION_DAYS,
        )
        return DEFAULT_RETENTION_DAYS

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions end whenever the process restarts.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self

    @model_validator(mode="after")
    def validate_profile(self) -> "Settings":
        """Resolve the session token lifetime from the deployment profile."""
        if self.token_expire_seconds <= 0:
            self.token_expire_seconds = DEV_TOKEN_EXPIRE_SECONDS if self.debug else PROD_TOKEN_EXPIRE_SECONDS
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings, built on first call.

    Tests that change the environment afterwards must call
    get_settings.cache_clear().
    """
    return Settings()
