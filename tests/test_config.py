"""
tests/test_config.py -- Unit tests for core/config.py Settings validation.

Covers:
  - SECRET_KEY policy per deployment profile
  - token lifetime defaults per profile and explicit override
  - audit retention fallback on out-of-range values
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from core.config import (
    DEFAULT_RETENTION_DAYS,
    DEV_TOKEN_EXPIRE_SECONDS,
    PROD_TOKEN_EXPIRE_SECONDS,
    Settings,
)

GOOD_KEY = "k" * 48


class TestSecretKey:
    def test_debug_generates_key(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_key(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(debug=False, secret_key="")

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32"):
            Settings(debug=False, secret_key="short")


class TestTokenLifetime:
    def test_development_profile(self) -> None:
        assert Settings(debug=True, secret_key=GOOD_KEY, token_expire_seconds=0).token_expire_seconds == DEV_TOKEN_EXPIRE_SECONDS

    def test_production_profile(self) -> None:
        assert Settings(debug=False, secret_key=GOOD_KEY, token_expire_seconds=0).token_expire_seconds == PROD_TOKEN_EXPIRE_SECONDS

    def test_explicit_override(self) -> None:
        assert Settings(debug=False, secret_key=GOOD_KEY, token_expire_seconds=3600).token_expire_seconds == 3600


class TestRetentionDays:
    @pytest.mark.parametrize("value", [1, 6, 366, 10_000])
    def test_out_of_range_falls_back(self, value: int) -> None:
        settings = Settings(debug=True, secret_key=GOOD_KEY, audit_log_retention_days=value)
        assert settings.audit_log_retention_days == DEFAULT_RETENTION_DAYS

    def test_in_range_kept(self) -> None:
        assert Settings(debug=True, secret_key=GOOD_KEY, audit_log_retention_days=30).audit_log_retention_days == 30

