"""
auth/errors.py -- Exception taxonomy for the authentication subsystem.

Every error carries a stable machine-readable code and the HTTP status it
maps to. api/main.py registers one exception handler for AuthError that turns
any of these into the shared ErrorResponse envelope, so route handlers and
services just raise.

Messages are written for the caller and must stay generic for security
checks: InvalidCredentialsError never says which part was wrong and
UnauthorizedError never says which sub-check tripped.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for auth-layer errors mapped to HTTP responses."""

    status_code: int = 400
    code: str = "auth_error"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code


class InvalidCredentialsError(AuthError):
    """Wrong username, password, or OTP (401)."""

    status_code = 401
    code = "invalid_credentials"


class ExpiredError(AuthError):
    """OTP or reset token past its lifetime (401)."""

    status_code = 401
    code = "expired"


class UnauthorizedError(AuthError):
    """Missing, invalid, or stale session token (401)."""

    status_code = 401
    code = "unauthorized"


class CsrfError(AuthError):
    """Missing or mismatched CSRF token on a mutating request (403)."""

    status_code = 403
    code = "csrf_invalid"


class InputValidationError(AuthError):
    """Malformed input, rejected before touching storage (400)."""

    status_code = 400
    code = "validation_error"


class RateLimitedError(AuthError):
    """Too many attempts from one client (429)."""

    status_code = 429
    code = "rate_limited"


class NotConfiguredError(AuthError):
    """Notification channel is not configured -- operator-facing (500)."""

    status_code = 500
    code = "not_configured"


class NotificationError(AuthError):
    """The notification channel is configured but delivery failed (500)."""

    status_code = 500
    code = "delivery_failed"
