"""
API request and response models for FolioAdmin REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
audit/models.py, which own the internal domain representation. Route
handlers map between the two.

Password fields are capped at 128 characters so a multi-megabyte body is
refused before it reaches a handler. The real bounds (at least 6 characters,
at most 72 UTF-8 bytes for bcrypt) are enforced in auth.credentials, which
answers 400 with its own message. Passwords are never trimmed.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

# Usernames are trimmed. Passwords never are: they are hashed exactly as sent.
Username = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]

# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class MessageResponse(BaseModel):
    """Generic acknowledgement, used where the body must not reveal account existence."""

    model_config = ConfigDict(frozen=True)

    message: str


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = {}


# ---------------------------------------------------------------------------
# Login and OTP
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: Username
    password: str = Field(min_length=1, max_length=128)


class LoginResponse(BaseModel):
    """First-factor success. No session token yet -- the OTP step issues it."""

    model_config = ConfigDict(frozen=True)

    otp_required: bool = True
    masked_channel: str
    message: str = "OTP sent to your email."


class VerifyOtpRequest(BaseModel):
    """Request body for POST /api/v1/auth/verify-otp."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)
    otp: str = Field(min_length=1, max_length=12)


class TokenResponse(BaseModel):
    """Second-factor success: the bearer session token."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    username: str
    message: str = "Login successful."


class UsernameRequest(BaseModel):
    """Request body for POST /auth/resend-otp and POST /auth/forgot-password."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Password reset
# ---------------------------------------------------------------------------


class ResetPasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/reset-password."""

    token: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


# ---------------------------------------------------------------------------
# Authenticated account management
# ---------------------------------------------------------------------------


class CsrfTokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    csrf_token: str


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    password_changed_at: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/auth/change-password."""

    current_password: str = Field(min_length=1, max_length=128)
    new_password: str = Field(min_length=1, max_length=128)


class ChangePasswordResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str = "Password changed successfully. Please log in again."
    success: bool = True
    force_logout: bool = True


class ChangeUsernameRequest(BaseModel):
    """Request body for PUT /api/v1/auth/change-username.

    Shape validation (e-mail format, lower-casing) happens in
    auth.credentials.normalize_username so scripts get the same rules.
    """

    new_username: str = Field(min_length=1, max_length=255)


class ChangeUsernameResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str = "Username updated. Please log in again."
    new_username: str
    force_logout: bool = True


class LogoutResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    success: bool = True


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


class ActivityRow(BaseModel):
    """One audit entry in GET /api/v1/activity/admin."""

    model_config = ConfigDict(frozen=True)

    id: int
    admin_id: int
    admin_username: str
    action: str
    metadata: dict
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: str


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class ActivityPage(BaseModel):
    model_config = ConfigDict(frozen=True)

    activities: list[ActivityRow]
    pagination: Pagination
