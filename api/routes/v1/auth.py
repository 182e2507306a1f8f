"""
api/routes/v1/auth.py -- Two-factor login, password reset and account REST endpoints.

Routes:
  POST /api/v1/auth/login              -- password check; sends OTP, no token yet
  POST /api/v1/auth/verify-otp         -- OTP check; returns the bearer token
  POST /api/v1/auth/resend-otp         -- replaces the pending OTP
  POST /api/v1/auth/forgot-password    -- mails a reset link
  POST /api/v1/auth/reset-password     -- consumes the reset token
  GET  /api/v1/auth/csrf-token         -- issues the CSRF token (requires auth)
  GET  /api/v1/auth/me                 -- current account info (requires auth)
  POST /api/v1/auth/change-password    -- requires auth + CSRF
  PUT  /api/v1/auth/change-username    -- requires auth + CSRF
  POST /api/v1/auth/logout             -- requires auth + CSRF; audit only

Security:
  Every unauthenticated route is rate-limited per client IP, each with its
  own counter (limits come from Settings).
  authenticate() provides timing equalization -- use it, never inline.
  resend-otp and forgot-password answer with the same message whether or not
  the account exists. The notifier configuration is checked before the
  lookup so an unconfigured mailer fails the same way for every username.
  Cache-Control: no-store on every response carrying a credential.

Handlers are plain `def`: bcrypt and SMTP block, so FastAPI runs them in its
threadpool. Services raise AuthError subclasses; api/main.py maps them to
the ErrorResponse envelope.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, BackgroundTasks, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    ChangePasswordRequest,
    ChangePasswordResponse,
    ChangeUsernameRequest,
    ChangeUsernameResponse,
    CsrfTokenResponse,
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    LogoutResponse,
    MeResponse,
    MessageResponse,
    ResetPasswordRequest,
    TokenResponse,
    UsernameRequest,
    VerifyOtpRequest,
)
from audit.logger import AuditLogger
from audit.models import AuditAction
from auth import credentials
from auth.csrf import CsrfTokenStore
from auth.dependencies import get_current_account, require_csrf
from auth.errors import (
    AuthError,
    ExpiredError,
    InputValidationError,
    InvalidCredentialsError,
    NotConfiguredError,
    NotificationError,
)
from auth.models import Account
from auth.notify import Notifier, mask_email
from auth.otp import OtpFailure, issue_login_otp, verify_login_otp
from auth.store import AccountStore
from auth.tokens import burn_verify, create_access_token
from core.config import get_settings

logger = logging.getLogger("folioadmin.auth")
settings = get_settings()

# Auth policy:
# - POST /api/v1/auth/login, verify-otp, resend-otp,
#        forgot-password, reset-password:    public, rate-limited
# - GET  /api/v1/auth/csrf-token, /auth/me:  requires auth (get_current_account)
# - POST /api/v1/auth/change-password:       requires auth + CSRF (require_csrf)
# - PUT  /api/v1/auth/change-username:       requires auth + CSRF (require_csrf)
# - POST /api/v1/auth/logout:                requires auth + CSRF (require_csrf)
router = APIRouter()

_RESEND_MESSAGE = "If an account with that email exists, a new OTP has been sent."
_FORGOT_MESSAGE = "If an account with that username exists, a password reset link has been sent."
_MAIL_NOT_CONFIGURED = "Email service is not configured. Please contact the administrator."


def _no_store(response: Response) -> None:
    response.headers["Cache-Control"] = "no-store"


def _stores(request: Request) -> tuple[AccountStore, AuditLogger]:
    return request.app.state.account_store, request.app.state.audit_logger


def _require_notifier(request: Request) -> Notifier:
    notifier: Notifier = request.app.state.notifier
    if not notifier.is_configured:
        logger.error("Outbound mail requested on %s but no notifier is configured", request.url.path)
        raise NotConfiguredError(_MAIL_NOT_CONFIGURED)
    return notifier


# ---------------------------------------------------------------------------
# Two-factor login (public)
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(settings.login_rate_limit)
def login(
    request: Request,
    response: Response,
    body: LoginRequest,
    background: BackgroundTasks,
) -> LoginResponse:
    """First factor: verify the password, then deliver a login OTP.

    Returns the same generic error for an unknown username and a wrong
    password. No session token is issued here.
    """
    store, audit_logger = _stores(request)
    _no_store(response)
    account = credentials.authenticate(store, body.username, body.password)
    if account is None:
        raise InvalidCredentialsError("Invalid credentials.")

    issue_login_otp(store, request.app.state.notifier, account)
    audit_logger.record(
        background, account.id, AuditAction.LOGIN_SUCCESS, request, {"username": account.username}
    )
    return LoginResponse(masked_channel=mask_email(account.username))


@router.post("/auth/verify-otp", response_model=TokenResponse)
@limiter.limit(settings.verify_otp_rate_limit)
def verify_otp(
    request: Request,
    response: Response,
    body: VerifyOtpRequest,
    background: BackgroundTasks,
) -> TokenResponse | JSONResponse:
    """Second factor: check the OTP and mint the session token.

    A missing code and a wrong code both answer "Invalid OTP.". Only
    expiry is reported separately, since the user must log in again.
    """
    store, audit_logger = _stores(request)
    _no_store(response)
    account = store.get_by_username(body.username)
    if account is None:
        burn_verify(body.otp)
        raise InvalidCredentialsError("Invalid OTP.")

    result = verify_login_otp(store, account.id, body.otp)
    if not result.ok:
        if result.reason is OtpFailure.EXPIRED:
            raise ExpiredError("OTP has expired. Please request a new login.")
        logger.info("OTP rejected for %s: %s", mask_email(account.username), result.reason.value)
        if result.reason is not OtpFailure.MISMATCH:
            raise InvalidCredentialsError("Invalid OTP.")
        # Returned rather than raised: background tasks only run on a returned response.
        audit_logger.record(
            background,
            account.id,
            AuditAction.OTP_VERIFICATION_FAILURE,
            request,
            {"username": account.username},
        )
        return JSONResponse(
            status_code=401,
            content=ErrorResponse(error=ErrorDetail(code="invalid_credentials", message="Invalid OTP.")).model_dump(),
            headers={"Cache-Control": "no-store"},
            background=background,
        )

    token = create_access_token(account.id)
    audit_logger.record(
        background, account.id, AuditAction.OTP_VERIFICATION_SUCCESS, request, {"username": account.username}
    )
    return TokenResponse(
        access_token=token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=settings.token_expire_seconds,
        username=account.username,
    )


@router.post("/auth/resend-otp", response_model=MessageResponse)
@limiter.limit(settings.resend_otp_rate_limit)
def resend_otp(request: Request, body: UsernameRequest) -> MessageResponse:
    """Replace the pending OTP with a fresh one. Silent for unknown usernames."""
    store, _ = _stores(request)
    notifier = _require_notifier(request)
    account = store.get_by_username(body.username)
    if account is not None:
        issue_login_otp(store, notifier, account)
    return MessageResponse(message=_RESEND_MESSAGE)


# ---------------------------------------------------------------------------
# Password reset (public)
# ---------------------------------------------------------------------------


@router.post("/auth/forgot-password", response_model=MessageResponse)
@limiter.limit(settings.forgot_password_rate_limit)
def forgot_password(request: Request, body: UsernameRequest) -> MessageResponse:
    """Store a reset token and mail the link. Silent for unknown usernames.

    If delivery fails the token is cleared so no undelivered link stays
    usable.
    """
    store, _ = _stores(request)
    notifier = _require_notifier(request)
    issued = credentials.issue_reset_token(store, body.username)
    if issued is None:
        return MessageResponse(message=_FORGOT_MESSAGE)

    account, token = issued
    reset_url = f"{settings.frontend_url.rstrip('/')}/cms/reset-password?{urlencode({'token': token})}"
    try:
        notifier.send_password_reset(
            account.username, reset_url, ttl_minutes=max(settings.reset_token_ttl_seconds // 60, 1)
        )
    except AuthError:
        credentials.clear_reset_token(store, account.id)
        raise
    except Exception as exc:
        credentials.clear_reset_token(store, account.id)
        logger.exception("Password reset mail to %s failed", mask_email(account.username))
        raise NotificationError("Failed to send password reset email. Please try again.") from exc
    return MessageResponse(message=_FORGOT_MESSAGE)


@router.post("/auth/reset-password", response_model=MessageResponse)
@limiter.limit(settings.reset_password_rate_limit)
def reset_password(request: Request, response: Response, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password from a reset token. The token works once."""
    store, _ = _stores(request)
    _no_store(response)
    if not credentials.consume_reset_token(store, body.token, body.new_password):
        raise InputValidationError("Invalid or expired reset token.", code="invalid_reset_token")
    return MessageResponse(message="Password reset successfully. You can now login with your new password.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/csrf-token", response_model=CsrfTokenResponse)
async def csrf_token(
    request: Request,
    response: Response,
    account: Account = Depends(get_current_account),
) -> CsrfTokenResponse:
    """Issue a CSRF token for the current account, replacing any earlier one."""
    csrf_store: CsrfTokenStore = request.app.state.csrf_store
    _no_store(response)
    return CsrfTokenResponse(csrf_token=csrf_store.issue(account.id))


@router.get("/auth/me", response_model=MeResponse)
async def me(account: Account = Depends(get_current_account)) -> MeResponse:
    """Return identity information for the currently authenticated account."""
    changed_at = account.password_changed_at
    return MeResponse(
        id=account.id,
        username=account.username,
        password_changed_at=changed_at.isoformat() if changed_at else None,
    )


@router.post("/auth/change-password", response_model=ChangePasswordResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    background: BackgroundTasks,
    account: Account = Depends(require_csrf),
) -> ChangePasswordResponse:
    """Change the password. Every session issued before now stops working."""
    store, audit_logger = _stores(request)
    credentials.change_password(store, account.id, body.current_password, body.new_password)
    request.app.state.csrf_store.revoke(account.id)
    audit_logger.record(background, account.id, AuditAction.PASSWORD_CHANGE, request)
    return ChangePasswordResponse()


@router.put("/auth/change-username", response_model=ChangeUsernameResponse)
def change_username(
    request: Request,
    body: ChangeUsernameRequest,
    background: BackgroundTasks,
    account: Account = Depends(require_csrf),
) -> ChangeUsernameResponse:
    """Change the login handle. Also invalidates every earlier session."""
    store, audit_logger = _stores(request)
    updated = credentials.change_username(store, account.id, body.new_username)
    request.app.state.csrf_store.revoke(account.id)
    audit_logger.record(
        background,
        account.id,
        AuditAction.USERNAME_CHANGE,
        request,
        {"old_username": account.username, "new_username": updated.username},
    )
    return ChangeUsernameResponse(new_username=updated.username)


@router.post("/auth/logout", response_model=LogoutResponse)
async def logout(
    request: Request,
    background: BackgroundTasks,
    account: Account = Depends(require_csrf),
) -> LogoutResponse:
    """Record the logout and drop the CSRF token.

    Session tokens are stateless, so there is nothing else to revoke. The
    client discards its token.
    """
    request.app.state.csrf_store.revoke(account.id)
    request.app.state.audit_logger.record(
        background, account.id, AuditAction.LOGOUT, request, {"username": account.username}
    )
    return LogoutResponse()
