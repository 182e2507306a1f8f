"""
api/main.py -- FastAPI application entry point for FolioAdmin.

Exposes the admin authentication flow (password + OTP login, session
tokens, CSRF tokens, password reset) and the audit trail over HTTP for the
portfolio CMS front end.

Install deps:  pip install -e .
Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for the CMS front end origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan handles startup (stores, notifier, CSRF sweep task) and shutdown
(cancel sweep task, close DB connections) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.activity import router as activity_router
from api.routes.v1.auth import router as auth_router
from audit.logger import AuditLogger
from audit.store import AuditStore
from auth.csrf import CsrfTokenStore
from auth.dependencies import get_current_account
from auth.errors import AuthError, RateLimitedError
from auth.models import Account
from auth.notify import SmtpNotifier
from auth.store import AccountStore
from core.config import get_settings

API_VERSION = "0.1.0"

settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("folioadmin.api")

# ---------------------------------------------------------------------------
# Background CSRF sweep task
# ---------------------------------------------------------------------------


async def _csrf_sweep_loop(app: FastAPI, interval_seconds: int) -> None:
    """Evict expired CSRF tokens every interval_seconds.

    validate() already evicts an expired token when it is presented; the
    sweep bounds memory for tokens that are never presented again.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        app.state.csrf_store.sweep_expired()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Startup order matters:
      1. Stores first -- routes and dependencies read them from app.state.
      2. Audit logger second -- wraps the audit store.
      3. Sweep task last -- references app.state.csrf_store.
    """
    # Startup
    logger.info("FolioAdmin API starting up (debug=%s)", settings.debug)
    app.state.account_store = AccountStore()
    app.state.audit_store = AuditStore()
    app.state.audit_logger = AuditLogger(app.state.audit_store)
    app.state.notifier = SmtpNotifier.from_settings(settings)
    app.state.csrf_store = CsrfTokenStore(ttl_seconds=settings.csrf_token_ttl_seconds)
    if not app.state.account_store.has_accounts():
        logger.warning("No admin account exists yet -- run scripts/create_admin.py")
    if not app.state.notifier.is_configured:
        logger.warning("SMTP is not configured -- login OTPs and reset links cannot be delivered")
    app.state.sweep_task = asyncio.create_task(_csrf_sweep_loop(app, settings.csrf_sweep_interval_seconds))

    yield

    # Shutdown
    app.state.sweep_task.cancel()
    app.state.account_store.close()
    app.state.audit_store.close()
    logger.info("FolioAdmin API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="FolioAdmin API",
    description="Admin authentication, session integrity and audit trail for the portfolio CMS.",
    version=API_VERSION,
    lifespan=lifespan,
    # /docs and /redoc are registered below behind get_current_account.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-CSRF-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Latency is wall-clock time around call_next.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(activity_router, prefix="/api/v1", tags=["Activity"])


# ---------------------------------------------------------------------------
# Auth-protected API documentation
#
# /docs and /redoc are disabled on the FastAPI() constructor and replaced
# here with routes that require a valid session token.
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(account: Account = Depends(get_current_account)):
    """Swagger UI for signed-in admins."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="FolioAdmin API")


@app.get("/redoc", include_in_schema=False)
async def redoc(account: Account = Depends(get_current_account)):
    """ReDoc for signed-in admins."""
    return get_redoc_html(openapi_url="/openapi.json", title="FolioAdmin API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every handler answers with the ErrorResponse envelope:
#   {"error": {"code": ..., "message": ..., "detail": ...}}
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map the auth error taxonomy onto the envelope.

    The message is already caller-safe; internal reasons were logged where
    the error was raised.
    """
    response = _error(exc.status_code, exc.code, exc.message)
    if exc.status_code in (401, 429) or request.url.path.startswith("/api/v1/auth/"):
        response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After is the length of the exceeded window, an upper bound on the
    wait for a moving window.
    """
    limit = getattr(exc, "limit", None)
    retry_after = limit.limit.get_expiry() if limit is not None else 60
    logger.warning("Rate limit exceeded on %s (%s)", request.url.path, exc.detail)
    err = RateLimitedError("Too many attempts. Please try again later.")
    response = _error(err.status_code, err.code, err.message, str(exc.detail))
    response.headers["Cache-Control"] = "no-store"
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it -- str(dict) produces a Python repr,
    not JSON.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The stack trace goes to the log. The response carries the exception type
    and message only in the debug profile; production clients get a generic
    message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    detail = f"{type(exc).__name__}: {exc}" if settings.debug else None
    return _error(500, "internal_error", "An unexpected error occurred.", detail)


# ---------------------------------------------------------------------------
# Health endpoint
#
# Unauthenticated and exempt from rate limits. Reports "degraded" when the
# account database cannot be queried.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version and database reachability."""
    try:
        request.app.state.account_store.has_accounts()
        database = "ok"
    except Exception:
        logger.exception("Health check: account database unreachable")
        database = "error"
    return HealthResponse(
        status="ok" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )
