"""
auth/dependencies.py -- FastAPI Depends() helpers: Session Guard and CSRF check.

Session Guard (get_current_account), per request:

  no Bearer token          -> 401
  bad signature / expired  -> 401
  account not found        -> 401
  iat < password_changed_at -> 401 (stale: credentials changed after issue)
  otherwise                -> the Account, also stored on request.state.account

Every 401 carries the same code and message. Which sub-check tripped is
logged at DEBUG and never returned to the caller.

The account row is re-read on every request. Caching password_changed_at
would let a session outlive a password change on another device.

require_csrf wraps get_current_account and additionally checks the
X-CSRF-Token header on mutating methods. Read-only methods pass through.

Layer rule: this module may import from fastapi because it is part of the
dependency injection system. No imports from api/ or audit/.
"""

from __future__ import annotations

import logging

from fastapi import Depends, Request

from auth.csrf import CsrfTokenStore
from auth.errors import CsrfError, UnauthorizedError
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import decode_access_token

logger = logging.getLogger("folioadmin.auth")

CSRF_HEADER = "X-CSRF-Token"
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

_UNAUTHORIZED_MESSAGE = "Not authorized."


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        return token or None
    return None


def resolve_session(store: AccountStore, token: str | None) -> tuple[Account | None, str]:
    """Run the Session Guard checks. Returns (account, outcome).

    outcome is "authorized" when account is not None, otherwise the name of
    the check that failed. Kept separate from the FastAPI dependency so it
    can be exercised without a request.
    """
    if not token:
        return None, "no_token"
    claims = decode_access_token(token)
    if claims is None:
        return None, "signature_invalid"
    account = store.get_by_id(claims.account_id)
    if account is None:
        return None, "account_missing"
    if account.password_changed_at is not None and claims.issued_at < account.password_changed_at.timestamp():
        return None, "stale"
    return account, "authorized"


def try_get_current_account(request: Request) -> Account | None:
    """Soft variant: the authenticated Account, or None. Never raises."""
    store: AccountStore = request.app.state.account_store
    account, outcome = resolve_session(store, _bearer_token(request))
    if account is None:
        logger.debug("Session rejected on %s %s: %s", request.method, request.url.path, outcome)
        return None
    request.state.account = account
    return account


def get_current_account(request: Request) -> Account:
    """Require a valid, non-stale session. Raises UnauthorizedError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(account: Account = Depends(get_current_account)): ...
    """
    account = try_get_current_account(request)
    if account is None:
        raise UnauthorizedError(_UNAUTHORIZED_MESSAGE)
    return account


def require_csrf(request: Request, account: Account = Depends(get_current_account)) -> Account:
    """Require a session and, on mutating methods, a matching CSRF token.

    Raises:
        CsrfError (403, csrf_missing): header absent on a mutating request.
        CsrfError (403, csrf_invalid): header present but not the live token.
    """
    if request.method not in MUTATING_METHODS:
        return account
    presented = request.headers.get(CSRF_HEADER)
    if not presented:
        raise CsrfError("CSRF token missing.", code="csrf_missing")
    csrf_store: CsrfTokenStore = request.app.state.csrf_store
    if not csrf_store.validate(account.id, presented):
        raise CsrfError("Invalid or expired CSRF token.")
    return account
