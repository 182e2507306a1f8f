"""
auth/credentials.py -- Password, username and reset-token operations.

Every function takes the AccountStore explicitly (same style as the token
helpers) so routes, scripts and tests call them the same way.

Security:
  Unknown usernames fail closed and run bcrypt against a dummy hash first,
  so neither the return value nor the response time tells a caller whether
  the account exists.

  Every successful credential change goes through
  AccountStore.bump_credentials_changed(), which advances
  password_changed_at in the same UPDATE. The Session Guard rejects any
  token issued before that instant.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import logging
import re
from datetime import timedelta

from auth.errors import InputValidationError, InvalidCredentialsError, UnauthorizedError
from auth.models import Account
from auth.store import AccountStore, utcnow
from auth.tokens import burn_verify, generate_reset_token, hash_password, verify_password
from core.config import get_settings

logger = logging.getLogger("folioadmin.auth")

MIN_PASSWORD_LENGTH = 6
# bcrypt refuses inputs longer than this many UTF-8 bytes.
MAX_PASSWORD_BYTES = 72

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def authenticate(store: AccountStore, username: str, candidate: str) -> Account | None:
    """Return the account if username/password match, None on any failure.

    Always runs bcrypt whether or not the account exists.
    """
    account = store.get_by_username(username)
    if account is None:
        burn_verify(candidate)
        return None
    if not verify_password(candidate, account.hashed_password):
        return None
    return account


def verify_credentials(store: AccountStore, username: str, candidate: str) -> bool:
    return authenticate(store, username, candidate) is not None


# ---------------------------------------------------------------------------
# Credential changes (authenticated)
# ---------------------------------------------------------------------------


def _require_account(store: AccountStore, account_id: int) -> Account:
    account = store.get_by_id(account_id)
    if account is None:
        raise UnauthorizedError("Not authorized. Please login again.")
    return account


def _check_password_length(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise InputValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long.")
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise InputValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes long.")


def change_password(store: AccountStore, account_id: int, current: str, new: str) -> Account:
    """Replace the account password and invalidate every earlier session.

    Raises:
        InputValidationError:    new password too short, or same as current.
        InvalidCredentialsError: current password does not verify.
        UnauthorizedError:       the account no longer exists.
    """
    _check_password_length(new)
    account = _require_account(store, account_id)
    if not verify_password(current, account.hashed_password):
        raise InvalidCredentialsError("Current password is incorrect.")
    if verify_password(new, account.hashed_password):
        raise InputValidationError("New password must be different from current password.")

    changed_at = store.bump_credentials_changed(account_id, hashed_password=hash_password(new))
    if changed_at is None:
        raise UnauthorizedError("Not authorized. Please login again.")
    logger.info("Password changed for account %d", account_id)
    return _require_account(store, account_id)


def normalize_username(raw: str) -> str:
    """Trim and lower-case a username, then require an e-mail shape."""
    username = raw.strip().lower()
    if not username:
        raise InputValidationError("New username (email) is required.")
    if not _EMAIL_RE.match(username):
        raise InputValidationError("Please provide a valid email address.")
    return username


def change_username(store: AccountStore, account_id: int, new_username: str) -> Account:
    """Rename the account (its login handle and mail channel).

    The rename also advances password_changed_at: existing sessions were
    authenticated under the old handle and must log in again.
    """
    username = normalize_username(new_username)
    account = _require_account(store, account_id)
    if account.username.lower() == username:
        raise InputValidationError("New username must be different from current username.")
    owner = store.find_username_owner(username)
    if owner is not None and owner.id != account_id:
        raise InputValidationError("This username (email) is already in use.")

    changed_at = store.bump_credentials_changed(account_id, username=username)
    if changed_at is None:
        raise UnauthorizedError("Not authorized. Please login again.")
    logger.info("Username changed for account %d", account_id)
    return _require_account(store, account_id)


# ---------------------------------------------------------------------------
# Password reset (unauthenticated)
# ---------------------------------------------------------------------------


def issue_reset_token(store: AccountStore, username: str) -> tuple[Account, str] | None:
    """Store a fresh reset token for username and return (account, token).

    Unknown usernames are a silent no-op returning None; the caller must
    answer with the same generic message either way. A new token replaces
    any pending one.
    """
    account = store.get_by_username(username)
    if account is None:
        return None
    token = generate_reset_token()
    expires_at = utcnow() + timedelta(seconds=get_settings().reset_token_ttl_seconds)
    store.update_account(account.id, reset_token=token, reset_token_expires_at=expires_at)
    return account, token


def clear_reset_token(store: AccountStore, account_id: int) -> None:
    store.update_account(account_id, reset_token=None, reset_token_expires_at=None)


def consume_reset_token(store: AccountStore, token: str, new_password: str) -> bool:
    """Set a new password using a pending reset token. Single use.

    The length check runs before the lookup so a rejected password never
    burns the token. Returns False for unknown or expired tokens.
    """
    _check_password_length(new_password)
    account = store.get_by_reset_token(token)
    if account is None or account.reset_token_expires_at is None:
        return False
    if account.reset_token_expires_at <= utcnow():
        return False

    changed_at = store.bump_credentials_changed(
        account.id,
        expected_reset_token=token,
        hashed_password=hash_password(new_password),
        reset_token=None,
        reset_token_expires_at=None,
    )
    if changed_at is None:
        return False
    logger.info("Password reset completed for account %d", account.id)
    return True


# ---------------------------------------------------------------------------
# Bootstrap (scripts/create_admin.py)
# ---------------------------------------------------------------------------


def create_or_reset_admin(store: AccountStore, username: str, password: str) -> tuple[Account, bool]:
    """Create the admin account, or reset its password if it already exists.

    Returns (account, created). A reset goes through the same
    password_changed_at bump as change_password, so sessions issued under
    the old password stop working.
    """
    username = normalize_username(username)
    _check_password_length(password)
    existing = store.find_username_owner(username)
    if existing is None:
        account_id = store.create_account(Account(username=username, hashed_password=hash_password(password)))
        logger.info("Admin account %d created", account_id)
        return _require_account(store, account_id), True

    store.bump_credentials_changed(
        existing.id,
        hashed_password=hash_password(password),
        login_otp_hash=None,
        login_otp_expires_at=None,
        reset_token=None,
        reset_token_expires_at=None,
    )
    logger.info("Admin account %d password reset", existing.id)
    return _require_account(store, existing.id), False
