"""
auth/otp.py -- Second login factor: a 6-digit one-time passcode.

Lifecycle of a code:
  issue_login_otp()  -> stored as a bcrypt hash with a 5-minute expiry,
                        replacing any pending code, then delivered.
  verify_login_otp() -> single use. Success or expiry clears the stored hash.

Delivery failure rolls back: the hash and expiry are cleared before the
error propagates, so a code the user never received is never left valid.

Verification reasons are kept apart internally (no-pending-otp, expired,
mismatch). Callers may only surface "expired" separately; a missing code and
a wrong code get the same "Invalid OTP." message.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import timedelta

from auth.errors import AuthError, NotificationError
from auth.models import Account
from auth.notify import Notifier, mask_email
from auth.store import AccountStore, utcnow
from auth.tokens import generate_otp, hash_password, verify_password
from core.config import get_settings

logger = logging.getLogger("folioadmin.auth")


class OtpFailure(str, enum.Enum):
    NO_PENDING = "no-pending-otp"
    EXPIRED = "expired"
    MISMATCH = "mismatch"


@dataclass(frozen=True)
class OtpVerification:
    ok: bool
    reason: OtpFailure | None = None


def issue_login_otp(store: AccountStore, notifier: Notifier, account: Account) -> str:
    """Generate, store and deliver a login code for account. Returns the code.

    Raises whatever the notifier raises (NotConfiguredError,
    NotificationError) after clearing the stored code.
    """
    ttl = get_settings().otp_ttl_seconds
    code = generate_otp()
    store.update_account(
        account.id,
        login_otp_hash=hash_password(code),
        login_otp_expires_at=utcnow() + timedelta(seconds=ttl),
    )
    try:
        notifier.send_login_otp(account.username, code, ttl_minutes=max(ttl // 60, 1))
    except AuthError:
        _clear(store, account.id)
        raise
    except Exception as exc:
        _clear(store, account.id)
        logger.exception("OTP delivery to %s failed", mask_email(account.username))
        raise NotificationError("Failed to send OTP. Please try again.") from exc
    return code


def verify_login_otp(store: AccountStore, account_id: int, candidate: str) -> OtpVerification:
    """Check candidate against the pending code for account_id."""
    account = store.get_by_id(account_id)
    if account is None or not account.login_otp_hash or account.login_otp_expires_at is None:
        return OtpVerification(ok=False, reason=OtpFailure.NO_PENDING)

    if account.login_otp_expires_at < utcnow():
        _clear(store, account_id)
        return OtpVerification(ok=False, reason=OtpFailure.EXPIRED)

    if not verify_password(candidate.strip(), account.login_otp_hash):
        return OtpVerification(ok=False, reason=OtpFailure.MISMATCH)

    _clear(store, account_id)
    return OtpVerification(ok=True)


def _clear(store: AccountStore, account_id: int) -> None:
    store.update_account(account_id, login_otp_hash=None, login_otp_expires_at=None)
