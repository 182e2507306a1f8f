"""
auth/tokens.py -- JWT session tokens, password hashing, and secret generation.

Security design decisions:
  JWT: python-jose with HS256. Tokens carry only the account id (sub), the
       issue time (iat) and the expiry (exp). Nothing else is trusted from the
       token -- the Session Guard re-reads the account on every request and
       compares iat against password_changed_at. Verification returns None on
       any failure; the dependency layer turns that into a 401.

       iat is written with sub-second precision. A token minted a few
       milliseconds before a credential change must compare as older than the
       change, which whole seconds cannot express.

  Passwords and OTP codes: bcrypt directly (no passlib wrapper). Both are
       low-entropy secrets, which is what bcrypt's cost factor is for. The
       _DUMMY_HASH constant enables timing equalization in the credential
       check so response time does not reveal whether a username exists.

  Reset tokens: secrets.token_hex(32), 256 bits of entropy, stored as-is and
       looked up by exact match. They are single use and short lived.

  SECRET_KEY: sourced from core.config.get_settings(). Dev mode auto-generates
       a key with a warning; production refuses to start without one.

Layer rule: no imports from api/ or audit/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
import time

import bcrypt
from jose import JWTError, jwt

from auth.models import TokenClaims
from core.config import get_settings

logger = logging.getLogger("folioadmin.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

OTP_DIGITS = 6

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext secret.

    bcrypt rejects inputs over 72 UTF-8 bytes with ValueError.
    auth.credentials refuses such passwords before they get here.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext matches the bcrypt hash.

    A malformed stored hash is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash.
# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("folioadmin_timing_dummy")


def burn_verify(plain: str) -> None:
    """Run one bcrypt comparison whose result is discarded.

    Called on the unknown-account path so it costs the same as a real check.
    """
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(account_id: int, expire_seconds: int = 0, issued_at: float | None = None) -> str:
    """Encode a signed session token for account_id.

    Args:
        account_id:     Numeric account ID stored in the DB.
        expire_seconds: Token lifetime in seconds. If 0 (default), uses
                        Settings.token_expire_seconds, which follows the
                        deployment profile (30 days dev, 7 days production).
        issued_at:      Issue time as epoch seconds. Defaults to now; tests
                        pass an explicit value to mint tokens "in the past".
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    iat = time.time() if issued_at is None else issued_at
    payload = {
        "sub": str(account_id),
        "iat": iat,
        "exp": int(iat + duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> TokenClaims | None:
    """Decode and verify a session token. Returns its claims or None on any failure.

    Fails on a bad signature, an expired token, or structurally incomplete
    claims (missing or non-numeric sub, missing iat).
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    sub = payload.get("sub")
    iat = payload.get("iat")
    if sub is None or iat is None:
        return None
    try:
        return TokenClaims(account_id=int(sub), issued_at=float(iat))
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Transient secrets
# ---------------------------------------------------------------------------


def generate_reset_token() -> str:
    """Return a 64-hex-character password reset token (256 bits of entropy)."""
    return secrets.token_hex(32)


def generate_otp() -> str:
    """Return a uniformly distributed 6-digit code, leading zeros included."""
    return f"{secrets.randbelow(10**OTP_DIGITS):0{OTP_DIGITS}d}"
