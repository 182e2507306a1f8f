"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these classes own the domain shape.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Account:
    """The administrative identity that owns the portfolio.

    username doubles as the e-mail address: it is the login handle and the
    channel OTP codes and reset links are delivered to. It is stored
    lower-cased.

    password_changed_at is bumped on every credential change (password,
    username, reset). Session tokens issued before it are stale. It never
    moves backwards -- AccountStore enforces that on write.

    reset_token / login_otp_hash are transient secrets. At most one of each
    is pending at a time; issuing a new one overwrites the old.
    """

    username: str
    hashed_password: str
    id: int | None = None
    password_changed_at: datetime | None = None
    reset_token: str | None = None
    reset_token_expires_at: datetime | None = None
    login_otp_hash: str | None = None  # bcrypt digest, never the code itself
    login_otp_expires_at: datetime | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class TokenClaims:
    """Verified claims of a session token.

    issued_at is float seconds since the epoch so a token minted in the same
    second as a credential change is still ordered correctly against it.
    """

    account_id: int
    issued_at: float
