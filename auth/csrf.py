"""
auth/csrf.py -- Double-submit CSRF tokens for authenticated mutations.

The client fetches a token from GET /auth/csrf-token and echoes it in the
X-CSRF-Token header on every POST/PUT/PATCH/DELETE. One live token per
account: issuing a new one replaces the old even if it has not expired.

Pattern: Strategy. CsrfTokenStore holds the policy (entropy, lifetime,
comparison). CsrfBackend is the storage seam -- get/set/delete/sweep. The
default InMemoryCsrfBackend is one dict behind a threading.Lock, which is
only correct for a single-process deployment. A shared backend (e.g. Redis)
can be dropped in via app.state.csrf_store without touching call sites.

Expired entries are removed two ways: on the validate() that finds them,
and by sweep_expired(), which the API lifespan runs every 30 minutes.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
import time
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger("folioadmin.csrf")

DEFAULT_TTL_SECONDS = 60 * 60


@dataclass(frozen=True)
class CsrfEntry:
    token: str
    expires_at: float  # epoch seconds


class CsrfBackend(Protocol):
    def get(self, account_id: int) -> CsrfEntry | None: ...

    def set(self, account_id: int, entry: CsrfEntry) -> None: ...

    def delete(self, account_id: int) -> None: ...

    def sweep(self, now: float) -> int: ...


class InMemoryCsrfBackend:
    """Process-local CSRF entries. Safe under concurrent access from the threadpool."""

    def __init__(self) -> None:
        self._entries: dict[int, CsrfEntry] = {}
        self._lock = threading.Lock()

    def get(self, account_id: int) -> CsrfEntry | None:
        with self._lock:
            return self._entries.get(account_id)

    def set(self, account_id: int, entry: CsrfEntry) -> None:
        with self._lock:
            self._entries[account_id] = entry

    def delete(self, account_id: int) -> None:
        with self._lock:
            self._entries.pop(account_id, None)

    def sweep(self, now: float) -> int:
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class CsrfTokenStore:
    """Issue and check CSRF tokens against a pluggable backend."""

    def __init__(self, backend: CsrfBackend | None = None, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> None:
        self.backend: CsrfBackend = backend if backend is not None else InMemoryCsrfBackend()
        self.ttl_seconds = ttl_seconds

    def issue(self, account_id: int) -> str:
        token = secrets.token_hex(32)
        self.backend.set(account_id, CsrfEntry(token=token, expires_at=time.time() + self.ttl_seconds))
        return token

    def validate(self, account_id: int, presented: str | None) -> bool:
        """True only for the most recently issued, unexpired token of account_id."""
        if not presented:
            return False
        entry = self.backend.get(account_id)
        if entry is None:
            return False
        if time.time() > entry.expires_at:
            self.backend.delete(account_id)
            return False
        return hmac.compare_digest(entry.token.encode("utf-8"), presented.encode("utf-8"))

    def revoke(self, account_id: int) -> None:
        self.backend.delete(account_id)

    def sweep_expired(self) -> int:
        removed = self.backend.sweep(time.time())
        if removed:
            logger.info("Swept %d expired CSRF token(s)", removed)
        return removed
