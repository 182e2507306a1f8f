"""
tests/test_csrf.py -- Unit tests for auth/csrf.py.

Covers:
  - only the most recently issued token validates
  - expired tokens fail and are evicted
  - revoke and sweep
  - tokens are per account
  - a custom backend plugs in through the CsrfBackend protocol
"""

from __future__ import annotations

import time

from auth.csrf import CsrfEntry, CsrfTokenStore, InMemoryCsrfBackend


class TestCsrfTokenStore:
    def test_issued_token_validates(self) -> None:
        store = CsrfTokenStore()
        token = store.issue(1)
        assert len(token) == 64
        assert store.validate(1, token)

    def test_only_latest_token_is_valid(self) -> None:
        store = CsrfTokenStore()
        old = store.issue(1)
        new = store.issue(1)
        assert not store.validate(1, old)
        assert store.validate(1, new)

    def test_missing_or_wrong_token(self) -> None:
        store = CsrfTokenStore()
        assert not store.validate(1, "anything")
        store.issue(1)
        assert not store.validate(1, None)
        assert not store.validate(1, "")
        assert not store.validate(1, "f" * 64)
        assert not store.validate(1, "ünïcode")

    def test_tokens_are_per_account(self) -> None:
        store = CsrfTokenStore()
        token = store.issue(1)
        assert not store.validate(2, token)

    def test_expired_token_fails_and_is_evicted(self) -> None:
        backend = InMemoryCsrfBackend()
        store = CsrfTokenStore(backend=backend, ttl_seconds=-1)
        token = store.issue(1)
        assert not store.validate(1, token)
        assert len(backend) == 0

    def test_revoke(self) -> None:
        store = CsrfTokenStore()
        token = store.issue(1)
        store.revoke(1)
        assert not store.validate(1, token)
        store.revoke(1)  # idempotent

    def test_sweep_removes_only_expired(self) -> None:
        backend = InMemoryCsrfBackend()
        store = CsrfTokenStore(backend=backend)
        live = store.issue(1)
        backend.set(2, CsrfEntry(token="stale", expires_at=time.time() - 10))
        assert store.sweep_expired() == 1
        assert len(backend) == 1
        assert store.validate(1, live)


class DictBackend:
    """Minimal CsrfBackend, standing in for shared storage."""

    def __init__(self) -> None:
        self.data: dict[int, CsrfEntry] = {}

    def get(self, account_id):
        return self.data.get(account_id)

    def set(self, account_id, entry):
        self.data[account_id] = entry

    def delete(self, account_id):
        self.data.pop(account_id, None)

    def sweep(self, now):
        expired = [k for k, v in self.data.items() if v.expires_at < now]
        for k in expired:
            del self.data[k]
        return len(expired)


def test_custom_backend_is_used() -> None:
    backend = DictBackend()
    store = CsrfTokenStore(backend=backend)
    token = store.issue(7)
    assert backend.data[7].token == token
    assert store.validate(7, token)
