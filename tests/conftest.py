"""
tests/conftest.py -- Shared test fixtures for FolioAdmin tests.

This module provides:
  - make_test_stores(): isolated in-memory DBs for accounts + audit entries
  - RecordingNotifier: Notifier fake that captures OTP codes and reset links
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - account_store / audit_store: bare stores for unit tests
  - api_env: TestClient plus the stores and notifier behind it

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any auth/core import:
  DEBUG=true       -- get_settings() auto-generates SECRET_KEY in dev mode
  ALLOWED_HOSTS    -- TestClient sends Host: testserver
  DATABASE_URL     -- keeps a stray default store off the real database file
"""

from __future__ import annotations

import asyncio
import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set env before any auth/core import so get_settings() sees it.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost", "127.0.0.1"]')
os.environ.setdefault("DATABASE_URL", "sqlite:///file:folioadmin_default?mode=memory&cache=shared&uri=true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from audit.logger import AuditLogger
from audit.store import AuditStore
from auth.csrf import CsrfTokenStore
from auth.models import Account
from auth.store import AccountStore
from auth.tokens import hash_password

ADMIN_USERNAME = "admin@example.com"
ADMIN_PASSWORD = "s3cret-pass"

_db_counter = itertools.count()


# ---------------------------------------------------------------------------
# Notifier fake
# ---------------------------------------------------------------------------


class RecordingNotifier:
    """Captures outbound messages instead of sending them.

    Set fail to an exception instance to make every send raise it.
    """

    def __init__(self, configured: bool = True) -> None:
        self.configured = configured
        self.fail: Exception | None = None
        self.otps: list[tuple[str, str]] = []
        self.resets: list[tuple[str, str]] = []

    @property
    def is_configured(self) -> bool:
        return self.configured

    def send_login_otp(self, to: str, code: str, ttl_minutes: int) -> None:
        if self.fail is not None:
            raise self.fail
        self.otps.append((to, code))

    def send_password_reset(self, to: str, reset_url: str, ttl_minutes: int) -> None:
        if self.fail is not None:
            raise self.fail
        self.resets.append((to, reset_url))

    @property
    def last_otp(self) -> str:
        return self.otps[-1][1]

    @property
    def last_reset_token(self) -> str:
        return self.resets[-1][1].split("token=", 1)[1]


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_test_stores(db_suffix: str) -> tuple[AccountStore, AuditStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: String appended to the DB name. A process-wide counter is
                   added as well, so every call gets fresh databases.
    """
    n = next(_db_counter)
    account_url = f"sqlite:///file:test_accounts_{db_suffix}_{n}?mode=memory&cache=shared&uri=true"
    audit_url = f"sqlite:///file:test_audit_{db_suffix}_{n}?mode=memory&cache=shared&uri=true"
    return AccountStore(db_url=account_url), AuditStore(db_url=audit_url)


def create_admin(store: AccountStore, username: str = ADMIN_USERNAME, password: str = ADMIN_PASSWORD) -> int:
    return store.create_account(Account(username=username, hashed_password=hash_password(password)))


def _patch_lifespan(
    account_store: AccountStore,
    audit_store: AuditStore,
    notifier: RecordingNotifier,
    csrf_store: CsrfTokenStore,
):
    """Return an async context manager that replaces the real lifespan.

    The sweep_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = account_store
        app.state.audit_store = audit_store
        app.state.audit_logger = AuditLogger(audit_store)
        app.state.notifier = notifier
        app.state.csrf_store = csrf_store
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


@dataclass
class ApiEnv:
    client: TestClient
    account_store: AccountStore
    audit_store: AuditStore
    notifier: RecordingNotifier
    csrf_store: CsrfTokenStore
    admin_id: int
    extra: dict = field(default_factory=dict)

    def login(self, username: str = ADMIN_USERNAME, password: str = ADMIN_PASSWORD, **kwargs) -> str:
        """Run both login factors and return the session token."""
        resp = self.client.post("/api/v1/auth/login", json={"username": username, "password": password}, **kwargs)
        assert resp.status_code == 200, resp.text
        resp = self.client.post(
            "/api/v1/auth/verify-otp",
            json={"username": username, "otp": self.notifier.last_otp},
            **kwargs,
        )
        assert resp.status_code == 200, resp.text
        return resp.json()["access_token"]

    def client_from(self, host: str) -> TestClient:
        """A second client whose requests arrive from host.

        Shares the app state set up by self.client's lifespan.
        """
        return TestClient(self.client.app, raise_server_exceptions=True, client=(host, 50000))

    def csrf(self, token: str) -> str:
        resp = self.client.get("/api/v1/auth/csrf-token", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200, resp.text
        return resp.json()["csrf_token"]

    def auth_headers(self, token: str, csrf: str | None = None) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {token}"}
        if csrf is not None:
            headers["X-CSRF-Token"] = csrf
        return headers


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_rate_limits() -> Generator[None, None, None]:
    """Every test starts with empty rate-limit windows."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture()
def account_store() -> Generator[AccountStore, None, None]:
    store, audit = make_test_stores("unit")
    audit.close()
    yield store
    store.close()


@pytest.fixture()
def audit_store() -> Generator[AuditStore, None, None]:
    accounts, store = make_test_stores("unit")
    accounts.close()
    yield store
    store.close()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def api_env() -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers, dependencies and exception handlers but
    use isolated in-memory stores. One admin account exists up front.
    """
    account_store, audit_store = make_test_stores("api")
    admin_id = create_admin(account_store)
    notifier = RecordingNotifier()
    csrf_store = CsrfTokenStore()

    app.router.lifespan_context = _patch_lifespan(account_store, audit_store, notifier, csrf_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(
            client=client,
            account_store=account_store,
            audit_store=audit_store,
            notifier=notifier,
            csrf_store=csrf_store,
            admin_id=admin_id,
        )

    account_store.close()
    audit_store.close()
