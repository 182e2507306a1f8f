"""
tests/test_audit.py -- Unit tests for the audit package.

Covers:
  - client_ip / user_agent extraction for audit entries (X-Forwarded-For
    first hop, fallbacks). The rate limiter does not use client_ip.
  - AuditLogger validation, background scheduling and fail-safe writes
  - AuditStore listing, filtering and counting
  - retention: window validation, dry run, deletion
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from fastapi import BackgroundTasks
from starlette.requests import Request

from audit.logger import AuditLogger, client_ip, user_agent
from audit.models import AuditAction, AuditEntry
from audit.retention import cleanup_audit_logs, retention_cutoff, validate_retention_days
from audit.store import AuditStore

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("10.0.0.5", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


def _seed(store: AuditStore, ages_in_days: list[int], action: AuditAction = AuditAction.LOGOUT) -> None:
    for age in ages_in_days:
        store.append(AuditEntry(admin_id=1, action=action, created_at=NOW - timedelta(days=age)))


class TestRequestContext:
    def test_forwarded_for_first_hop_wins(self) -> None:
        req = _request({"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})
        assert client_ip(req) == "203.0.113.9"

    def test_falls_back_to_connection_address(self) -> None:
        assert client_ip(_request()) == "10.0.0.5"

    def test_unknown_without_any_source(self) -> None:
        assert client_ip(_request(client=None)) == "unknown"

    def test_user_agent_default(self) -> None:
        assert user_agent(_request()) == "unknown"
        assert user_agent(_request({"User-Agent": "pytest"})) == "pytest"


class TestAuditLogger:
    def test_write_is_deferred_to_background(self, audit_store: AuditStore) -> None:
        background = BackgroundTasks()
        AuditLogger(audit_store).record(
            background, 1, AuditAction.LOGIN_SUCCESS, _request({"User-Agent": "ua"}), {"username": "a@b.co"}
        )
        assert audit_store.count() == 0
        assert len(background.tasks) == 1

    def test_inline_write_captures_context(self, audit_store: AuditStore) -> None:
        AuditLogger(audit_store).record(None, 3, "PASSWORD_CHANGE", _request({"X-Forwarded-For": "1.2.3.4"}))
        [entry] = audit_store.list_entries()
        assert entry.admin_id == 3
        assert entry.action is AuditAction.PASSWORD_CHANGE
        assert entry.ip_address == "1.2.3.4"
        assert entry.user_agent == "unknown"
        assert entry.metadata == {}

    def test_unknown_action_is_dropped(self, audit_store: AuditStore, caplog) -> None:
        with caplog.at_level(logging.ERROR, logger="folioadmin.audit"):
            AuditLogger(audit_store).record(None, 1, "SELF_DESTRUCT")
        assert audit_store.count() == 0
        assert "invalid action" in caplog.text

    def test_missing_admin_id_is_dropped(self, audit_store: AuditStore) -> None:
        AuditLogger(audit_store).record(None, None, AuditAction.LOGOUT)
        assert audit_store.count() == 0

    def test_storage_failure_is_absorbed(self, caplog) -> None:
        broken = MagicMock(spec=AuditStore)
        broken.append.side_effect = RuntimeError("database is locked")
        with caplog.at_level(logging.ERROR, logger="folioadmin.audit"):
            AuditLogger(broken).record(None, 1, AuditAction.LOGOUT)
        assert "Failed to log admin activity" in caplog.text


class TestAuditStore:
    def test_list_is_newest_first_and_paginated(self, audit_store: AuditStore) -> None:
        _seed(audit_store, [3, 1, 2])
        page1 = audit_store.list_entries(page=1, limit=2)
        page2 = audit_store.list_entries(page=2, limit=2)
        assert [e.created_at for e in page1] == [NOW - timedelta(days=1), NOW - timedelta(days=2)]
        assert [e.created_at for e in page2] == [NOW - timedelta(days=3)]

    def test_filters(self, audit_store: AuditStore) -> None:
        _seed(audit_store, [1, 2], action=AuditAction.LOGOUT)
        _seed(audit_store, [1], action=AuditAction.PASSWORD_CHANGE)
        audit_store.append(AuditEntry(admin_id=2, action=AuditAction.LOGOUT, created_at=NOW))
        assert audit_store.count() == 4
        assert audit_store.count(action="LOGOUT") == 3
        assert audit_store.count(admin_id=2) == 1
        assert [e.admin_id for e in audit_store.list_entries(action="LOGOUT", admin_id=2)] == [2]

    def test_metadata_round_trips(self, audit_store: AuditStore) -> None:
        audit_store.append(AuditEntry(admin_id=1, action=AuditAction.USERNAME_CHANGE, metadata={"old": "a", "new": "b"}))
        assert audit_store.list_entries()[0].metadata == {"old": "a", "new": "b"}


class TestRetention:
    @pytest.mark.parametrize("days", [7, 90, 365])
    def test_allowed_windows(self, days: int) -> None:
        assert validate_retention_days(days) == days

    @pytest.mark.parametrize("days", [0, 6, 366])
    def test_rejected_windows(self, days: int) -> None:
        with pytest.raises(ValueError):
            validate_retention_days(days)

    def test_cutoff(self) -> None:
        assert retention_cutoff(90, NOW) == NOW - timedelta(days=90)

    def test_dry_run_reports_without_deleting(self, audit_store: AuditStore) -> None:
        _seed(audit_store, [200, 100, 95, 10, 1])
        report = cleanup_audit_logs(audit_store, days=90, now=NOW)
        assert report.dry_run is True
        assert (report.total, report.eligible, report.kept, report.deleted) == (5, 3, 2, 0)
        assert [e.created_at for e in report.sample][0] == NOW - timedelta(days=200)
        assert audit_store.count() == 5

    def test_confirmed_run_deletes_only_old_entries(self, audit_store: AuditStore) -> None:
        _seed(audit_store, [200, 100, 95, 10, 1])
        report = cleanup_audit_logs(audit_store, days=90, dry_run=False, now=NOW)
        assert report.deleted == 3
        assert audit_store.count() == 2

    def test_default_window_comes_from_settings(self, audit_store: AuditStore) -> None:
        _seed(audit_store, [91, 89])
        report = cleanup_audit_logs(audit_store, now=NOW)
        assert report.retention_days == 90
        assert report.eligible == 1

    def test_nothing_eligible(self, audit_store: AuditStore) -> None:
        _seed(audit_store, [1])
        report = cleanup_audit_logs(audit_store, days=7, dry_run=False, now=NOW)
        assert report.eligible == 0 and report.deleted == 0 and report.sample == []

    def test_invalid_override_raises(self, audit_store: AuditStore) -> None:
        with pytest.raises(ValueError):
            cleanup_audit_logs(audit_store, days=3, now=NOW)
