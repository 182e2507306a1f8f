"""
audit/retention.py -- Retention policy and cleanup for the audit trail.

Retention is not automatic. scripts/cleanup_audit_logs.py calls
cleanup_audit_logs(), which runs as a dry run unless told otherwise.

Window: AUDIT_LOG_RETENTION_DAYS (default 90). Any explicit override must
fall inside [7, 365] days; the 7-day floor guards against wiping recent
evidence with a typo.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from audit.models import AuditEntry
from audit.store import AuditStore
from core.config import MAXIMUM_RETENTION_DAYS, MINIMUM_RETENTION_DAYS, get_settings

logger = logging.getLogger("folioadmin.audit")

SAMPLE_SIZE = 5


@dataclass
class CleanupReport:
    retention_days: int
    cutoff: datetime
    dry_run: bool
    total: int
    eligible: int
    deleted: int = 0
    sample: list[AuditEntry] = field(default_factory=list)

    @property
    def kept(self) -> int:
        return self.total - self.eligible


def validate_retention_days(days: int) -> int:
    """Return days if it is an allowed retention window, else raise ValueError."""
    if not MINIMUM_RETENTION_DAYS <= days <= MAXIMUM_RETENTION_DAYS:
        raise ValueError(
            f"Retention days must be between {MINIMUM_RETENTION_DAYS} and {MAXIMUM_RETENTION_DAYS}"
        )
    return days


def retention_cutoff(days: int, now: datetime | None = None) -> datetime:
    """Entries created before the returned instant are eligible for deletion."""
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=days)


def cleanup_audit_logs(
    store: AuditStore,
    days: int | None = None,
    dry_run: bool = True,
    now: datetime | None = None,
) -> CleanupReport:
    """Delete (or, in dry-run mode, only count) entries older than the window.

    Args:
        store:   AuditStore to clean.
        days:    Retention window override. None = Settings.audit_log_retention_days.
        dry_run: When True (default) nothing is deleted.
        now:     Reference time, for tests.

    Raises:
        ValueError: days outside [7, 365].
    """
    retention_days = validate_retention_days(days if days is not None else get_settings().audit_log_retention_days)
    cutoff = retention_cutoff(retention_days, now)

    report = CleanupReport(
        retention_days=retention_days,
        cutoff=cutoff,
        dry_run=dry_run,
        total=store.count(),
        eligible=store.count_older_than(cutoff),
    )
    if report.eligible:
        report.sample = store.list_between(end=cutoff, limit=SAMPLE_SIZE)

    if dry_run or not report.eligible:
        return report

    report.deleted = store.delete_older_than(cutoff)
    logger.info(
        "Audit retention cleanup deleted %d entries older than %s (%d days)",
        report.deleted,
        cutoff.isoformat(),
        retention_days,
    )
    return report
