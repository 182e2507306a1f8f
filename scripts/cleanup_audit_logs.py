#!/usr/bin/env python3
"""
FolioAdmin -- delete audit log entries older than the retention window.

Dry run by default: prints what would be deleted and changes nothing.

Usage:
  python scripts/cleanup_audit_logs.py                 # dry run, default window
  python scripts/cleanup_audit_logs.py --confirm       # actually delete
  python scripts/cleanup_audit_logs.py --days 60 --confirm

Environment variables:
  AUDIT_LOG_RETENTION_DAYS  Default window in days (90; allowed 7..365).
  DATABASE_URL              Same database the API uses (see core/config.py).
"""

import argparse
import sys
from datetime import datetime, timezone

from audit.retention import SAMPLE_SIZE, cleanup_audit_logs, validate_retention_days
from audit.store import AuditStore


def _print_report(report) -> None:
    mode = "DRY RUN (no changes will be made)" if report.dry_run else "LIVE (entries will be deleted)"
    print("\nFolioAdmin -- Audit Log Cleanup")
    print("=" * 50)
    print(f"Mode:             {mode}")
    print(f"Retention period: {report.retention_days} days")
    print(f"Cutoff:           {report.cutoff.isoformat()}")
    print(f"Now:              {datetime.now(timezone.utc).isoformat()}")
    print("=" * 50)
    print(f"Total entries:    {report.total:,}")
    print(f"Eligible:         {report.eligible:,} (older than {report.retention_days} days)")
    print(f"Kept:             {report.kept:,}\n")

    if not report.eligible:
        print("  No entries need to be deleted. All entries are within the retention period.")
        return

    print("  Sample of eligible entries:")
    for index, entry in enumerate(report.sample, start=1):
        created = entry.created_at.isoformat() if entry.created_at else "?"
        print(f"    {index}. {entry.action.value} - {created} (admin {entry.admin_id})")
    if report.eligible > SAMPLE_SIZE:
        print(f"    ... and {report.eligible - SAMPLE_SIZE:,} more")
    print()

    if report.dry_run:
        print("  DRY RUN: nothing was deleted. Re-run with --confirm to delete.")
    else:
        print(f"  Deleted {report.deleted:,} entries.")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="cleanup-audit-logs",
        description="Remove audit log entries older than the retention window.",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        metavar="N",
        help="Retention window in days, 7..365 (default: AUDIT_LOG_RETENTION_DAYS or 90)",
    )
    parser.add_argument(
        "--confirm",
        action="store_true",
        help="Actually delete. Without this flag the run is a dry run.",
    )
    parser.add_argument(
        "--db-url",
        default=None,
        metavar="URL",
        help="SQLAlchemy database URL (default: DATABASE_URL setting)",
    )
    args = parser.parse_args(argv)

    if args.days is not None:
        try:
            validate_retention_days(args.days)
        except ValueError as exc:
            parser.error(str(exc))

    store = AuditStore(db_url=args.db_url)
    try:
        report = cleanup_audit_logs(store, days=args.days, dry_run=not args.confirm)
    finally:
        store.close()
    _print_report(report)
    return 0


if __name__ == "__main__":
    sys.exit(main())
