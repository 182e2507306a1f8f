"""
audit/store.py -- SQLAlchemy Core persistence for audit entries.

Pattern: Repository + Data Mapper (same shape as auth/store.py).
AuditStore is append-only from the application's point of view: append()
is the only write the request path uses. delete_older_than() exists for the
retention cleanup and nothing else.

Indexes mirror the read paths: newest-first listing, filtering by admin or
action, and the created_at range scan the cleanup does.

Metadata is a free-form dict serialized as JSON text.

Security: all queries use bound parameters. No f-strings in SQL.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from audit.models import AuditAction, AuditEntry
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_activity = Table(
    "admin_activity",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("admin_id", Integer, nullable=False),
    Column("action", String(40), nullable=False),
    Column("metadata", Text, nullable=False, server_default="{}"),  # JSON object
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("created_at", String(32), nullable=False),
    Index("ix_admin_activity_admin_created", "admin_id", "created_at"),
    Index("ix_admin_activity_action_created", "action", "created_at"),
    Index("ix_admin_activity_created", "created_at"),
)


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class AuditStore:
    """Repository for AuditEntry records.

    Usage:
        store = AuditStore()
        store.append(AuditEntry(admin_id=1, action=AuditAction.LOGOUT))
        rows = store.list_entries(page=1, limit=20)
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def append(self, entry: AuditEntry) -> int:
        """Insert one entry and return its ID. created_at defaults to now."""
        created_at = entry.created_at or datetime.now(timezone.utc)
        with self.engine.connect() as conn:
            result = conn.execute(
                _activity.insert().values(
                    admin_id=entry.admin_id,
                    action=AuditAction(entry.action).value,
                    metadata=json.dumps(entry.metadata or {}, default=str),
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    created_at=_to_iso(created_at),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def delete_older_than(self, cutoff: datetime) -> int:
        """Bulk-delete entries created before cutoff. Returns rows removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_activity.delete().where(_activity.c.created_at < _to_iso(cutoff)))
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def count(self, action: str | None = None, admin_id: int | None = None) -> int:
        stmt = select(func.count()).select_from(_activity)
        stmt = _apply_filters(stmt, action, admin_id)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def count_older_than(self, cutoff: datetime) -> int:
        stmt = select(func.count()).select_from(_activity).where(_activity.c.created_at < _to_iso(cutoff))
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def list_entries(
        self,
        page: int = 1,
        limit: int = 20,
        action: str | None = None,
        admin_id: int | None = None,
    ) -> list[AuditEntry]:
        """Return one page of entries, newest first."""
        stmt = _apply_filters(_activity.select(), action, admin_id)
        stmt = stmt.order_by(_activity.c.created_at.desc(), _activity.c.id.desc())
        stmt = stmt.offset((page - 1) * limit).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_entry(r) for r in rows]

    def list_between(
        self,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int | None = None,
    ) -> list[AuditEntry]:
        """Return entries with start <= created_at < end, oldest first."""
        stmt = _activity.select()
        if start is not None:
            stmt = stmt.where(_activity.c.created_at >= _to_iso(start))
        if end is not None:
            stmt = stmt.where(_activity.c.created_at < _to_iso(end))
        stmt = stmt.order_by(_activity.c.created_at.asc(), _activity.c.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers and row mapper
# ---------------------------------------------------------------------------


def _apply_filters(stmt, action: str | None, admin_id: int | None):
    if action:
        stmt = stmt.where(_activity.c.action == action)
    if admin_id is not None:
        stmt = stmt.where(_activity.c.admin_id == admin_id)
    return stmt


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        admin_id=row.admin_id,
        action=AuditAction(row.action),
        metadata=json.loads(row._mapping["metadata"] or "{}"),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=datetime.fromisoformat(row.created_at),
    )
