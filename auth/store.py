"""
auth/store.py -- SQLAlchemy Core persistence layer for the admin account.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account is the mapper. Route and service code never touches SQL
directly.

Consistency: every write is a single-row UPDATE on one connection. That is
the unit of atomicity -- no multi-statement transactions are needed because
no operation spans two rows.

Timestamps are stored as ISO 8601 UTC strings and mapped to aware datetimes.

Security:
  All queries use bound parameters. No f-strings in SQL.
  password_changed_at is monotonic: bump_credentials_changed() writes
  max(stored, now) so a clock step backwards cannot revive stale tokens.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, func, select
from sqlalchemy.engine import Engine

from auth.models import Account
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("password_changed_at", String(32)),
    Column("reset_token", String(64), unique=True),
    Column("reset_token_expires_at", String(32)),
    Column("login_otp_hash", Text),
    Column("login_otp_expires_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Fields update_account() accepts. Everything else is either immutable (id,
# created_at) or owned by a dedicated method (password_changed_at).
_MUTABLE_FIELDS = {
    "username",
    "hashed_password",
    "reset_token",
    "reset_token_expires_at",
    "login_otp_hash",
    "login_otp_expires_at",
}


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime | None) -> str | None:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds") if value is not None else None


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _serialize_fields(fields: dict) -> dict:
    unknown = set(fields) - _MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown account fields: {unknown!r}")
    return {k: (_to_iso(v) if isinstance(v, datetime) else v) for k, v in fields.items()}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account entities.

    Usage:
        store = AccountStore()
        store.create_account(Account(username="me@example.com", hashed_password=hash_password("secret")))
        account = store.get_by_username("me@example.com")
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
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def has_accounts(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_accounts)).scalar()
        return (result or 0) > 0

    def get_by_id(self, account_id: int) -> Account | None:
        """Look up an account by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_username(self, username: str) -> Account | None:
        """Look up an account by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.username == username)).fetchone()
        return _row_to_account(row) if row is not None else None

    def find_username_owner(self, username: str) -> Account | None:
        """Case-insensitive username lookup, used for uniqueness checks on rename."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where(func.lower(_accounts.c.username) == username.lower())
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_by_reset_token(self, token: str) -> Account | None:
        """Look up an account by exact reset token. Expiry is the caller's check."""
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.reset_token == token)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_account(self, account: Account) -> int:
        """Insert a new account and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        now = _to_iso(utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(
                _accounts.insert().values(
                    username=account.username,
                    hashed_password=account.hashed_password,
                    password_changed_at=_to_iso(account.password_changed_at),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_account(self, account_id: int, **fields) -> bool:
        """Update mutable fields on an existing account in one UPDATE.

        Datetime values are serialized to ISO strings. Unknown fields raise
        ValueError rather than being silently dropped.

        Returns True if a row was updated, False if account_id was not found.
        """
        values = _serialize_fields(fields)
        values["updated_at"] = _to_iso(utcnow())
        with self.engine.connect() as conn:
            result = conn.execute(_accounts.update().where(_accounts.c.id == account_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def bump_credentials_changed(
        self, account_id: int, *, expected_reset_token: str | None = None, **fields
    ) -> datetime | None:
        """Apply a credential change and advance password_changed_at.

        The new timestamp is max(stored value, now) and is written in the
        same UPDATE as the credential fields, so the change and the session
        invalidation land together.

        expected_reset_token makes the UPDATE conditional on the row still
        holding that token, so two concurrent resets cannot both consume it.

        Returns the timestamp written, or None if no row matched.
        """
        current = self.get_by_id(account_id)
        if current is None:
            return None
        changed_at = utcnow()
        if current.password_changed_at is not None and current.password_changed_at > changed_at:
            changed_at = current.password_changed_at
        values = _serialize_fields(fields)
        values["password_changed_at"] = _to_iso(changed_at)
        values["updated_at"] = _to_iso(utcnow())
        with self.engine.connect() as conn:
            stmt = _accounts.update().where(_accounts.c.id == account_id)
            if expected_reset_token is not None:
                stmt = stmt.where(_accounts.c.reset_token == expected_reset_token)
            result = conn.execute(stmt.values(**values))
            conn.commit()
        return changed_at if result.rowcount > 0 else None

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        password_changed_at=_from_iso(row.password_changed_at),
        reset_token=row.reset_token,
        reset_token_expires_at=_from_iso(row.reset_token_expires_at),
        login_otp_hash=row.login_otp_hash,
        login_otp_expires_at=_from_iso(row.login_otp_expires_at),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
