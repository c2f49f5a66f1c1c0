"""
auth/store.py -- Token database port and its SQLAlchemy Core implementation.

Pattern: Port + Repository + Data Mapper (same shape as the other stores).
TokenDatabase is the port the blacklist manager consumes; TokenStore is the
default adapter behind it; _row_to_revocation is the mapper.

Port contract:
  Every method returns a StoreResult instead of raising. A storage fault is a
  value the caller must look at, not an exception that slips across the
  abstraction. Single-record writes are atomic; reads after a write in the
  same process observe that write.

Timestamps are stored as fixed-width ISO 8601 UTC strings (microsecond
precision) so string comparison in SQL matches chronological order.

Security:
  All queries use bound parameters. Table names come from configuration,
  never from request input.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Generic, Optional, Protocol, TypeVar

from sqlalchemy import Column, MetaData, String, Table, Text, create_engine, event, select, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import BlacklistEntry, GlobalRevocation

logger = logging.getLogger("tokenguard.store")

T = TypeVar("T")


class TokenStorageError(RuntimeError):
    """The token database could not complete an operation."""


@dataclass(frozen=True)
class StoreResult(Generic[T]):
    """Explicit success/failure value returned across the TokenDatabase port."""

    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, value: Optional[T] = None) -> StoreResult[T]:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: str) -> StoreResult[T]:
        return cls(ok=False, error=error)

    def unwrap(self) -> Optional[T]:
        """Return value, or raise TokenStorageError for a failed result."""
        if not self.ok:
            raise TokenStorageError(self.error or "token storage unavailable")
        return self.value


class TokenDatabase(Protocol):
    """Storage port for blacklist entries and global revocations."""

    def add_blacklist_entry(self, entry: BlacklistEntry) -> StoreResult[None]: ...

    def is_token_blacklisted(self, token_identifier: str) -> StoreResult[bool]: ...

    def add_user_revocation(self, revocation: GlobalRevocation) -> StoreResult[None]: ...

    def get_user_revocation_time(self, owner_auth_identifier: str) -> StoreResult[Optional[datetime]]: ...

    def cleanup_expired_entries(self, cutoff: datetime) -> StoreResult[int]: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


def _build_tables(metadata: MetaData, name: str) -> tuple[Table, Table]:
    entries = Table(
        name,
        metadata,
        Column("entry_id", String(64), primary_key=True),
        Column("token_identifier", String(128), nullable=False, index=True),
        Column("owner_auth_identifier", Text, nullable=False),
        Column("blacklisted_at", String(32), nullable=False),
        Column("blacklisted_by_user_id", Text),  # NULL = user-initiated
        Column("reason", String(64), nullable=False),
        Column("expires_at", String(32), nullable=False, index=True),
    )
    revocations = Table(
        f"{name}_revocations",
        metadata,
        # One row per user: a newer revocation replaces the older one.
        Column("owner_auth_identifier", String(255), primary_key=True),
        Column("revoked_at", String(32), nullable=False),
        Column("revoked_by_user_id", Text),
        Column("reason", String(64), nullable=False),
        Column("expires_at", String(32), nullable=False, index=True),
    )
    return entries, revocations


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL so verification reads are not blocked by revocation writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_iso(value: str) -> datetime:
    return datetime.fromisoformat(value)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TokenStore:
    """SQLAlchemy-backed TokenDatabase.

    Usage:
        store = TokenStore("sqlite:///:memory:")
        store.add_blacklist_entry(entry)
        store.is_token_blacklisted(entry.token_identifier).value   # True
        store.close()

    Lookups only consider records whose expires_at is still in the future;
    expired rows are inert until cleanup_expired_entries() removes them.
    """

    def __init__(self, db_url: str, table_name: str = "token_blacklist") -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite") and ":memory:" not in db_url and "mode=memory" not in db_url:
            event.listen(self.engine, "connect", _set_wal_mode)
        self._metadata = MetaData()
        self._entries, self._revocations = _build_tables(self._metadata, table_name)
        self._metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Individual entries
    # ------------------------------------------------------------------

    def add_blacklist_entry(self, entry: BlacklistEntry) -> StoreResult[None]:
        """Insert one entry. Entries are immutable; a duplicate entry_id is a failure."""
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    self._entries.insert().values(
                        entry_id=entry.entry_id,
                        token_identifier=entry.token_identifier,
                        owner_auth_identifier=entry.owner_auth_identifier,
                        blacklisted_at=_to_iso(entry.blacklisted_at),
                        blacklisted_by_user_id=entry.blacklisted_by_user_id,
                        reason=entry.reason,
                        expires_at=_to_iso(entry.expires_at),
                    )
                )
        except SQLAlchemyError as e:
            logger.warning("add_blacklist_entry failed: %s", e.__class__.__name__)
            return StoreResult.failure(f"add_blacklist_entry failed: {e.__class__.__name__}")
        return StoreResult.success()

    def is_token_blacklisted(self, token_identifier: str) -> StoreResult[bool]:
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self._entries.c.entry_id)
                    .where(
                        (self._entries.c.token_identifier == token_identifier)
                        & (self._entries.c.expires_at > _to_iso(_utcnow()))
                    )
                    .limit(1)
                ).fetchone()
        except SQLAlchemyError as e:
            logger.warning("is_token_blacklisted failed: %s", e.__class__.__name__)
            return StoreResult.failure(f"is_token_blacklisted failed: {e.__class__.__name__}")
        return StoreResult.success(row is not None)

    # ------------------------------------------------------------------
    # Global revocations
    # ------------------------------------------------------------------

    def add_user_revocation(self, revocation: GlobalRevocation) -> StoreResult[None]:
        """Store the user's revocation, replacing any earlier one in the same transaction."""
        owner = revocation.owner_auth_identifier
        try:
            with self.engine.begin() as conn:
                conn.execute(self._revocations.delete().where(self._revocations.c.owner_auth_identifier == owner))
                conn.execute(
                    self._revocations.insert().values(
                        owner_auth_identifier=owner,
                        revoked_at=_to_iso(revocation.revoked_at),
                        revoked_by_user_id=revocation.revoked_by_user_id,
                        reason=revocation.reason,
                        expires_at=_to_iso(revocation.expires_at),
                    )
                )
        except SQLAlchemyError as e:
            logger.warning("add_user_revocation failed: %s", e.__class__.__name__)
            return StoreResult.failure(f"add_user_revocation failed: {e.__class__.__name__}")
        return StoreResult.success()

    def get_user_revocation(self, owner_auth_identifier: str) -> StoreResult[Optional[GlobalRevocation]]:
        """Return the user's active revocation record, or None."""
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    self._revocations.select().where(
                        (self._revocations.c.owner_auth_identifier == owner_auth_identifier)
                        & (self._revocations.c.expires_at > _to_iso(_utcnow()))
                    )
                ).fetchone()
        except SQLAlchemyError as e:
            logger.warning("get_user_revocation failed: %s", e.__class__.__name__)
            return StoreResult.failure(f"get_user_revocation failed: {e.__class__.__name__}")
        return StoreResult.success(_row_to_revocation(row) if row is not None else None)

    def get_user_revocation_time(self, owner_auth_identifier: str) -> StoreResult[Optional[datetime]]:
        result = self.get_user_revocation(owner_auth_identifier)
        if not result.ok:
            return StoreResult.failure(result.error or "get_user_revocation_time failed")
        return StoreResult.success(result.value.revoked_at if result.value is not None else None)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def cleanup_expired_entries(self, cutoff: datetime) -> StoreResult[int]:
        """Delete entries and revocations with expires_at <= cutoff. Returns rows removed.

        Idempotent: rows are selected by expiry only, so a second run with the
        same cutoff finds nothing, and two concurrent runs cannot remove a row
        that has not expired.
        """
        cutoff_iso = _to_iso(cutoff)
        try:
            with self.engine.begin() as conn:
                removed = conn.execute(self._entries.delete().where(self._entries.c.expires_at <= cutoff_iso)).rowcount
                removed += conn.execute(
                    self._revocations.delete().where(self._revocations.c.expires_at <= cutoff_iso)
                ).rowcount
        except SQLAlchemyError as e:
            logger.warning("cleanup_expired_entries failed: %s", e.__class__.__name__)
            return StoreResult.failure(f"cleanup_expired_entries failed: {e.__class__.__name__}")
        return StoreResult.success(removed)

    def health_check(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Mappers
# ---------------------------------------------------------------------------


def _row_to_revocation(row) -> GlobalRevocation:
    return GlobalRevocation(
        owner_auth_identifier=row.owner_auth_identifier,
        revoked_at=_from_iso(row.revoked_at),
        revoked_by_user_id=row.revoked_by_user_id,
        reason=row.reason,
        expires_at=_from_iso(row.expires_at),
    )
