"""Lock record store implementations.

Design principles:
- The store's uniqueness constraint on the resource id is the only
  serialization point; every method is a single atomic store operation.
- A record whose deadline has passed is logically free. ``insert_unique``
  removes such a stale record in the same atomic step as the insert.
- Contention is reported as a value (``InsertStatus.DUPLICATE``); every other
  failure is raised as ``StoreError``.
"""

from __future__ import annotations

import threading
from collections.abc import Hashable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any, Protocol

from sqlalchemy import Column, DateTime, MetaData, String, Table, create_engine, delete, insert, select
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from leaselock.core.constants import DEFAULT_TABLE_NAME, HOLDER_TOKEN_MAX_LENGTH, RESOURCE_ID_MAX_LENGTH
from leaselock.core.exceptions import StoreError


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class InsertStatus(Enum):
    """Outcome of an insert attempt that did not fail outright."""

    INSERTED = "inserted"
    DUPLICATE = "duplicate"  # A live record already holds the resource id


@dataclass(frozen=True)
class LockRecord:
    """A single lease as persisted in the store."""

    resource_id: Hashable
    holder_token: str
    deadline: datetime

    def is_expired(self, now: datetime) -> bool:
        return _as_utc(now) > _as_utc(self.deadline)

    def remaining(self, now: datetime) -> timedelta:
        return max(timedelta(0), _as_utc(self.deadline) - _as_utc(now))

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["deadline"] = _as_utc(self.deadline).isoformat()
        return data


class LockStore(Protocol):
    """Store abstraction required by the lock manager."""

    name: str

    def insert_unique(self, record: LockRecord, now: datetime) -> InsertStatus:
        """Insert record unless a live record exists for its resource id."""

    def delete_if_match(self, resource_id: Hashable, holder_token: str) -> bool:
        """Delete the record only if both resource id and holder token match."""

    def delete(self, resource_id: Hashable) -> bool:
        """Delete the record for resource id regardless of holder."""

    def delete_expired(self, resource_id: Hashable, now: datetime) -> int:
        """Delete the record for resource id if its deadline is before now."""

    def find_live(self, resource_id: Hashable, now: datetime) -> LockRecord | None:
        """Return the record for resource id if its deadline is after now."""

    def get(self, resource_id: Hashable) -> LockRecord | None:
        """Return the stored record for diagnostics, live or stale."""

    def close(self) -> None:
        """Release store resources."""


class MemoryLockStore:
    """Process-local store backed by a dict.

    Coordinates threads of one process only. Useful for tests and for
    single-process deployments that want the same API as the SQL store.
    """

    name = "memory"

    def __init__(self) -> None:
        self._records: dict[Hashable, LockRecord] = {}
        self._lock = threading.Lock()

    def insert_unique(self, record: LockRecord, now: datetime) -> InsertStatus:
        with self._lock:
            existing = self._records.get(record.resource_id)
            if existing is not None and not _is_before(existing.deadline, now):
                return InsertStatus.DUPLICATE
            self._records[record.resource_id] = record
            return InsertStatus.INSERTED

    def delete_if_match(self, resource_id: Hashable, holder_token: str) -> bool:
        with self._lock:
            existing = self._records.get(resource_id)
            if existing is None or existing.holder_token != holder_token:
                return False
            del self._records[resource_id]
            return True

    def delete(self, resource_id: Hashable) -> bool:
        with self._lock:
            return self._records.pop(resource_id, None) is not None

    def delete_expired(self, resource_id: Hashable, now: datetime) -> int:
        with self._lock:
            existing = self._records.get(resource_id)
            if existing is None or not _is_before(existing.deadline, now):
                return 0
            del self._records[resource_id]
            return 1

    def find_live(self, resource_id: Hashable, now: datetime) -> LockRecord | None:
        with self._lock:
            existing = self._records.get(resource_id)
        if existing is None or not _as_utc(existing.deadline) > _as_utc(now):
            return None
        return existing

    def get(self, resource_id: Hashable) -> LockRecord | None:
        with self._lock:
            return self._records.get(resource_id)

    def close(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


def _is_before(deadline: datetime, now: datetime) -> bool:
    return _as_utc(deadline) < _as_utc(now)


def _build_engine(url: str, echo: bool = False) -> Engine:
    """Create an engine, sharing one connection for in-memory SQLite."""
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite" and parsed.database in (None, "", ":memory:"):
        return create_engine(
            url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    return create_engine(url, echo=echo)


class SQLAlchemyLockStore:
    """Lock store on any SQLAlchemy-supported database.

    The table's primary key on ``resource_id`` is the uniqueness constraint:
    a duplicate insert raises ``IntegrityError``, which is reported as
    ``InsertStatus.DUPLICATE``.

    Resource ids are stored as ``str(resource_id)``, so ids with the same
    string form name one resource here: ``42`` and ``"42"`` contend for the
    same lock, while ``MemoryLockStore`` keeps them apart.
    """

    name = "sqlalchemy"

    def __init__(
        self,
        engine: Engine | str,
        *,
        table_name: str = DEFAULT_TABLE_NAME,
        create_table: bool = True,
        echo: bool = False,
    ):
        self._owns_engine = isinstance(engine, str)
        self.engine = _build_engine(engine, echo=echo) if isinstance(engine, str) else engine
        self.metadata = MetaData()
        self.table = Table(
            table_name,
            self.metadata,
            Column("resource_id", String(RESOURCE_ID_MAX_LENGTH), primary_key=True),
            Column("holder_token", String(HOLDER_TOKEN_MAX_LENGTH), nullable=False),
            Column("deadline", DateTime(timezone=True), nullable=False),
        )
        if create_table:
            self.create_table()

    def create_table(self) -> None:
        try:
            self.metadata.create_all(self.engine, checkfirst=True)
        except SQLAlchemyError as e:
            raise self._store_error("create_table", e) from e

    @staticmethod
    def _key(resource_id: Hashable) -> str:
        return str(resource_id)

    @staticmethod
    def _store_error(operation: str, error: SQLAlchemyError) -> StoreError:
        return StoreError(
            "Lock store operation failed",
            operation=operation,
            details=f"{type(error).__name__}: {error}",
            original_error=error,
        )

    def _record_from_row(self, row: Any) -> LockRecord:
        return LockRecord(
            resource_id=row.resource_id,
            holder_token=row.holder_token,
            deadline=_as_utc(row.deadline),
        )

    def insert_unique(self, record: LockRecord, now: datetime) -> InsertStatus:
        t = self.table
        key = self._key(record.resource_id)
        try:
            with self.engine.begin() as conn:
                conn.execute(delete(t).where(t.c.resource_id == key, t.c.deadline < _as_utc(now)))
                conn.execute(
                    insert(t).values(
                        resource_id=key,
                        holder_token=record.holder_token,
                        deadline=_as_utc(record.deadline),
                    )
                )
        except IntegrityError:
            return InsertStatus.DUPLICATE
        except SQLAlchemyError as e:
            raise self._store_error("insert_unique", e) from e
        return InsertStatus.INSERTED

    def delete_if_match(self, resource_id: Hashable, holder_token: str) -> bool:
        t = self.table
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    delete(t).where(t.c.resource_id == self._key(resource_id), t.c.holder_token == holder_token)
                )
                removed = result.rowcount
        except SQLAlchemyError as e:
            raise self._store_error("delete_if_match", e) from e
        return removed > 0

    def delete(self, resource_id: Hashable) -> bool:
        t = self.table
        try:
            with self.engine.begin() as conn:
                result = conn.execute(delete(t).where(t.c.resource_id == self._key(resource_id)))
                removed = result.rowcount
        except SQLAlchemyError as e:
            raise self._store_error("delete", e) from e
        return removed > 0

    def delete_expired(self, resource_id: Hashable, now: datetime) -> int:
        t = self.table
        try:
            with self.engine.begin() as conn:
                result = conn.execute(
                    delete(t).where(t.c.resource_id == self._key(resource_id), t.c.deadline < _as_utc(now))
                )
                removed = result.rowcount
        except SQLAlchemyError as e:
            raise self._store_error("delete_expired", e) from e
        return max(0, removed)

    def find_live(self, resource_id: Hashable, now: datetime) -> LockRecord | None:
        t = self.table
        try:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(t).where(t.c.resource_id == self._key(resource_id), t.c.deadline > _as_utc(now))
                ).first()
        except SQLAlchemyError as e:
            raise self._store_error("find_live", e) from e
        return None if row is None else self._record_from_row(row)

    def get(self, resource_id: Hashable) -> LockRecord | None:
        t = self.table
        try:
            with self.engine.connect() as conn:
                row = conn.execute(select(t).where(t.c.resource_id == self._key(resource_id))).first()
        except SQLAlchemyError as e:
            raise self._store_error("get", e) from e
        return None if row is None else self._record_from_row(row)

    def close(self) -> None:
        if self._owns_engine:
            self.engine.dispose()
