"""Reconciliation store: durable, per-pod lifecycle records.

The store is the only shared mutable state in the system. ``merge`` performs
look-up, first-write-wins apply, and persist as one atomic unit per pod:

- In-process, merges for the same UID are serialised by a keyed lock.
- Across processes, every row carries a ``version`` column and updates are
  conditional on the version that was read. A lost update (or a duplicate-key
  race on first insert) is retried up to ``max_attempts`` times.

A failed persist rolls the transaction back; the caller never sees a record
that was not committed.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    TypeDecorator,
    create_engine,
    insert,
    select,
    update,
)
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import StaticPool

from pod_timeline.locks import KeyedLock
from pod_timeline.models import LifecycleRecord, MilestoneEvent, MilestoneKind, PodIdentity

logger = logging.getLogger(__name__)

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_BACKOFF = 0.01  # seconds, multiplied by the attempt number


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """A merge could not be persisted. Safe to retry with the same input."""

    retryable = True


class StoreUnavailableError(StoreError):
    """The storage backend failed (I/O error, locked, unreachable)."""


class ConcurrentUpdateError(StoreError):
    """Concurrent writers kept winning the race until the retry budget ran out."""

    def __init__(self, uid: str, attempts: int):
        super().__init__(f"Pod {uid}: lost update retried {attempts} times, giving up")
        self.uid = uid
        self.attempts = attempts


class _StaleVersion(Exception):
    """Row changed (or appeared) between read and write."""


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC.

    SQLite drops tzinfo on the way in and out; normalise on both sides so a
    round-tripped timestamp compares equal to the original.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


metadata = MetaData()

# Column names match the records written by earlier releases of the watcher
MILESTONE_COLUMNS: dict[MilestoneKind, str] = {
    MilestoneKind.SCHEDULED: "scheduled",
    MilestoneKind.NETWORK_READY: "alloc_ip_success",
    MilestoneKind.PULL_STARTED: "pulling",
    MilestoneKind.PULL_FINISHED: "pulled",
    MilestoneKind.CONTAINER_CREATED: "created",
    MilestoneKind.CONTAINER_STARTED: "started",
    MilestoneKind.KILLING: "killing",
}

pod_table = Table(
    "pod",
    metadata,
    Column("uid", String, primary_key=True),
    Column("namespace", String, nullable=False, default=""),
    Column("name", String, nullable=False, default=""),
    *(Column(col, UTCDateTime(), nullable=True) for col in MILESTONE_COLUMNS.values()),
    Column("version", Integer, nullable=False, default=1),
)


def _to_row(record: LifecycleRecord) -> dict[str, Any]:
    row: dict[str, Any] = {
        "uid": record.identity.uid,
        "namespace": record.identity.namespace,
        "name": record.identity.name,
    }
    for kind, col in MILESTONE_COLUMNS.items():
        row[col] = record.milestone(kind)
    return row


def _from_row(row: Any) -> LifecycleRecord:
    return LifecycleRecord(
        identity=PodIdentity(uid=row["uid"], namespace=row["namespace"], name=row["name"]),
        scheduled=row["scheduled"],
        network_ready=row["alloc_ip_success"],
        pull_started=row["pulling"],
        pull_finished=row["pulled"],
        container_created=row["created"],
        container_started=row["started"],
        killing=row["killing"],
    )


# ---------------------------------------------------------------------------
# Store interface
# ---------------------------------------------------------------------------


class ReconciliationStore(ABC):
    """Durable keyed store of LifecycleRecords."""

    @abstractmethod
    def get(self, uid: str) -> LifecycleRecord | None:
        """Return the record for a pod UID, or None if never seen."""

    @abstractmethod
    def get_or_create(self, identity: PodIdentity) -> LifecycleRecord:
        """Return the record for a pod, creating an empty one if needed."""

    @abstractmethod
    def merge(self, event: MilestoneEvent) -> LifecycleRecord:
        """Atomically fold one milestone event into the pod's record.

        Returns the record as committed. Raises StoreError if the result could
        not be persisted, in which case nothing was applied.
        """

    def ping(self) -> None:
        """Raise StoreUnavailableError if the backend cannot be reached."""

    def close(self) -> None:
        """Release backend resources."""


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------


class SqlAlchemyReconciliationStore(ReconciliationStore):
    """ReconciliationStore backed by any SQLAlchemy engine (SQLite by default)."""

    def __init__(
        self,
        engine: Engine,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        retry_backoff: float = DEFAULT_RETRY_BACKOFF,
        create_schema: bool = True,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.engine = engine
        self.max_attempts = max_attempts
        self.retry_backoff = retry_backoff
        self._locks = KeyedLock()
        # One shared connection (in-memory SQLite) cannot host concurrent
        # transactions, so every merge takes the same lock.
        self._single_connection = isinstance(engine.pool, StaticPool)

        if create_schema:
            try:
                metadata.create_all(engine)
            except SQLAlchemyError as exc:
                raise StoreUnavailableError(f"Cannot initialise schema: {exc}") from exc

    @classmethod
    def from_url(cls, url: str, **kwargs: Any) -> SqlAlchemyReconciliationStore:
        """Create a store from a database URL.

        In-memory SQLite URLs get a single shared connection, otherwise each
        thread would see its own empty database.
        """
        parsed = make_url(url)
        engine_kwargs: dict[str, Any] = {"future": True}
        if parsed.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if parsed.database in (None, "", ":memory:"):
                engine_kwargs["poolclass"] = StaticPool
        engine = create_engine(parsed, **engine_kwargs)
        return cls(engine, **kwargs)

    def _lock_key(self, uid: str) -> str:
        return "" if self._single_connection else uid

    # --- reads ---------------------------------------------------------

    def get(self, uid: str) -> LifecycleRecord | None:
        try:
            with self.engine.connect() as conn:
                row = _select_row(conn, uid)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Cannot read pod {uid}: {exc}") from exc
        return _from_row(row) if row is not None else None

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"Store unreachable: {exc}") from exc

    # --- writes --------------------------------------------------------

    def get_or_create(self, identity: PodIdentity) -> LifecycleRecord:
        def _txn(conn: Connection) -> LifecycleRecord:
            row = _select_row(conn, identity.uid)
            if row is not None:
                return _from_row(row)
            record = LifecycleRecord(identity=identity)
            _insert(conn, record)
            return record

        return self._run(identity.uid, _txn)

    def merge(self, event: MilestoneEvent) -> LifecycleRecord:
        def _txn(conn: Connection) -> LifecycleRecord:
            row = _select_row(conn, event.identity.uid)
            if row is None:
                record = LifecycleRecord(identity=event.identity)
                record.apply(event)
                _insert(conn, record)
                logger.debug("Created record for pod %s with %s", event.identity, event.kind.value)
                return record

            record = _from_row(row)
            if record.apply(event):
                logger.debug("Pod %s: %s set to %s", record.identity, event.kind.value, event.timestamp)
            else:
                logger.debug("Pod %s: %s already recorded, keeping it", record.identity, event.kind.value)
            # Persist even when nothing changed so repeated calls stay idempotent
            _update(conn, record, expected_version=row["version"])
            return record

        return self._run(event.identity.uid, _txn)

    def _run(self, uid: str, txn: Any) -> LifecycleRecord:
        """Run a read-modify-write transaction with the per-pod lock held."""
        with self._locks.hold(self._lock_key(uid)):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    with self.engine.begin() as conn:
                        return txn(conn)
                except _StaleVersion as exc:
                    logger.debug(
                        "Pod %s: concurrent write detected (attempt %d/%d): %s",
                        uid,
                        attempt,
                        self.max_attempts,
                        exc,
                    )
                    if attempt < self.max_attempts and self.retry_backoff:
                        time.sleep(self.retry_backoff * attempt)
                except SQLAlchemyError as exc:
                    raise StoreUnavailableError(f"Cannot persist pod {uid}: {exc}") from exc

        raise ConcurrentUpdateError(uid, self.max_attempts)

    def close(self) -> None:
        self.engine.dispose()


def _select_row(conn: Connection, uid: str) -> Any:
    return conn.execute(select(pod_table).where(pod_table.c.uid == uid)).mappings().first()


def _insert(conn: Connection, record: LifecycleRecord) -> None:
    try:
        conn.execute(insert(pod_table).values(**_to_row(record), version=1))
    except IntegrityError as exc:
        # Only reached after a select found no row: another writer inserted first
        raise _StaleVersion(f"pod {record.uid} was inserted concurrently") from exc


def _update(conn: Connection, record: LifecycleRecord, expected_version: int) -> None:
    values = _to_row(record)
    del values["uid"]
    result = conn.execute(
        update(pod_table)
        .where(pod_table.c.uid == record.uid)
        .where(pod_table.c.version == expected_version)
        .values(**values, version=expected_version + 1)
    )
    if result.rowcount != 1:
        raise _StaleVersion(f"version {expected_version} is no longer current")
