"""Target-side storage contracts and their SQLAlchemy implementations.

Every SQL operation opens its own session and runs in a worker thread, so engines on
different tables never share a transaction.
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Set

from sqlalchemy import delete, inspect, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, sessionmaker

from warehouse_sync.core.checkpoints import Checkpoint
from warehouse_sync.core.logging import get_logger
from warehouse_sync.ingestion.normalizer import ID_FIELD, SYNCED_AT_FIELD, parse_timestamp, to_jsonable
from warehouse_sync.models.audit import SyncAudit
from warehouse_sync.models.checkpoints import SyncCheckpoint
from warehouse_sync.models.records import SyncedRecord

log = get_logger("stores")


class AuditStatus(str, Enum):
    SKIPPED = "skipped"
    HEALTHY = "healthy"
    ISSUES_DETECTED = "issues_detected"
    ERROR = "error"


@dataclass
class AuditEntry:
    status: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    node_ordinal: Optional[int] = None
    table_id: Optional[str] = None
    reason: Optional[str] = None
    check_results: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    record_sample: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# -----------------------------------------------------------------------------
# Contracts
# -----------------------------------------------------------------------------


class TargetStore(ABC):
    @abstractmethod
    async def ensure_table(self, target: str, timestamp_column: Optional[str] = None) -> None:
        """Make ``target`` ready to receive records."""

    @abstractmethod
    async def table_exists(self, target: str) -> bool: ...

    @abstractmethod
    async def get(self, target: str, record_id: str) -> Optional[Dict[str, Any]]: ...

    @abstractmethod
    async def put_batch(self, target: str, records: Sequence[Dict[str, Any]], timestamp_column: str) -> int:
        """Upsert all records by ``id`` in one transaction. All or nothing."""

    @abstractmethod
    async def search(
        self,
        target: str,
        timestamp_column: str,
        after: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        """Records newer than ``after`` (if given), newest first, ties broken by ``id`` descending."""


class CheckpointStore(ABC):
    @abstractmethod
    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]: ...

    @abstractmethod
    async def put(self, checkpoint: Checkpoint) -> None: ...

    @abstractmethod
    async def delete(self, checkpoint_id: str) -> None: ...


class AuditLog(ABC):
    @abstractmethod
    async def append(self, entry: AuditEntry) -> None: ...

    @abstractmethod
    async def recent(self, limit: int = 50, table_id: Optional[str] = None) -> List[AuditEntry]: ...


# -----------------------------------------------------------------------------
# SQLAlchemy implementations
# -----------------------------------------------------------------------------


def _insert_for(session: Session):
    """Dialect-specific INSERT supporting ON CONFLICT DO UPDATE."""
    if session.get_bind().dialect.name == "sqlite":
        return sqlite.insert
    return postgresql.insert


class SQLTargetStore(TargetStore):
    """All targets share the ``synced_records`` table, keyed by (target_table, id)."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory
        self._registered: Set[str] = set()

    def _has_records_table(self) -> bool:
        with self.session_factory() as session:
            return inspect(session.get_bind()).has_table(SyncedRecord.__tablename__)

    async def ensure_table(self, target: str, timestamp_column: Optional[str] = None) -> None:
        exists = await asyncio.to_thread(self._has_records_table)
        if not exists:
            raise RuntimeError(f"Table '{SyncedRecord.__tablename__}' is missing; run migrations first")
        self._registered.add(target)
        log.info(f"Target '{target}' ready (timestamp column: {timestamp_column})")

    def _target_has_rows(self, target: str) -> bool:
        with self.session_factory() as session:
            stmt = select(SyncedRecord.id).where(SyncedRecord.target_table == target).limit(1)
            return session.execute(stmt).first() is not None

    async def table_exists(self, target: str) -> bool:
        if not await asyncio.to_thread(self._has_records_table):
            return False
        if target in self._registered:
            return True
        return await asyncio.to_thread(self._target_has_rows, target)

    def _get(self, target: str, record_id: str) -> Optional[Dict[str, Any]]:
        with self.session_factory() as session:
            row = session.get(SyncedRecord, (target, record_id))
            return dict(row.payload) if row else None

    async def get(self, target: str, record_id: str) -> Optional[Dict[str, Any]]:
        return await asyncio.to_thread(self._get, target, record_id)

    def _put_batch(self, target: str, records: Sequence[Dict[str, Any]], timestamp_column: str) -> int:
        rows: Dict[str, Dict[str, Any]] = {}
        for record in records:
            record_ts = parse_timestamp(record.get(timestamp_column))
            if record_ts is None:
                raise ValueError(f"Record {record.get(ID_FIELD)} has no parseable '{timestamp_column}'")
            synced_at = parse_timestamp(record.get(SYNCED_AT_FIELD)) or datetime.now(timezone.utc)
            # Last write wins for duplicate ids inside one batch
            rows[record[ID_FIELD]] = {
                "target_table": target,
                "id": record[ID_FIELD],
                "record_timestamp": record_ts,
                "payload": to_jsonable(record),
                "synced_at": synced_at,
            }

        with self.session_factory() as session, session.begin():
            insert = _insert_for(session)
            stmt = insert(SyncedRecord).values(list(rows.values()))
            stmt = stmt.on_conflict_do_update(
                index_elements=[SyncedRecord.target_table, SyncedRecord.id],
                set_={
                    "record_timestamp": stmt.excluded.record_timestamp,
                    "payload": stmt.excluded.payload,
                    "synced_at": stmt.excluded.synced_at,
                },
            )
            session.execute(stmt)
        return len(rows)

    async def put_batch(self, target: str, records: Sequence[Dict[str, Any]], timestamp_column: str) -> int:
        if not records:
            return 0
        return await asyncio.to_thread(self._put_batch, target, list(records), timestamp_column)

    def _search(self, target: str, after: Optional[datetime], limit: int) -> List[Dict[str, Any]]:
        with self.session_factory() as session:
            stmt = select(SyncedRecord).where(SyncedRecord.target_table == target)
            if after is not None:
                stmt = stmt.where(SyncedRecord.record_timestamp > after.astimezone(timezone.utc))
            stmt = stmt.order_by(SyncedRecord.record_timestamp.desc(), SyncedRecord.id.desc()).limit(limit)
            return [dict(row.payload) for row in session.execute(stmt).scalars().all()]

    async def search(
        self,
        target: str,
        timestamp_column: str,
        after: Optional[datetime] = None,
        limit: int = 100,
    ) -> List[Dict[str, Any]]:
        # record_timestamp is the indexed copy of timestamp_column
        return await asyncio.to_thread(self._search, target, after, limit)


class SQLCheckpointStore(CheckpointStore):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    @staticmethod
    def _to_checkpoint(row: SyncCheckpoint) -> Checkpoint:
        return Checkpoint(
            table_id=row.table_id,
            node_ordinal=row.node_ordinal,
            last_timestamp=row.last_timestamp,
            records_ingested=row.records_ingested or 0,
            last_sync_time=_as_utc(row.last_sync_time),
            phase=row.phase,
            last_batch_size=row.last_batch_size,
        )

    def _get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        with self.session_factory() as session:
            row = session.get(SyncCheckpoint, checkpoint_id)
            return self._to_checkpoint(row) if row else None

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        return await asyncio.to_thread(self._get, checkpoint_id)

    def _put(self, checkpoint: Checkpoint) -> None:
        with self.session_factory() as session, session.begin():
            session.merge(
                SyncCheckpoint(
                    checkpoint_id=checkpoint.checkpoint_id,
                    table_id=checkpoint.table_id,
                    node_ordinal=checkpoint.node_ordinal,
                    last_timestamp=checkpoint.last_timestamp,
                    records_ingested=checkpoint.records_ingested,
                    last_sync_time=checkpoint.last_sync_time,
                    phase=checkpoint.phase,
                    last_batch_size=checkpoint.last_batch_size,
                )
            )

    async def put(self, checkpoint: Checkpoint) -> None:
        await asyncio.to_thread(self._put, checkpoint)

    def _delete(self, checkpoint_id: str) -> None:
        with self.session_factory() as session, session.begin():
            session.execute(delete(SyncCheckpoint).where(SyncCheckpoint.checkpoint_id == checkpoint_id))

    async def delete(self, checkpoint_id: str) -> None:
        await asyncio.to_thread(self._delete, checkpoint_id)

    def _list(self) -> List[Checkpoint]:
        with self.session_factory() as session:
            stmt = select(SyncCheckpoint).order_by(SyncCheckpoint.checkpoint_id)
            return [self._to_checkpoint(row) for row in session.execute(stmt).scalars().all()]

    async def list_all(self) -> List[Checkpoint]:
        return await asyncio.to_thread(self._list)


class SQLAuditLog(AuditLog):
    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _append(self, entry: AuditEntry) -> None:
        with self.session_factory() as session, session.begin():
            session.add(
                SyncAudit(
                    id=entry.id,
                    timestamp=entry.timestamp,
                    node_ordinal=entry.node_ordinal,
                    table_id=entry.table_id,
                    status=str(entry.status.value if isinstance(entry.status, AuditStatus) else entry.status),
                    reason=entry.reason,
                    check_results=to_jsonable(entry.check_results) if entry.check_results is not None else None,
                    message=entry.message,
                    record_sample=entry.record_sample,
                )
            )

    async def append(self, entry: AuditEntry) -> None:
        await asyncio.to_thread(self._append, entry)

    def _recent(self, limit: int, table_id: Optional[str]) -> List[AuditEntry]:
        with self.session_factory() as session:
            stmt = select(SyncAudit)
            if table_id:
                stmt = stmt.where(SyncAudit.table_id == table_id)
            stmt = stmt.order_by(SyncAudit.timestamp.desc()).limit(limit)
            return [
                AuditEntry(
                    id=row.id,
                    timestamp=_as_utc(row.timestamp),
                    node_ordinal=row.node_ordinal,
                    table_id=row.table_id,
                    status=row.status,
                    reason=row.reason,
                    check_results=row.check_results,
                    message=row.message,
                    record_sample=row.record_sample,
                )
                for row in session.execute(stmt).scalars().all()
            ]

    async def recent(self, limit: int = 50, table_id: Optional[str] = None) -> List[AuditEntry]:
        return await asyncio.to_thread(self._recent, limit, table_id)
