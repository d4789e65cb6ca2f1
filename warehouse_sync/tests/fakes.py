"""In-memory stand-ins for the warehouse, the stores and the clock."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence

from warehouse_sync.core.checkpoints import Checkpoint
from warehouse_sync.core.cluster import ClusterMembership, belongs_to_partition
from warehouse_sync.ingestion.base import BaseWarehouse
from warehouse_sync.ingestion.normalizer import ID_FIELD, parse_timestamp
from warehouse_sync.services.stores import AuditEntry, AuditLog, CheckpointStore, TargetStore


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FakeWarehouse(BaseWarehouse):
    """Rows held in memory. ``batches`` (if set) are returned verbatim by pull_partition, one per call."""

    name = "fake"

    def __init__(self, rows: Optional[List[Dict[str, Any]]] = None, timestamp_column: str = "timestamp"):
        self.rows = list(rows or [])
        self.timestamp_column = timestamp_column
        self.batches: List[List[Dict[str, Any]]] = []
        self.pull_calls: List[Dict[str, Any]] = []
        self.fail_with: Optional[Exception] = None

    def _owned(self, node_ordinal: int, cluster_size: int) -> List[Dict[str, Any]]:
        owned = []
        for row in self.rows:
            ts = parse_timestamp(row.get(self.timestamp_column))
            if ts is not None and belongs_to_partition(ts, node_ordinal, cluster_size):
                owned.append((ts, row))
        owned.sort(key=lambda pair: pair[0])
        return [row for _, row in owned]

    async def pull_partition(self, node_ordinal, cluster_size, last_timestamp, batch_size):
        self.pull_calls.append(
            {
                "node_ordinal": node_ordinal,
                "cluster_size": cluster_size,
                "last_timestamp": last_timestamp,
                "batch_size": batch_size,
            }
        )
        if self.fail_with is not None:
            raise self.fail_with
        if self.batches:
            return [dict(row) for row in self.batches.pop(0)]
        rows = [
            row
            for row in self._owned(node_ordinal, cluster_size)
            if parse_timestamp(row[self.timestamp_column]) > last_timestamp
        ]
        return [dict(row) for row in rows[:batch_size]]

    async def verify_record(self, timestamp, natural_key_values=None):
        for row in self.rows:
            if parse_timestamp(row.get(self.timestamp_column)) != timestamp:
                continue
            if all(row.get(col) == value for col, value in (natural_key_values or {}).items()):
                return True
        return False

    async def sample_partition(self, node_ordinal, cluster_size, limit, upper_bound=None):
        rows = self._owned(node_ordinal, cluster_size)
        if upper_bound is not None:
            rows = [row for row in rows if parse_timestamp(row[self.timestamp_column]) <= upper_bound]
        return [dict(row) for row in reversed(rows)][:limit]


class InMemoryTargetStore(TargetStore):
    def __init__(self):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.fail_next_put: Optional[Exception] = None
        self.put_calls = 0

    async def ensure_table(self, target: str, timestamp_column: Optional[str] = None) -> None:
        self.tables.setdefault(target, {})

    async def table_exists(self, target: str) -> bool:
        return target in self.tables

    async def get(self, target: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self.tables.get(target, {}).get(record_id)
        return dict(record) if record else None

    async def put_batch(self, target: str, records: Sequence[Dict[str, Any]], timestamp_column: str) -> int:
        self.put_calls += 1
        if self.fail_next_put is not None:
            exc, self.fail_next_put = self.fail_next_put, None
            raise exc
        # Build the new state first so a failure leaves nothing behind
        staged = dict(self.tables.get(target, {}))
        for record in records:
            staged[record[ID_FIELD]] = dict(record)
        self.tables[target] = staged
        return len(records)

    async def search(self, target, timestamp_column, after=None, limit=100):
        records = list(self.tables.get(target, {}).values())
        if after is not None:
            records = [r for r in records if parse_timestamp(r.get(timestamp_column)) > after]
        records.sort(key=lambda r: (parse_timestamp(r.get(timestamp_column)), r[ID_FIELD]), reverse=True)
        return [dict(r) for r in records[:limit]]


class InMemoryCheckpointStore(CheckpointStore):
    def __init__(self):
        self.items: Dict[str, Checkpoint] = {}
        self.deleted: List[str] = []

    async def get(self, checkpoint_id: str) -> Optional[Checkpoint]:
        return self.items.get(checkpoint_id)

    async def put(self, checkpoint: Checkpoint) -> None:
        self.items[checkpoint.checkpoint_id] = checkpoint

    async def delete(self, checkpoint_id: str) -> None:
        self.deleted.append(checkpoint_id)
        self.items.pop(checkpoint_id, None)


class InMemoryAuditLog(AuditLog):
    def __init__(self):
        self.entries: List[AuditEntry] = []

    async def append(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

    async def recent(self, limit: int = 50, table_id: Optional[str] = None) -> List[AuditEntry]:
        entries = [e for e in self.entries if table_id is None or e.table_id == table_id]
        return list(reversed(entries))[:limit]


class ChangingMembership(ClusterMembership):
    """Membership whose node list can be swapped between calls."""

    def __init__(self, node_id: str, nodes: List[str]):
        self.node_id = node_id
        self.nodes = list(nodes)

    async def current_node_id(self) -> str:
        return self.node_id

    async def list_node_ids(self) -> List[str]:
        return list(self.nodes)


def ts(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).astimezone(timezone.utc)
