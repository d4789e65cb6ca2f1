"""Per-table ingestion engine.

One engine owns one (table, node) pair: it pulls this node's slice of the source
table, writes it to the target, and advances the checkpoint. Cycles never overlap;
the next sleep starts only after the current cycle has finished.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from warehouse_sync.core.checkpoints import Checkpoint, CheckpointManager, utcnow
from warehouse_sync.core.cluster import ClusterMembership, PartitionAssignment
from warehouse_sync.core.logging import get_logger
from warehouse_sync.core.sync_config import TableConfig
from warehouse_sync.ingestion.base import BaseWarehouse
from warehouse_sync.ingestion.normalizer import (
    generate_record_id,
    last_parseable_timestamp,
    normalize_record,
    parse_timestamp,
    record_sample,
    to_target_record,
)
from warehouse_sync.services.phase import Phase, PhaseController, parse_phase
from warehouse_sync.services.stores import AuditEntry, AuditLog, AuditStatus, CheckpointStore, TargetStore


@dataclass
class CycleResult:
    records_pulled: int = 0
    records_written: int = 0
    records_skipped: int = 0
    phase: str = Phase.INITIAL.value
    error: Optional[str] = None


class SyncEngine:
    """Partitioned, checkpointed ingestion loop for one configured table."""

    def __init__(
        self,
        table: TableConfig,
        warehouse: BaseWarehouse,
        target: TargetStore,
        checkpoints: CheckpointStore,
        audit: AuditLog,
        membership: ClusterMembership,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.table = table
        self.warehouse = warehouse
        self.target = target
        self.checkpoint_store = checkpoints
        self.audit = audit
        self.membership = membership
        self.clock = clock

        self.assignment: Optional[PartitionAssignment] = None
        self.checkpoint: Optional[Checkpoint] = None
        self.checkpoint_manager: Optional[CheckpointManager] = None
        self.phase = PhaseController(table.sync)
        self.last_result: Optional[CycleResult] = None

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._wake = asyncio.Event()
        # Serializes cycles (loop and manual runs) and re-initialization
        self._cycle_lock = asyncio.Lock()

        self.log = get_logger("sync_engine", table_id=table.id)

    @property
    def table_id(self) -> str:
        return self.table.id

    @property
    def running(self) -> bool:
        return self._running

    @property
    def initialized(self) -> bool:
        return self.assignment is not None and self.checkpoint is not None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------
    async def initialize(self) -> None:
        """Fix this node's partition and load (or create) its checkpoint.

        MembershipError and storage errors propagate: a node that cannot place itself
        in the cluster must not ingest anything.
        """
        self.assignment = await self.membership.resolve()
        self.log = get_logger("sync_engine", table_id=self.table_id, node=self.assignment.node_ordinal)
        self.log.info(
            f"Partition for {self.table_id}: ordinal={self.assignment.node_ordinal} "
            f"clusterSize={self.assignment.cluster_size}"
        )

        await self.target.ensure_table(self.table.target_table, self.table.timestamp_column)

        self.checkpoint_manager = CheckpointManager(
            self.checkpoint_store,
            table_id=self.table_id,
            node_ordinal=self.assignment.node_ordinal,
            start_timestamp=self.table.sync.start_timestamp,
            clock=self.clock,
        )
        self.checkpoint = await self.checkpoint_manager.load_or_create()
        self.phase.phase = parse_phase(self.checkpoint.phase)

    async def start(self) -> None:
        """Re-resolve membership and reload the checkpoint, then start the poll loop."""
        if self._running:
            self.log.debug(f"Engine {self.table_id} already running")
            return
        async with self._cycle_lock:
            await self.initialize()
        self._running = True
        self._wake = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name=f"sync-{self.table_id}")
        self.log.info(f"Sync engine started for {self.table_id}")

    async def stop(self) -> None:
        """Stop after the in-flight cycle (if any) completes. The cycle is not cancelled."""
        if not self._running and self._task is None:
            return
        self._running = False
        self._wake.set()
        task, self._task = self._task, None
        if task is not None:
            await task
        self.log.info(f"Sync engine stopped for {self.table_id}")

    async def _run_loop(self) -> None:
        while self._running:
            await self.run_sync_cycle()
            if not self._running:
                break
            interval = self.phase.poll_interval
            self.log.debug(f"Next poll in {interval}s (phase: {self.phase.phase.value})")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

    # -------------------------------------------------------------------------
    # Cycle
    # -------------------------------------------------------------------------
    async def run_sync_cycle(self) -> CycleResult:
        """Run one pull / write / checkpoint cycle. Errors are logged, never raised."""
        try:
            async with self._cycle_lock:
                result = await self._cycle()
        except Exception as exc:  # noqa: BLE001
            self.log.exception(f"Sync cycle failed for {self.table_id}: {exc}")
            result = CycleResult(phase=self.phase.phase.value, error=str(exc))
        self.last_result = result
        return result

    async def _cycle(self) -> CycleResult:
        if not self.initialized:
            await self.initialize()
        assert self.assignment is not None and self.checkpoint is not None

        current = await self.membership.resolve()
        if (current.node_ordinal, current.cluster_size) != (
            self.assignment.node_ordinal,
            self.assignment.cluster_size,
        ):
            self.log.error(
                f"Cluster membership changed for {self.table_id} "
                f"(ordinal {self.assignment.node_ordinal}/{self.assignment.cluster_size} -> "
                f"{current.node_ordinal}/{current.cluster_size}); skipping cycles until the engine is restarted"
            )
            return CycleResult(phase=self.phase.phase.value, error="membership_changed")

        batch_size = self.phase.batch_size
        since = self.checkpoint.last_timestamp_dt
        self.log.info(
            f"Sync cycle for {self.table_id}: phase={self.phase.phase.value} "
            f"batch={batch_size} since={self.checkpoint.last_timestamp}"
        )

        records = await self.warehouse.pull_partition(
            self.assignment.node_ordinal,
            self.assignment.cluster_size,
            since,
            batch_size,
        )
        if not records:
            self.phase.update(0, 0)
            self.log.info(f"No new records for {self.table_id}")
            return CycleResult(phase=self.phase.phase.value)

        survivors, skipped = await self._prepare(records)

        if survivors:
            await self.target.put_batch(self.table.target_table, survivors, self.table.timestamp_column)

        last_ts = last_parseable_timestamp(records, self.table.timestamp_column)
        new_ts = max(last_ts, since) if last_ts is not None and since is not None else (last_ts or since)
        lag = (self.clock() - new_ts).total_seconds() if new_ts is not None else 0
        phase = self.phase.update(len(records), lag)

        if survivors:
            assert self.checkpoint_manager is not None
            self.checkpoint = await self.checkpoint_manager.advance(
                self.checkpoint,
                last_timestamp=last_ts,
                records_written=len(survivors),
                phase=phase.value,
                batch_size=batch_size,
            )
        else:
            # Nothing ingested: last_sync_time stays put so a stall remains visible
            self.log.warning(f"No valid records in batch for {self.table_id}; checkpoint unchanged")

        self.log.info(
            f"Cycle done for {self.table_id}: pulled={len(records)} written={len(survivors)} "
            f"skipped={skipped} checkpoint={self.checkpoint.last_timestamp} lag={lag:.0f}s"
        )
        return CycleResult(
            records_pulled=len(records),
            records_written=len(survivors),
            records_skipped=skipped,
            phase=phase.value,
        )

    async def _prepare(self, records: List[Dict[str, Any]]) -> tuple[List[Dict[str, Any]], int]:
        """Normalize, validate and key each record. Invalid ones are audited and dropped."""
        ts_col = self.table.timestamp_column
        synced_at = self.clock()
        survivors: List[Dict[str, Any]] = []
        skipped = 0

        for raw in records:
            record = normalize_record(raw)
            value = record.get(ts_col)
            reason = None
            if value is None or value == "":
                reason = "missing_timestamp"
            elif parse_timestamp(value) is None:
                reason = "invalid_timestamp"

            if reason:
                skipped += 1
                await self._audit_skipped(record, reason)
                continue

            record_id = generate_record_id(record, ts_col, self.table.natural_key)
            survivors.append(to_target_record(record, record_id, synced_at))
        return survivors, skipped

    async def _audit_skipped(self, record: Dict[str, Any], reason: str) -> None:
        self.log.warning(f"Skipping record in {self.table_id}: {reason}")
        await self.audit.append(
            AuditEntry(
                status=AuditStatus.SKIPPED.value,
                timestamp=self.clock(),
                node_ordinal=self.assignment.node_ordinal if self.assignment else None,
                table_id=self.table_id,
                reason=reason,
                record_sample=record_sample(record),
            )
        )

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------
    def get_status(self) -> Dict[str, Any]:
        checkpoint = self.checkpoint
        return {
            "table_id": self.table_id,
            "target_table": self.table.target_table,
            "node_ordinal": self.assignment.node_ordinal if self.assignment else None,
            "cluster_size": self.assignment.cluster_size if self.assignment else None,
            "running": self._running,
            "phase": self.phase.phase.value,
            "checkpoint": (
                {
                    "checkpoint_id": checkpoint.checkpoint_id,
                    "table_id": checkpoint.table_id,
                    "node_ordinal": checkpoint.node_ordinal,
                    "last_timestamp": checkpoint.last_timestamp,
                    "records_ingested": checkpoint.records_ingested,
                    "last_sync_time": checkpoint.last_sync_time,
                    "phase": checkpoint.phase,
                    "last_batch_size": checkpoint.last_batch_size,
                }
                if checkpoint
                else None
            ),
        }
