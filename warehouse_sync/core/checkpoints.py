"""Checkpoint lifecycle for incremental, resumable ingestion."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable, Optional

from warehouse_sync.core.logging import get_logger
from warehouse_sync.ingestion.normalizer import format_timestamp, parse_timestamp

if TYPE_CHECKING:
    from warehouse_sync.services.stores import CheckpointStore

log = get_logger("checkpoints")

DEFAULT_START_TIMESTAMP = "1970-01-01T00:00:00Z"


def checkpoint_key(table_id: str, node_ordinal: int) -> str:
    return f"{table_id}_{node_ordinal}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Checkpoint:
    """Progress of one node on one table."""

    table_id: str
    node_ordinal: int
    last_timestamp: str
    records_ingested: int = 0
    last_sync_time: Optional[datetime] = None
    phase: str = "initial"
    last_batch_size: Optional[int] = None

    @property
    def checkpoint_id(self) -> str:
        return checkpoint_key(self.table_id, self.node_ordinal)

    @property
    def last_timestamp_dt(self) -> Optional[datetime]:
        return parse_timestamp(self.last_timestamp)


class CheckpointManager:
    """Loads, recovers and advances the checkpoint of one (table, node) pair."""

    def __init__(
        self,
        store: "CheckpointStore",
        table_id: str,
        node_ordinal: int,
        start_timestamp: str = DEFAULT_START_TIMESTAMP,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.table_id = table_id
        self.node_ordinal = node_ordinal
        self.start_timestamp = start_timestamp
        self.clock = clock

    @property
    def key(self) -> str:
        return checkpoint_key(self.table_id, self.node_ordinal)

    def fresh(self) -> Checkpoint:
        start = parse_timestamp(self.start_timestamp)
        if start is None:
            raise ValueError(f"Invalid start timestamp: {self.start_timestamp!r}")
        return Checkpoint(
            table_id=self.table_id,
            node_ordinal=self.node_ordinal,
            last_timestamp=format_timestamp(start),
        )

    async def load_or_create(self) -> Checkpoint:
        """Load the stored checkpoint, or start fresh if it is missing or corrupt.

        A fresh checkpoint is not written until the first cycle ingests something.
        """
        existing = await self.store.get(self.key)
        if existing is None:
            log.info(f"No checkpoint for {self.key}; starting from {self.start_timestamp}")
            return self.fresh()

        if existing.last_timestamp_dt is None:
            log.warning(
                f"Corrupt checkpoint {self.key} (last_timestamp={existing.last_timestamp!r}); deleting and starting fresh"
            )
            await self.store.delete(self.key)
            return self.fresh()

        log.info(
            f"Resuming {self.key} from {existing.last_timestamp} "
            f"(phase={existing.phase}, ingested={existing.records_ingested})"
        )
        return existing

    async def advance(
        self,
        checkpoint: Checkpoint,
        last_timestamp: Optional[datetime],
        records_written: int,
        phase: str,
        batch_size: int,
    ) -> Checkpoint:
        """Persist progress. The stored timestamp never moves backwards."""
        current = checkpoint.last_timestamp_dt
        new_ts = current
        if last_timestamp is not None and (current is None or last_timestamp > current):
            new_ts = last_timestamp

        updated = replace(
            checkpoint,
            last_timestamp=format_timestamp(new_ts) if new_ts is not None else checkpoint.last_timestamp,
            records_ingested=checkpoint.records_ingested + records_written,
            last_sync_time=self.clock(),
            phase=phase,
            last_batch_size=batch_size,
        )
        await self.store.put(updated)
        return updated
