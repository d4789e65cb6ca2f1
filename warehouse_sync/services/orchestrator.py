"""Runs one SyncEngine per configured table, each in its own failure domain."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from warehouse_sync.core.checkpoints import utcnow
from warehouse_sync.core.cluster import ClusterMembership
from warehouse_sync.core.errors import ConfigurationError
from warehouse_sync.core.logging import get_logger
from warehouse_sync.core.sync_config import SyncConfig, TableConfig
from warehouse_sync.ingestion.base import BaseWarehouse
from warehouse_sync.services.stores import AuditLog, CheckpointStore, TargetStore
from warehouse_sync.services.sync_engine import SyncEngine

log = get_logger("orchestrator")

WarehouseFactory = Callable[[TableConfig], BaseWarehouse]


class MultiTableOrchestrator:
    """Owns the engines. Engines share stores but never locks or state."""

    def __init__(
        self,
        config: SyncConfig,
        warehouse_factory: WarehouseFactory,
        target: TargetStore,
        checkpoints: CheckpointStore,
        audit: AuditLog,
        membership: ClusterMembership,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.warehouse_factory = warehouse_factory
        self.target = target
        self.checkpoints = checkpoints
        self.audit = audit
        self.membership = membership
        self.clock = clock
        self.engines: Dict[str, SyncEngine] = {}

    async def initialize(self) -> None:
        """Create and initialize every engine. Any failure here is fatal."""
        self.engines = {}
        for table in self.config.warehouse.tables:
            engine = SyncEngine(
                table=table,
                warehouse=self.warehouse_factory(table),
                target=self.target,
                checkpoints=self.checkpoints,
                audit=self.audit,
                membership=self.membership,
                clock=self.clock,
            )
            await engine.initialize()
            self.engines[table.id] = engine
        log.info(f"Initialized {len(self.engines)} sync engine(s): {', '.join(self.engines)}")

    def get_engine(self, table_id: str) -> SyncEngine:
        try:
            return self.engines[table_id]
        except KeyError:
            raise ConfigurationError(f"Unknown table id: {table_id}") from None

    def _select(self, table_id: Optional[str]) -> List[SyncEngine]:
        if table_id is not None:
            return [self.get_engine(table_id)]
        return list(self.engines.values())

    async def start(self, table_id: Optional[str] = None) -> List[str]:
        engines = self._select(table_id)
        await asyncio.gather(*(engine.start() for engine in engines))
        return [engine.table_id for engine in engines]

    async def stop(self, table_id: Optional[str] = None) -> List[str]:
        engines = self._select(table_id)
        await asyncio.gather(*(engine.stop() for engine in engines))
        return [engine.table_id for engine in engines]

    def get_status(self) -> List[Dict[str, Any]]:
        return [engine.get_status() for engine in self.engines.values()]
