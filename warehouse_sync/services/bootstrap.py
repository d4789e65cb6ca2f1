"""Wires settings, table config and stores into an orchestrator and a validator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from warehouse_sync.core.cluster import ClusterMembership, HttpMembership, StaticMembership
from warehouse_sync.core.config import Settings, settings as default_settings
from warehouse_sync.core.db import SessionLocal, make_engine
from warehouse_sync.core.errors import ConfigurationError
from warehouse_sync.core.logging import get_logger
from warehouse_sync.core.sync_config import SyncConfig, TableConfig, load_sync_config
from warehouse_sync.ingestion.base import BaseWarehouse
from warehouse_sync.ingestion.query_builder import QueryBuilder
from warehouse_sync.ingestion.warehouse import SQLWarehouse
from warehouse_sync.services.orchestrator import MultiTableOrchestrator
from warehouse_sync.services.stores import SQLAuditLog, SQLCheckpointStore, SQLTargetStore
from warehouse_sync.services.validation_service import ValidationService

log = get_logger("bootstrap")


@dataclass
class Runtime:
    config: SyncConfig
    orchestrator: MultiTableOrchestrator
    validator: ValidationService


def build_membership(cfg: Settings) -> ClusterMembership:
    if cfg.CLUSTER_API_URL:
        log.info(f"Using cluster membership from {cfg.CLUSTER_API_URL}")
        return HttpMembership(cfg.CLUSTER_API_URL, cfg.CLUSTER_API_USERNAME, cfg.CLUSTER_API_PASSWORD)
    log.info(f"Using static cluster membership (node={cfg.NODE_ID}, nodes={cfg.CLUSTER_NODES or 'single'})")
    return StaticMembership(cfg.NODE_ID, cfg.CLUSTER_NODES)


def build_query_builder(config: SyncConfig, table: TableConfig) -> QueryBuilder:
    return QueryBuilder(
        dialect=config.warehouse.dialect,
        table=table.table,
        dataset=table.dataset,
        project_id=config.warehouse.project_id,
        timestamp_column=table.timestamp_column,
        columns=table.columns,
        natural_key=table.natural_key,
    )


def build_runtime(
    cfg: Settings = default_settings,
    config: Optional[SyncConfig] = None,
    session_factory: sessionmaker = SessionLocal,
    source_engine: Optional[Engine] = None,
) -> Runtime:
    """Load table config and build all collaborators. Raises ConfigurationError on bad setup."""
    config = config or load_sync_config(cfg.SYNC_CONFIG_PATH)

    if source_engine is None:
        if not cfg.SOURCE_DATABASE_URL:
            raise ConfigurationError("SOURCE_DATABASE_URL is not set")
        source_engine = make_engine(cfg.SOURCE_DATABASE_URL)

    target = SQLTargetStore(session_factory)
    checkpoints = SQLCheckpointStore(session_factory)
    audit = SQLAuditLog(session_factory)
    membership = build_membership(cfg)

    warehouses: Dict[str, BaseWarehouse] = {
        table.id: SQLWarehouse(source_engine, build_query_builder(config, table), name=table.id)
        for table in config.warehouse.tables
    }

    orchestrator = MultiTableOrchestrator(
        config=config,
        warehouse_factory=lambda table: warehouses[table.id],
        target=target,
        checkpoints=checkpoints,
        audit=audit,
        membership=membership,
    )
    validator = ValidationService(
        config=config,
        target=target,
        checkpoints=checkpoints,
        audit=audit,
        membership=membership,
        warehouses=warehouses,
        sample_size=cfg.VALIDATION_SAMPLE_SIZE,
    )
    return Runtime(config=config, orchestrator=orchestrator, validator=validator)
