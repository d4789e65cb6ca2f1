"""SQLAlchemy-backed source warehouse (BigQuery via sqlalchemy-bigquery, or PostgreSQL)."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.engine import Engine

from warehouse_sync.core.logging import get_logger
from warehouse_sync.ingestion.base import BaseWarehouse
from warehouse_sync.ingestion.query_builder import QueryBuilder

log = get_logger("ingestion.warehouse")


class SQLWarehouse(BaseWarehouse):
    """Runs the partition queries of one table against a SQLAlchemy engine."""

    def __init__(self, engine: Engine, query_builder: QueryBuilder, name: Optional[str] = None):
        self.engine = engine
        self.queries = query_builder
        self.name = name or query_builder.table

    def _fetch_all(self, statement, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            result = conn.execute(statement, params)
            return [dict(row) for row in result.mappings()]

    async def pull_partition(
        self,
        node_ordinal: int,
        cluster_size: int,
        last_timestamp: datetime,
        batch_size: int,
    ) -> List[Dict[str, Any]]:
        statement, params = self.queries.pull_partition(node_ordinal, cluster_size, last_timestamp, batch_size)
        rows = await asyncio.to_thread(self._fetch_all, statement, params)
        log.debug(f"Pulled {len(rows)} rows from {self.name} (node={node_ordinal}/{cluster_size}, after={last_timestamp})")
        return rows

    async def verify_record(self, timestamp: datetime, natural_key_values: Optional[Dict[str, Any]] = None) -> bool:
        statement, params = self.queries.verify_record(timestamp, natural_key_values)
        rows = await asyncio.to_thread(self._fetch_all, statement, params)
        return len(rows) > 0

    async def sample_partition(
        self,
        node_ordinal: int,
        cluster_size: int,
        limit: int,
        upper_bound: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        statement, params = self.queries.sample_partition(node_ordinal, cluster_size, limit, upper_bound)
        return await asyncio.to_thread(self._fetch_all, statement, params)
