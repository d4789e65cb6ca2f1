"""Abstract source warehouse interface for ingestion."""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional


class BaseWarehouse(ABC):
    """Read side of a time-partitioned analytical warehouse table."""

    name: str

    @abstractmethod
    async def pull_partition(
        self,
        node_ordinal: int,
        cluster_size: int,
        last_timestamp: datetime,
        batch_size: int,
    ) -> List[Dict[str, Any]]:
        """Rows owned by ``node_ordinal`` newer than ``last_timestamp``, ascending by timestamp."""

    @abstractmethod
    async def verify_record(self, timestamp: datetime, natural_key_values: Optional[Dict[str, Any]] = None) -> bool:
        """True if a row with this timestamp (and natural key) exists."""

    @abstractmethod
    async def sample_partition(
        self,
        node_ordinal: int,
        cluster_size: int,
        limit: int,
        upper_bound: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Most recent rows of the partition, newest first."""
