"""Cluster-relative partition assignment.

Nodes never talk to each other. Every node sorts the same membership list, takes
its own index as its ordinal, and owns exactly the records whose timestamp (as
integer microseconds since the epoch) is congruent to that ordinal modulo the
cluster size.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from warehouse_sync.core.errors import MembershipError
from warehouse_sync.core.logging import get_logger

log = get_logger("cluster")

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_ONE_MICROSECOND = timedelta(microseconds=1)


@dataclass(frozen=True)
class PartitionAssignment:
    node_ordinal: int
    cluster_size: int
    nodes: Tuple[str, ...] = field(default_factory=tuple)


def resolve_partition(current_node_id: str, node_ids: Sequence[str]) -> PartitionAssignment:
    """Derive (ordinal, cluster size) from a membership snapshot.

    An empty snapshot means single-node mode. A snapshot that does not contain the
    current node is a membership API defect and raises MembershipError.
    """
    nodes = sorted(set(node_ids)) if node_ids else [current_node_id]
    try:
        ordinal = nodes.index(current_node_id)
    except ValueError:
        log.error(f"Current node '{current_node_id}' not found in cluster nodes: {', '.join(nodes)}")
        raise MembershipError(f"Current node {current_node_id} not found in cluster") from None
    return PartitionAssignment(node_ordinal=ordinal, cluster_size=len(nodes), nodes=tuple(nodes))


def timestamp_to_micros(value: datetime) -> int:
    """Integer microseconds since the Unix epoch (naive values are treated as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - _EPOCH) // _ONE_MICROSECOND


def check_partition_args(node_ordinal: int, cluster_size: int) -> None:
    if cluster_size <= 0:
        raise ValueError(f"cluster_size must be positive, got {cluster_size}")
    if not 0 <= node_ordinal < cluster_size:
        raise ValueError(f"node_ordinal {node_ordinal} outside [0, {cluster_size})")


def partition_of(value: datetime, cluster_size: int) -> int:
    """The ordinal that owns a timestamp."""
    check_partition_args(0, cluster_size)
    return timestamp_to_micros(value) % cluster_size


def belongs_to_partition(value: datetime, node_ordinal: int, cluster_size: int) -> bool:
    check_partition_args(node_ordinal, cluster_size)
    return timestamp_to_micros(value) % cluster_size == node_ordinal


# -----------------------------------------------------------------------------
# Membership providers (host platform contract)
# -----------------------------------------------------------------------------


class ClusterMembership(ABC):
    """Host-provided view of the live cluster."""

    @abstractmethod
    async def current_node_id(self) -> str:
        """Stable identity of this node."""

    @abstractmethod
    async def list_node_ids(self) -> List[str]:
        """Identities of every live peer, this node included."""

    async def resolve(self) -> PartitionAssignment:
        current = await self.current_node_id()
        nodes = await self.list_node_ids()
        assignment = resolve_partition(current, nodes)
        log.debug(f"Node {current} -> ordinal={assignment.node_ordinal} clusterSize={assignment.cluster_size}")
        return assignment


class StaticMembership(ClusterMembership):
    """Membership fixed by configuration (NODE_ID / CLUSTER_NODES)."""

    def __init__(self, node_id: str, nodes: Optional[Sequence[str]] = None):
        self.node_id = node_id
        self.nodes = list(nodes or [])

    async def current_node_id(self) -> str:
        return self.node_id

    async def list_node_ids(self) -> List[str]:
        return list(self.nodes)


class HttpMembership(ClusterMembership):
    """Reads membership from the host's operations API (``cluster_status``)."""

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.auth = (username, password) if username and password else None
        self.timeout = timeout
        self.transport = transport

    async def _cluster_status(self) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, auth=self.auth, transport=self.transport) as client:
            resp = await client.post(self.url, json={"operation": "cluster_status"})
            resp.raise_for_status()
            data = resp.json()
        if isinstance(data, dict) and data.get("error"):
            raise MembershipError(f"cluster_status failed: {data['error']}")
        return data

    async def current_node_id(self) -> str:
        data = await self._cluster_status()
        node_name = data.get("node_name")
        if not node_name:
            raise MembershipError("cluster_status response has no node_name")
        return str(node_name)

    async def list_node_ids(self) -> List[str]:
        data = await self._cluster_status()
        peers = [str(conn["name"]) for conn in data.get("connections", []) if conn.get("name")]
        node_name = data.get("node_name")
        if node_name:
            peers.append(str(node_name))
        return peers

    async def resolve(self) -> PartitionAssignment:
        # One round trip instead of two
        data = await self._cluster_status()
        current = data.get("node_name")
        if not current:
            raise MembershipError("cluster_status response has no node_name")
        peers = [str(conn["name"]) for conn in data.get("connections", []) if conn.get("name")]
        return resolve_partition(str(current), peers + [str(current)])
