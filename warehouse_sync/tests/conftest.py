"""Shared fixtures"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from warehouse_sync.core.cluster import StaticMembership
from warehouse_sync.core.sync_config import load_sync_config
from warehouse_sync.models import Base
from warehouse_sync.tests.fakes import (
    FakeClock,
    FakeWarehouse,
    InMemoryAuditLog,
    InMemoryCheckpointStore,
    InMemoryTargetStore,
)

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def sync_config():
    return load_sync_config(
        {
            "warehouse": {
                "dialect": "postgresql",
                "tables": [
                    {
                        "id": "positions",
                        "dataset": "maritime",
                        "table": "vessel_positions",
                        "timestamp_column": "timestamp",
                        "columns": ["timestamp", "mmsi", "speed"],
                        "natural_key": ["mmsi"],
                        "target_table": "VesselPositions",
                    },
                    {
                        "id": "events",
                        "dataset": "maritime",
                        "table": "port_events",
                        "timestampColumn": "event_time",
                        "targetTable": "PortEvents",
                    },
                ],
            },
            "sync": {"poll_interval": 30},
        }
    )


@pytest.fixture
def positions_table(sync_config):
    return sync_config.get_table_config("positions")


@pytest.fixture
def target_store():
    return InMemoryTargetStore()


@pytest.fixture
def checkpoint_store():
    return InMemoryCheckpointStore()


@pytest.fixture
def audit_log():
    return InMemoryAuditLog()


@pytest.fixture
def membership():
    return StaticMembership("node-a")


@pytest.fixture
def warehouse():
    return FakeWarehouse(timestamp_column="timestamp")


@pytest.fixture
def session_factory():
    """SQLite in-memory database shared across worker threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    engine.dispose()
