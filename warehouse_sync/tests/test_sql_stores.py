"""SQLAlchemy-backed stores against in-memory SQLite"""

from datetime import datetime, timedelta, timezone

import pytest

from warehouse_sync.core.checkpoints import Checkpoint
from warehouse_sync.ingestion.normalizer import SYNCED_AT_FIELD, format_timestamp
from warehouse_sync.services.stores import (
    AuditEntry,
    AuditStatus,
    SQLAuditLog,
    SQLCheckpointStore,
    SQLTargetStore,
)

BASE = datetime(2024, 6, 1, 11, 0, tzinfo=timezone.utc)


def record(record_id, seconds, **extra):
    return {
        "id": record_id,
        "timestamp": (BASE + timedelta(seconds=seconds)).isoformat(),
        SYNCED_AT_FIELD: BASE,
        **extra,
    }


class TestSQLTargetStore:
    """Upserts and recency search on synced_records"""

    @pytest.fixture
    def store(self, session_factory):
        return SQLTargetStore(session_factory)

    @pytest.mark.asyncio
    async def test_put_batch_and_get(self, store):
        """Test put batch and get"""
        await store.ensure_table("VesselPositions", "timestamp")
        written = await store.put_batch("VesselPositions", [record("a", 0, mmsi=1), record("b", 1, mmsi=2)], "timestamp")

        assert written == 2
        stored = await store.get("VesselPositions", "a")
        assert stored["mmsi"] == 1
        assert stored[SYNCED_AT_FIELD] == format_timestamp(BASE)
        assert await store.get("VesselPositions", "missing") is None
        assert await store.get("PortEvents", "a") is None

    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, store):
        """Test upsert is idempotent"""
        await store.put_batch("VesselPositions", [record("a", 0, speed=1.0)], "timestamp")
        await store.put_batch("VesselPositions", [record("a", 0, speed=7.5)], "timestamp")

        results = await store.search("VesselPositions", "timestamp")
        assert len(results) == 1
        assert results[0]["speed"] == 7.5

    @pytest.mark.asyncio
    async def test_duplicate_ids_within_batch(self, store):
        """Test duplicate ids within batch"""
        written = await store.put_batch(
            "VesselPositions", [record("a", 0, speed=1.0), record("a", 0, speed=2.0)], "timestamp"
        )
        assert written == 1
        assert (await store.get("VesselPositions", "a"))["speed"] == 2.0

    @pytest.mark.asyncio
    async def test_batch_with_bad_timestamp_writes_nothing(self, store):
        """Test batch with bad timestamp writes nothing"""
        bad = {"id": "x", "timestamp": "garbage"}
        with pytest.raises(ValueError):
            await store.put_batch("VesselPositions", [record("a", 0), bad], "timestamp")
        assert await store.get("VesselPositions", "a") is None

    @pytest.mark.asyncio
    async def test_search_order_and_after(self, store):
        """Test search order and after"""
        await store.put_batch(
            "VesselPositions",
            [record("a", 0), record("c", 10), record("b", 10), record("d", 20)],
            "timestamp",
        )
        results = await store.search("VesselPositions", "timestamp")
        assert [r["id"] for r in results] == ["d", "c", "b", "a"]

        newer = await store.search("VesselPositions", "timestamp", after=BASE + timedelta(seconds=5), limit=2)
        assert [r["id"] for r in newer] == ["d", "c"]

    @pytest.mark.asyncio
    async def test_table_exists(self, store):
        """Test table exists"""
        assert not await store.table_exists("VesselPositions")
        await store.ensure_table("VesselPositions")
        assert await store.table_exists("VesselPositions")

        # Rows written by another process count as an existing target
        other = SQLTargetStore(store.session_factory)
        await store.put_batch("PortEvents", [record("e", 0)], "timestamp")
        assert await other.table_exists("PortEvents")
        assert not await other.table_exists("Unknown")

    @pytest.mark.asyncio
    async def test_empty_batch(self, store):
        """Test empty batch"""
        assert await store.put_batch("VesselPositions", [], "timestamp") == 0


class TestSQLCheckpointStore:
    """Checkpoint persistence"""

    @pytest.fixture
    def store(self, session_factory):
        return SQLCheckpointStore(session_factory)

    @pytest.mark.asyncio
    async def test_put_get_overwrite_delete(self, store):
        """Test put get overwrite delete"""
        checkpoint = Checkpoint(
            "positions",
            1,
            "2024-06-01T11:00:00.000000Z",
            records_ingested=10,
            last_sync_time=BASE,
            phase="catchup",
            last_batch_size=1000,
        )
        await store.put(checkpoint)
        assert await store.get("positions_1") == checkpoint

        advanced = Checkpoint("positions", 1, "2024-06-01T11:05:00.000000Z", records_ingested=25, phase="steady")
        await store.put(advanced)
        loaded = await store.get("positions_1")
        assert loaded.records_ingested == 25
        assert loaded.phase == "steady"

        await store.delete("positions_1")
        assert await store.get("positions_1") is None

    @pytest.mark.asyncio
    async def test_last_sync_time_is_utc_aware(self, store):
        """Test last sync time is utc aware"""
        await store.put(Checkpoint("events", 0, "2024-06-01T11:00:00Z", last_sync_time=BASE))
        loaded = await store.get("events_0")
        assert loaded.last_sync_time.tzinfo is not None
        assert loaded.last_sync_time == BASE

    @pytest.mark.asyncio
    async def test_list_all(self, store):
        """Test list all"""
        await store.put(Checkpoint("positions", 1, "2024-06-01T11:00:00Z"))
        await store.put(Checkpoint("events", 0, "2024-06-01T11:00:00Z"))
        assert [c.checkpoint_id for c in await store.list_all()] == ["events_0", "positions_1"]


class TestSQLAuditLog:
    """Audit trail persistence"""

    @pytest.fixture
    def audit(self, session_factory):
        return SQLAuditLog(session_factory)

    @pytest.mark.asyncio
    async def test_append_and_recent(self, audit):
        """Test append and recent"""
        await audit.append(
            AuditEntry(status=AuditStatus.SKIPPED, timestamp=BASE, table_id="positions", reason="invalid_timestamp")
        )
        await audit.append(
            AuditEntry(
                status="healthy",
                timestamp=BASE + timedelta(minutes=1),
                table_id="events",
                reason="validation",
                check_results={"overall_status": "healthy", "checked_at": BASE},
            )
        )

        entries = await audit.recent()
        assert [e.status for e in entries] == ["healthy", "skipped"]
        assert entries[0].check_results["checked_at"] == format_timestamp(BASE)
        assert entries[1].timestamp == BASE

        only_positions = await audit.recent(table_id="positions")
        assert [e.reason for e in only_positions] == ["invalid_timestamp"]
        assert len(await audit.recent(limit=1)) == 1
