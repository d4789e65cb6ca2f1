"""Sync engine cycle tests"""

import asyncio
from datetime import timedelta

import pytest

from warehouse_sync.core.checkpoints import Checkpoint
from warehouse_sync.core.cluster import StaticMembership
from warehouse_sync.core.errors import MembershipError
from warehouse_sync.ingestion.normalizer import generate_record_id
from warehouse_sync.services.phase import Phase
from warehouse_sync.services.sync_engine import SyncEngine
from warehouse_sync.tests.fakes import ChangingMembership, FakeWarehouse, ts


def row(timestamp, mmsi, speed=1.0):
    return {"timestamp": timestamp, "mmsi": mmsi, "speed": speed}


class SlowWarehouse(FakeWarehouse):
    """Yields to the event loop mid-pull so overlapping cycles can interleave."""

    async def pull_partition(self, node_ordinal, cluster_size, last_timestamp, batch_size):
        rows = await super().pull_partition(node_ordinal, cluster_size, last_timestamp, batch_size)
        await asyncio.sleep(0.01)
        return rows


class TestSyncCycle:
    """A single pull / write / checkpoint cycle"""

    @pytest.fixture
    def engine(self, positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock):
        return SyncEngine(
            table=positions_table,
            warehouse=warehouse,
            target=target_store,
            checkpoints=checkpoint_store,
            audit=audit_log,
            membership=membership,
            clock=clock,
        )

    @pytest.mark.asyncio
    async def test_cycle_writes_records_and_advances_checkpoint(self, engine, warehouse, target_store, checkpoint_store):
        """Test cycle writes records and advances checkpoint"""
        warehouse.rows = [
            row("2024-06-01T11:58:00Z", 1),
            row("2024-06-01T11:58:30Z", 2),
            row("2024-06-01T11:59:00Z", 3),
        ]
        await engine.initialize()
        result = await engine.run_sync_cycle()

        assert result.error is None
        assert (result.records_pulled, result.records_written, result.records_skipped) == (3, 3, 0)
        # lag is 60s
        assert result.phase == Phase.STEADY.value

        stored = target_store.tables["VesselPositions"]
        expected_id = generate_record_id(row("2024-06-01T11:58:00Z", 1), "timestamp", ["mmsi"])
        assert expected_id in stored
        assert stored[expected_id]["mmsi"] == 1
        assert "_syncedAt" in stored[expected_id]

        checkpoint = checkpoint_store.items["positions_0"]
        assert checkpoint.last_timestamp_dt == ts("2024-06-01T11:59:00Z")
        assert checkpoint.records_ingested == 3
        assert checkpoint.phase == "steady"
        assert checkpoint.last_batch_size == 10000

    @pytest.mark.asyncio
    async def test_first_pull_uses_start_timestamp_and_initial_batch(self, engine, warehouse):
        """Test first pull uses start timestamp and initial batch"""
        await engine.initialize()
        await engine.run_sync_cycle()
        call = warehouse.pull_calls[0]
        assert call["last_timestamp"] == ts("1970-01-01T00:00:00Z")
        assert call["batch_size"] == 10000
        assert (call["node_ordinal"], call["cluster_size"]) == (0, 1)

    @pytest.mark.asyncio
    async def test_empty_pull_forces_steady(self, engine, checkpoint_store):
        """Test empty pull forces steady"""
        await engine.initialize()
        result = await engine.run_sync_cycle()

        assert result.records_pulled == 0
        assert result.phase == Phase.STEADY.value
        assert engine.phase.poll_interval == 30
        # Nothing ingested, nothing persisted
        assert checkpoint_store.items == {}

    @pytest.mark.asyncio
    async def test_invalid_timestamp_is_audited_and_skipped(self, engine, warehouse, target_store, audit_log, checkpoint_store):
        """Test invalid timestamp is audited and skipped"""
        warehouse.batches = [
            [
                row("2024-06-01T10:00:00Z", 1),
                row("not-a-date", 2),
                row("2024-06-01T10:00:05Z", 3),
            ]
        ]
        await engine.initialize()
        result = await engine.run_sync_cycle()

        assert (result.records_pulled, result.records_written, result.records_skipped) == (3, 2, 1)
        assert len(target_store.tables["VesselPositions"]) == 2

        assert len(audit_log.entries) == 1
        entry = audit_log.entries[0]
        assert entry.status == "skipped"
        assert entry.reason == "invalid_timestamp"
        assert entry.table_id == "positions"
        assert "not-a-date" in entry.record_sample

        checkpoint = checkpoint_store.items["positions_0"]
        assert checkpoint.last_timestamp_dt == ts("2024-06-01T10:00:05Z")
        assert checkpoint.records_ingested == 2

    @pytest.mark.asyncio
    async def test_missing_timestamp_reason(self, engine, warehouse, audit_log):
        """Test missing timestamp reason"""
        warehouse.batches = [[{"mmsi": 9, "speed": 2.0}, row("2024-06-01T11:59:00Z", 1)]]
        await engine.initialize()
        await engine.run_sync_cycle()
        assert [e.reason for e in audit_log.entries] == ["missing_timestamp"]

    @pytest.mark.asyncio
    async def test_all_invalid_batch_does_not_touch_checkpoint(self, engine, warehouse, target_store, checkpoint_store, clock):
        """Test a batch with no valid rows leaves the checkpoint and its sync time alone"""
        stale = clock.now - timedelta(seconds=900)
        stored = Checkpoint("positions", 0, "2024-06-01T10:00:00.000000Z", records_ingested=4, last_sync_time=stale)
        await checkpoint_store.put(stored)
        warehouse.batches = [[row("bad", 1), row(None, 2)]]
        await engine.initialize()
        result = await engine.run_sync_cycle()

        assert result.error is None
        assert result.records_written == 0
        assert result.records_skipped == 2
        assert target_store.put_calls == 0
        assert checkpoint_store.items["positions_0"] == stored
        assert checkpoint_store.items["positions_0"].last_sync_time == stale

    @pytest.mark.asyncio
    async def test_concurrent_cycles_are_serialized(
        self, positions_table, target_store, checkpoint_store, audit_log, membership, clock
    ):
        """Test two overlapping cycles on one engine never pull from the same checkpoint"""
        warehouse = SlowWarehouse([row("2024-06-01T11:00:00Z", 1)], timestamp_column="timestamp")
        engine = SyncEngine(positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock=clock)
        await engine.initialize()

        first, second = await asyncio.gather(engine.run_sync_cycle(), engine.run_sync_cycle())

        assert [first.records_written, second.records_written] == [1, 0]
        assert [call["last_timestamp"] for call in warehouse.pull_calls] == [
            ts("1970-01-01T00:00:00Z"),
            ts("2024-06-01T11:00:00Z"),
        ]
        assert checkpoint_store.items["positions_0"].records_ingested == 1
        assert len(target_store.tables["VesselPositions"]) == 1

    @pytest.mark.asyncio
    async def test_write_failure_keeps_checkpoint(self, engine, warehouse, target_store, checkpoint_store):
        """Test write failure keeps checkpoint"""
        warehouse.rows = [row("2024-06-01T11:00:00Z", 1)]
        target_store.fail_next_put = RuntimeError("target unavailable")
        await engine.initialize()

        result = await engine.run_sync_cycle()
        assert result.error == "target unavailable"
        assert checkpoint_store.items == {}
        assert target_store.tables["VesselPositions"] == {}

        # Next cycle retries the same records
        retry = await engine.run_sync_cycle()
        assert retry.error is None
        assert retry.records_written == 1
        assert checkpoint_store.items["positions_0"].last_timestamp_dt == ts("2024-06-01T11:00:00Z")

    @pytest.mark.asyncio
    async def test_redelivered_batch_does_not_duplicate(self, engine, warehouse, target_store):
        """Test redelivered batch does not duplicate"""
        batch = [row("2024-06-01T11:00:00Z", 1), row("2024-06-01T11:00:01Z", 2)]
        warehouse.batches = [list(batch), list(batch)]
        await engine.initialize()
        await engine.run_sync_cycle()
        await engine.run_sync_cycle()
        assert len(target_store.tables["VesselPositions"]) == 2

    @pytest.mark.asyncio
    async def test_checkpoint_never_regresses(self, engine, warehouse, checkpoint_store):
        """Test checkpoint never regresses"""
        warehouse.batches = [
            [row("2024-06-01T11:00:00Z", 1)],
            # Late-arriving row older than the checkpoint
            [row("2024-06-01T10:00:00Z", 2)],
        ]
        await engine.initialize()
        await engine.run_sync_cycle()
        await engine.run_sync_cycle()
        assert checkpoint_store.items["positions_0"].last_timestamp_dt == ts("2024-06-01T11:00:00Z")
        assert checkpoint_store.items["positions_0"].records_ingested == 2

    @pytest.mark.asyncio
    async def test_phase_follows_lag(self, engine, warehouse):
        """Test phase follows lag"""
        warehouse.batches = [
            [row("2024-06-01T10:53:20Z", 1)],  # lag 4000s
            [row("2024-06-01T11:53:20Z", 2)],  # lag 400s
        ]
        await engine.initialize()
        assert (await engine.run_sync_cycle()).phase == "initial"
        second = await engine.run_sync_cycle()
        assert second.phase == "catchup"
        assert engine.phase.batch_size == 1000
        assert warehouse.pull_calls[1]["batch_size"] == 10000

    @pytest.mark.asyncio
    async def test_pull_error_is_contained(self, engine, warehouse):
        """Test pull error is contained"""
        warehouse.fail_with = ConnectionError("warehouse down")
        await engine.initialize()
        result = await engine.run_sync_cycle()
        assert result.error == "warehouse down"


class TestResumeAndMembership:
    """Resume from a persisted checkpoint and react to membership changes"""

    @pytest.mark.asyncio
    async def test_resume_from_persisted_checkpoint(
        self, positions_table, warehouse, target_store, checkpoint_store, audit_log, clock
    ):
        """Test resume from persisted checkpoint"""
        await checkpoint_store.put(
            Checkpoint("positions", 1, "2024-06-01T11:00:00.000000Z", records_ingested=50, phase="catchup")
        )
        engine = SyncEngine(
            positions_table,
            warehouse,
            target_store,
            checkpoint_store,
            audit_log,
            StaticMembership("node-b", ["node-a", "node-b"]),
            clock=clock,
        )
        await engine.initialize()

        assert engine.phase.phase is Phase.CATCHUP
        await engine.run_sync_cycle()
        call = warehouse.pull_calls[0]
        assert call["last_timestamp"] == ts("2024-06-01T11:00:00Z")
        assert (call["node_ordinal"], call["cluster_size"], call["batch_size"]) == (1, 2, 1000)

    @pytest.mark.asyncio
    async def test_unknown_persisted_phase_resumes_initial(
        self, positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock
    ):
        """Test unknown persisted phase resumes initial"""
        await checkpoint_store.put(Checkpoint("positions", 0, "2024-06-01T11:00:00Z", phase="hyperdrive"))
        engine = SyncEngine(positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock=clock)
        await engine.initialize()
        assert engine.phase.phase is Phase.INITIAL

    @pytest.mark.asyncio
    async def test_membership_change_skips_cycle(
        self, positions_table, warehouse, target_store, checkpoint_store, audit_log, clock
    ):
        """Test membership change skips cycle"""
        membership = ChangingMembership("node-a", ["node-a", "node-b"])
        warehouse.rows = [row("2024-06-01T11:00:00Z", 1)]
        engine = SyncEngine(positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock=clock)
        await engine.initialize()

        membership.nodes = ["node-a", "node-b", "node-c"]
        result = await engine.run_sync_cycle()

        assert result.error == "membership_changed"
        assert warehouse.pull_calls == []

    @pytest.mark.asyncio
    async def test_restart_adopts_new_membership(
        self, positions_table, warehouse, target_store, checkpoint_store, audit_log, clock
    ):
        """Test stop/start re-resolves the partition after a membership change"""
        membership = ChangingMembership("node-a", ["node-a", "node-b"])
        warehouse.rows = [row("2024-06-01T11:00:00Z", 1), row("2024-06-01T11:00:00.000001Z", 2)]
        engine = SyncEngine(positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock=clock)
        await engine.initialize()

        membership.nodes = ["node-a"]
        assert (await engine.run_sync_cycle()).error == "membership_changed"

        await engine.start()
        await engine.stop()
        assert (engine.assignment.node_ordinal, engine.assignment.cluster_size) == (0, 1)

        result = await engine.run_sync_cycle()
        assert result.error is None
        # The single remaining node owns both rows
        assert len(target_store.tables["VesselPositions"]) == 2
        assert checkpoint_store.items["positions_0"].records_ingested == 2

    @pytest.mark.asyncio
    async def test_node_missing_from_membership_fails_initialize(
        self, positions_table, warehouse, target_store, checkpoint_store, audit_log, clock
    ):
        """Test node missing from membership fails initialize"""
        membership = ChangingMembership("node-z", ["node-a", "node-b"])
        engine = SyncEngine(positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock=clock)
        with pytest.raises(MembershipError):
            await engine.initialize()


class TestEngineLoop:
    """Start / stop of the self-rescheduling loop"""

    @pytest.mark.asyncio
    async def test_start_runs_cycles_and_stop_waits(
        self, positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock
    ):
        """Test start runs cycles and stop waits"""
        warehouse.rows = [row("2024-06-01T11:59:00Z", 1)]
        engine = SyncEngine(positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock=clock)

        await engine.start()
        assert engine.running
        for _ in range(50):
            if warehouse.pull_calls:
                break
            await asyncio.sleep(0.01)

        await engine.stop()
        assert not engine.running
        assert len(warehouse.pull_calls) >= 1
        assert len(target_store.tables["VesselPositions"]) == 1
        # Steady phase sleeps 30s; stop must not wait for it
        assert engine.get_status()["running"] is False

    @pytest.mark.asyncio
    async def test_stop_when_not_started(
        self, positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock
    ):
        """Test stop when not started"""
        engine = SyncEngine(positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock=clock)
        await engine.stop()
        assert not engine.running

    @pytest.mark.asyncio
    async def test_status_shape(self, positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock):
        """Test status shape"""
        engine = SyncEngine(positions_table, warehouse, target_store, checkpoint_store, audit_log, membership, clock=clock)
        await engine.initialize()
        status = engine.get_status()
        assert status["table_id"] == "positions"
        assert status["target_table"] == "VesselPositions"
        assert (status["node_ordinal"], status["cluster_size"]) == (0, 1)
        assert status["checkpoint"]["checkpoint_id"] == "positions_0"
