"""Validation service - drift detection between the source warehouse and the target.

Never compares counts: target-side counts are estimates on most stores. Instead it
checks checkpoint progress, that fresh data is arriving, and a small two-way sample
of individual records.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from warehouse_sync.core.checkpoints import checkpoint_key, utcnow
from warehouse_sync.core.cluster import ClusterMembership, PartitionAssignment
from warehouse_sync.core.logging import get_logger
from warehouse_sync.core.sync_config import SyncConfig, TableConfig
from warehouse_sync.ingestion.base import BaseWarehouse
from warehouse_sync.ingestion.normalizer import (
    ID_FIELD,
    format_timestamp,
    generate_record_id,
    natural_key_values,
    normalize_record,
    parse_timestamp,
)
from warehouse_sync.services.stores import AuditEntry, AuditLog, AuditStatus, CheckpointStore, TargetStore

log = get_logger("validation_service")

STALLED_AFTER_SECONDS = 600
HEALTHY_LAG_SECONDS = 300
LAGGING_LAG_SECONDS = 3600
RECENT_WINDOW_SECONDS = 300
OK_STATUSES = ("healthy", "ok")


class ValidationService:
    """Runs progress, smoke and spot checks for every configured table."""

    def __init__(
        self,
        config: SyncConfig,
        target: TargetStore,
        checkpoints: CheckpointStore,
        audit: AuditLog,
        membership: ClusterMembership,
        warehouses: Optional[Dict[str, BaseWarehouse]] = None,
        sample_size: int = 5,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.target = target
        self.checkpoints = checkpoints
        self.audit = audit
        self.membership = membership
        self.warehouses = warehouses or {}
        self.sample_size = sample_size
        self.clock = clock

    async def run_validation(self) -> Dict[str, Any]:
        """Validate all tables and append one audit entry, even when validation itself fails."""
        log.info("Starting validation suite")
        results: Dict[str, Any] = {"timestamp": format_timestamp(self.clock()), "tables": {}}
        assignment: Optional[PartitionAssignment] = None

        try:
            assignment = await self.membership.resolve()
            for table in self.config.warehouse.tables:
                checks = {
                    "progress": await self.validate_progress(table, assignment),
                    "smoke_test": await self.smoke_test(table),
                    "spot_check": await self.spot_check(table, assignment),
                }
                healthy = all(check["status"] in OK_STATUSES for check in checks.values())
                results["tables"][table.id] = {
                    "checks": checks,
                    "overall_status": "healthy" if healthy else "issues_detected",
                }
                log.info(
                    f"Validation {table.id}: progress={checks['progress']['status']} "
                    f"smoke={checks['smoke_test']['status']} spot={checks['spot_check']['status']}"
                )

            all_healthy = all(t["overall_status"] == "healthy" for t in results["tables"].values())
            results["overall_status"] = "healthy" if all_healthy else "issues_detected"
            log.info(f"Overall validation status: {results['overall_status']}")
            await self._log_audit(results, assignment)
            return results
        except Exception as exc:
            log.error(f"Validation failed: {exc}")
            results["overall_status"] = AuditStatus.ERROR.value
            results["error"] = str(exc)
            await self._log_audit(results, assignment)
            raise

    # -------------------------------------------------------------------------
    # Checks
    # -------------------------------------------------------------------------
    async def validate_progress(self, table: TableConfig, assignment: PartitionAssignment) -> Dict[str, Any]:
        checkpoint = await self.checkpoints.get(checkpoint_key(table.id, assignment.node_ordinal))
        if checkpoint is None:
            log.warning(f"No checkpoint for {table.id}; table may not have started syncing")
            return {
                "status": "no_checkpoint",
                "message": f"No checkpoint found for table {table.id} - may not have started",
                "table_id": table.id,
            }

        now = self.clock()
        if checkpoint.last_sync_time is not None:
            since_sync = (now - checkpoint.last_sync_time).total_seconds()
            if since_sync > STALLED_AFTER_SECONDS:
                log.warning(f"{table.id} sync appears stalled ({since_sync / 60:.1f} minutes without progress)")
                return {
                    "status": "stalled",
                    "message": "No ingestion progress in 10+ minutes",
                    "seconds_since_last_sync": since_sync,
                    "last_timestamp": checkpoint.last_timestamp,
                    "table_id": table.id,
                }

        last_ts = checkpoint.last_timestamp_dt
        lag = (now - last_ts).total_seconds() if last_ts else None
        if lag is None:
            status = "severely_lagging"
        elif lag < HEALTHY_LAG_SECONDS:
            status = "healthy"
        elif lag < LAGGING_LAG_SECONDS:
            status = "lagging"
        else:
            status = "severely_lagging"

        return {
            "status": status,
            "lag_seconds": lag,
            "records_ingested": checkpoint.records_ingested,
            "phase": checkpoint.phase,
            "last_timestamp": checkpoint.last_timestamp,
            "table_id": table.id,
        }

    async def smoke_test(self, table: TableConfig) -> Dict[str, Any]:
        """Is fresh data landing in the target?"""
        try:
            if not await self.target.table_exists(table.target_table):
                return {
                    "status": "table_not_found",
                    "message": f"Target table {table.target_table} not found",
                    "table_id": table.id,
                }

            window_start = self.clock() - timedelta(seconds=RECENT_WINDOW_SECONDS)
            recent = await self.target.search(table.target_table, table.timestamp_column, after=window_start, limit=1)
            if not recent:
                return {
                    "status": "no_recent_data",
                    "message": "No records found in last 5 minutes",
                    "table_id": table.id,
                }

            latest_ts = parse_timestamp(recent[0].get(table.timestamp_column))
            age = (self.clock() - latest_ts).total_seconds() if latest_ts else None
            return {
                "status": "healthy",
                "latest_timestamp": recent[0].get(table.timestamp_column),
                "lag_seconds": age,
                "message": f"Latest record is {round(age)}s old" if age is not None else "Latest record found",
                "table_id": table.id,
            }
        except Exception as exc:  # noqa: BLE001
            log.error(f"Smoke test query failed for {table.id}: {exc}")
            return {
                "status": "query_failed",
                "message": "Failed to query target store",
                "error": str(exc),
                "table_id": table.id,
            }

    async def spot_check(self, table: TableConfig, assignment: PartitionAssignment) -> Dict[str, Any]:
        """Two-way sample: target rows must exist at the source, synced source rows must exist in the target."""
        warehouse = self.warehouses.get(table.id)
        if warehouse is None:
            return {
                "status": "config_error",
                "message": f"No warehouse configured for table {table.id}",
                "table_id": table.id,
            }

        issues: List[Dict[str, Any]] = []
        try:
            if not await self.target.table_exists(table.target_table):
                return {
                    "status": "table_not_found",
                    "message": f"Target table {table.target_table} does not exist",
                    "table_id": table.id,
                }

            target_sample = await self.target.search(
                table.target_table, table.timestamp_column, limit=self.sample_size
            )
            if not target_sample:
                return {
                    "status": "no_data",
                    "message": "No records in target to validate",
                    "table_id": table.id,
                }

            for record in target_sample:
                ts = parse_timestamp(record.get(table.timestamp_column))
                keys = natural_key_values(record, table.natural_key, from_target=True)
                exists = ts is not None and await warehouse.verify_record(ts, keys)
                if not exists:
                    log.warning(f"Phantom record in {table.id}: {record.get(ID_FIELD)}")
                    issues.append(
                        {
                            "type": "phantom_record",
                            "timestamp": record.get(table.timestamp_column),
                            "id": record.get(ID_FIELD),
                            "message": "Record exists in target but not in source",
                            "table_id": table.id,
                        }
                    )

            source_sample = await self._source_sample(table, warehouse, assignment)
            for raw in source_sample:
                record = normalize_record(raw)
                if parse_timestamp(record.get(table.timestamp_column)) is None:
                    # Skipped and audited at sync time
                    continue
                record_id = generate_record_id(record, table.timestamp_column, table.natural_key)
                if await self.target.get(table.target_table, record_id) is None:
                    log.warning(f"Missing record in {table.id}: {record_id}")
                    issues.append(
                        {
                            "type": "missing_record",
                            "timestamp": format_timestamp(parse_timestamp(record[table.timestamp_column])),
                            "id": record_id,
                            "message": "Record exists in source but not in target",
                            "table_id": table.id,
                        }
                    )

            checked = len(target_sample) + len(source_sample)
            return {
                "status": "healthy" if not issues else "issues_found",
                "samples_checked": checked,
                "issues": issues,
                "message": f"Checked {checked} records, all match" if not issues else f"Found {len(issues)} mismatches",
                "table_id": table.id,
            }
        except Exception as exc:  # noqa: BLE001
            log.error(f"Spot check failed for {table.id}: {exc}")
            return {
                "status": "check_failed",
                "message": "Spot check failed",
                "error": str(exc),
                "table_id": table.id,
            }

    async def _source_sample(
        self,
        table: TableConfig,
        warehouse: BaseWarehouse,
        assignment: PartitionAssignment,
    ) -> List[Dict[str, Any]]:
        # Only rows at or before the checkpoint can be expected in the target
        checkpoint = await self.checkpoints.get(checkpoint_key(table.id, assignment.node_ordinal))
        if checkpoint is None or checkpoint.last_timestamp_dt is None:
            return []
        return await warehouse.sample_partition(
            assignment.node_ordinal,
            assignment.cluster_size,
            self.sample_size,
            upper_bound=checkpoint.last_timestamp_dt,
        )

    async def _log_audit(self, results: Dict[str, Any], assignment: Optional[PartitionAssignment]) -> None:
        tables = list(results.get("tables", {}))
        await self.audit.append(
            AuditEntry(
                status=results["overall_status"],
                timestamp=self.clock(),
                node_ordinal=assignment.node_ordinal if assignment else None,
                table_id=tables[0] if len(tables) == 1 else None,
                reason="validation",
                check_results=results,
                message=results.get("error") or f"Validated {len(tables)} table(s)",
            )
        )
