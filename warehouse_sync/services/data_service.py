"""Data Service - Read-side queries for the stats endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from warehouse_sync.core.logging import get_logger
from warehouse_sync.models.audit import SyncAudit
from warehouse_sync.models.checkpoints import SyncCheckpoint
from warehouse_sync.models.records import SyncedRecord

log = get_logger("data_service")


class DataService:
    """Handles all data query operations - reads from DB only, no writes."""

    def __init__(self, db: Session):
        self.db = db

    # -------------------------------------------------------------------------
    # Checkpoints
    # -------------------------------------------------------------------------
    def get_checkpoints(self, table_id: Optional[str] = None) -> List[SyncCheckpoint]:
        stmt = select(SyncCheckpoint)
        if table_id:
            stmt = stmt.where(SyncCheckpoint.table_id == table_id)
        stmt = stmt.order_by(SyncCheckpoint.table_id, SyncCheckpoint.node_ordinal)
        return list(self.db.execute(stmt).scalars().all())

    # -------------------------------------------------------------------------
    # Audit trail
    # -------------------------------------------------------------------------
    def get_audit_entries(
        self,
        table_id: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> List[SyncAudit]:
        """Most recent audit entries, newest first."""
        stmt = select(SyncAudit)
        if table_id:
            stmt = stmt.where(SyncAudit.table_id == table_id)
        if status:
            stmt = stmt.where(SyncAudit.status == status)
        stmt = stmt.order_by(SyncAudit.timestamp.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())

    def get_latest_validation(self) -> Optional[SyncAudit]:
        stmt = (
            select(SyncAudit)
            .where(SyncAudit.reason == "validation")
            .order_by(SyncAudit.timestamp.desc())
            .limit(1)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    # -------------------------------------------------------------------------
    # Synced records
    # -------------------------------------------------------------------------
    def get_record_counts(self) -> Dict[str, int]:
        """Rows per target table (exact, from the local target store)."""
        stmt = select(SyncedRecord.target_table, func.count()).group_by(SyncedRecord.target_table)
        return {target: count for target, count in self.db.execute(stmt).all()}

    def get_summary(self) -> List[Dict[str, Any]]:
        """Per-table checkpoint progress and skipped-record totals."""
        skipped_stmt = (
            select(SyncAudit.table_id, func.count())
            .where(SyncAudit.status == "skipped")
            .group_by(SyncAudit.table_id)
        )
        skipped = {table_id: count for table_id, count in self.db.execute(skipped_stmt).all()}

        summary = []
        for cp in self.get_checkpoints():
            summary.append(
                {
                    "table_id": cp.table_id,
                    "node_ordinal": cp.node_ordinal,
                    "last_timestamp": cp.last_timestamp,
                    "records_ingested": cp.records_ingested,
                    "phase": cp.phase,
                    "last_sync_time": cp.last_sync_time,
                    "records_skipped": skipped.get(cp.table_id, 0),
                }
            )
        return summary
