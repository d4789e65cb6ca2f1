"""Stats routes - Sync observability."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from warehouse_sync.api.deps import get_db
from warehouse_sync.schemas.api import AuditEntryOut, CheckpointOut, TableSummary
from warehouse_sync.services.data_service import DataService

router = APIRouter(prefix="/stats", tags=["stats"])


@router.get("/checkpoints", response_model=list[CheckpointOut])
def get_checkpoints(
    table_id: Optional[str] = Query(None, description="Filter by table id"),
    db: Session = Depends(get_db),
):
    """
    Get all sync checkpoints.

    One checkpoint per (table, node ordinal) tracks the last ingested
    timestamp, enabling resume-on-restart.
    """
    service = DataService(db)
    return service.get_checkpoints(table_id=table_id)


@router.get("/audit", response_model=list[AuditEntryOut])
def get_audit(
    table_id: Optional[str] = Query(None, description="Filter by table id"),
    status: Optional[str] = Query(None, description="Filter by status (skipped, healthy, issues_detected, error)"),
    limit: int = Query(50, ge=1, le=500, description="Number of entries to return"),
    db: Session = Depends(get_db),
):
    """
    Get recent audit entries.

    Skipped records (with the reason and a sample) and validation runs.
    """
    service = DataService(db)
    return service.get_audit_entries(table_id=table_id, status=status, limit=limit)


@router.get("/tables", response_model=list[TableSummary])
def get_tables_summary(db: Session = Depends(get_db)):
    """Per-table progress and skipped-record totals."""
    service = DataService(db)
    return service.get_summary()


@router.get("/records")
def get_record_counts(db: Session = Depends(get_db)):
    """Synced record counts per target table."""
    service = DataService(db)
    return service.get_record_counts()
