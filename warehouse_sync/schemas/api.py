from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel


class CheckpointOut(BaseModel):
    checkpoint_id: str
    table_id: str
    node_ordinal: int
    last_timestamp: str
    records_ingested: int
    last_sync_time: Optional[datetime] = None
    phase: str
    last_batch_size: Optional[int] = None

    class Config:
        from_attributes = True


class EngineStatus(BaseModel):
    table_id: str
    target_table: str
    node_ordinal: Optional[int] = None
    cluster_size: Optional[int] = None
    running: bool
    phase: str
    checkpoint: Optional[CheckpointOut] = None


class ControlResponse(BaseModel):
    success: bool
    action: str
    tables: list[str]


class CycleResultOut(BaseModel):
    table_id: str
    records_pulled: int
    records_written: int
    records_skipped: int
    phase: str
    error: str | None = None


class AuditEntryOut(BaseModel):
    id: str
    timestamp: datetime
    node_ordinal: int | None = None
    table_id: str | None = None
    status: str
    reason: str | None = None
    check_results: dict | None = None
    message: str | None = None
    record_sample: str | None = None

    class Config:
        from_attributes = True


class ValidationResponse(BaseModel):
    timestamp: str
    overall_status: str
    tables: dict[str, Any]
    error: str | None = None


class TableSummary(BaseModel):
    table_id: str
    node_ordinal: int
    last_timestamp: str
    records_ingested: int
    phase: str
    last_sync_time: datetime | None = None
    records_skipped: int


class HealthResponse(BaseModel):
    database: str
    engines_running: int | None = None
    last_validation_status: str | None = None
