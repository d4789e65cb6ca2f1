"""Sync routes - Engine status and start/stop control."""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from warehouse_sync.api.deps import get_orchestrator
from warehouse_sync.core.errors import ConfigurationError
from warehouse_sync.core.logging import get_logger
from warehouse_sync.schemas.api import ControlResponse, CycleResultOut, EngineStatus
from warehouse_sync.services.orchestrator import MultiTableOrchestrator

router = APIRouter(prefix="/sync", tags=["sync"])
log = get_logger("sync_routes")


@router.get("/status", response_model=list[EngineStatus])
def get_status(orchestrator: MultiTableOrchestrator = Depends(get_orchestrator)):
    """
    Status of every sync engine on this node.

    Includes the node's partition (ordinal / cluster size), the current
    phase and the persisted checkpoint.
    """
    return orchestrator.get_status()


@router.get("/status/{table_id}", response_model=EngineStatus)
def get_table_status(table_id: str, orchestrator: MultiTableOrchestrator = Depends(get_orchestrator)):
    try:
        return orchestrator.get_engine(table_id).get_status()
    except ConfigurationError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.post("/start", response_model=ControlResponse)
async def start_sync(
    table_id: Optional[str] = Query(None, description="Start a single table (default: all)"),
    orchestrator: MultiTableOrchestrator = Depends(get_orchestrator),
):
    log.info(f"Start requested for {table_id or 'all tables'}")
    try:
        tables = await orchestrator.start(table_id)
    except ConfigurationError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return ControlResponse(success=True, action="start", tables=tables)


@router.post("/stop", response_model=ControlResponse)
async def stop_sync(
    table_id: Optional[str] = Query(None, description="Stop a single table (default: all)"),
    orchestrator: MultiTableOrchestrator = Depends(get_orchestrator),
):
    """
    Stop sync engines.

    Waits for any in-flight cycle to finish so the checkpoint stays consistent.
    """
    log.info(f"Stop requested for {table_id or 'all tables'}")
    try:
        tables = await orchestrator.stop(table_id)
    except ConfigurationError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return ControlResponse(success=True, action="stop", tables=tables)


@router.post("/run/{table_id}", response_model=CycleResultOut)
async def run_cycle(table_id: str, orchestrator: MultiTableOrchestrator = Depends(get_orchestrator)):
    """Run a single sync cycle for one table, outside its poll loop."""
    try:
        engine = orchestrator.get_engine(table_id)
    except ConfigurationError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    if engine.running:
        raise HTTPException(status_code=409, detail=f"Engine {table_id} is running; stop it first")

    result = await engine.run_sync_cycle()
    return CycleResultOut(
        table_id=table_id,
        records_pulled=result.records_pulled,
        records_written=result.records_written,
        records_skipped=result.records_skipped,
        phase=result.phase,
        error=result.error,
    )
