# Services package
from warehouse_sync.services.data_service import DataService
from warehouse_sync.services.orchestrator import MultiTableOrchestrator
from warehouse_sync.services.phase import Phase, PhaseController, next_phase
from warehouse_sync.services.sync_engine import CycleResult, SyncEngine
from warehouse_sync.services.validation_service import ValidationService

__all__ = [
    "DataService",
    "MultiTableOrchestrator",
    "Phase",
    "PhaseController",
    "next_phase",
    "CycleResult",
    "SyncEngine",
    "ValidationService",
]
