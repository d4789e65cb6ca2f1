from warehouse_sync.models.base import Base
from warehouse_sync.models.checkpoints import SyncCheckpoint
from warehouse_sync.models.audit import SyncAudit
from warehouse_sync.models.records import SyncedRecord

__all__ = [
    "Base",
    "SyncCheckpoint",
    "SyncAudit",
    "SyncedRecord",
]
