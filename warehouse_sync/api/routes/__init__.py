from warehouse_sync.api.routes.health import router as health_router
from warehouse_sync.api.routes.stats import router as stats_router
from warehouse_sync.api.routes.sync import router as sync_router
from warehouse_sync.api.routes.validation import router as validation_router

__all__ = ["health_router", "stats_router", "sync_router", "validation_router"]
