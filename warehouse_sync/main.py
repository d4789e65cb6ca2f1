from pathlib import Path
from contextlib import asynccontextmanager
import asyncio
from typing import Optional

from alembic import command
from alembic.config import Config
from fastapi import FastAPI

from warehouse_sync.api.routes import health, stats, sync, validation
from warehouse_sync.core.config import settings
from warehouse_sync.core.logging import get_logger
from warehouse_sync.services.bootstrap import build_runtime
from warehouse_sync.services.validation_service import ValidationService


log = get_logger("app")

# Background task handle
_validation_task: Optional[asyncio.Task] = None


def run_migrations() -> None:
    """Execute Alembic migrations programmatically on startup."""
    project_root = Path(__file__).resolve().parent.parent
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", settings.DATABASE_URL)
    log.info("Running Alembic migrations to head")
    command.upgrade(alembic_cfg, "head")
    log.info("Alembic migrations applied")


async def run_validation_suite(validator: ValidationService) -> None:
    """Run validation once and log the outcome."""
    try:
        results = await validator.run_validation()
        for table_id, table in results["tables"].items():
            if table["overall_status"] == "healthy":
                log.info(f"Validation {table_id}: healthy")
            else:
                log.error(f"Validation {table_id}: {table['overall_status']}")
    except Exception as exc:
        log.exception(f"Validation run failed: {exc}")


async def scheduled_validation_task(validator: ValidationService) -> None:
    """Background task that runs validation at configured interval."""
    interval = settings.VALIDATION_INTERVAL_SECONDS
    log.info(f"Scheduled validation task started (interval: {interval}s)")

    while True:
        try:
            await asyncio.sleep(interval)
            await run_validation_suite(validator)
        except asyncio.CancelledError:
            log.info("Scheduled validation task cancelled")
            break


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _validation_task

    # Log environment mode
    log.info(f"Starting application in {settings.ENV.upper()} mode")
    if settings.is_production:
        log.info("Production mode: Debug disabled, docs disabled, stricter logging")
    else:
        log.info("Development mode: Debug enabled, docs available")

    # Startup
    try:
        run_migrations()
    except Exception:
        log.exception("Failed to apply migrations on startup")
        raise

    # Configuration and membership errors are fatal
    runtime = build_runtime(settings)
    app.state.orchestrator = runtime.orchestrator
    app.state.validator = runtime.validator
    await runtime.orchestrator.initialize()

    if settings.SYNC_ENABLED:
        log.info("Starting sync engines...")
        await runtime.orchestrator.start()
    else:
        log.info("Sync engines not started (SYNC_ENABLED=false)")

    if settings.VALIDATION_INTERVAL_SECONDS > 0:
        log.info("Starting scheduled validation background task...")
        _validation_task = asyncio.create_task(scheduled_validation_task(runtime.validator))
    else:
        log.info("Scheduled validation is disabled (VALIDATION_INTERVAL_SECONDS=0)")

    yield

    # Shutdown
    log.info("Shutting down services...")

    if _validation_task:
        log.info("Cancelling scheduled validation task...")
        _validation_task.cancel()
        try:
            await _validation_task
        except asyncio.CancelledError:
            pass
        _validation_task = None

    # Let in-flight cycles finish so checkpoints stay consistent
    await runtime.orchestrator.stop()

    log.info("Application shutdown complete")


# Configure FastAPI based on environment
app = FastAPI(
    title="Warehouse Sync",
    description="Partitioned warehouse-to-target ingestion with checkpoints and drift validation",
    version="1.0.0",
    lifespan=lifespan,
    # Disable docs in production for security
    docs_url="/docs" if settings.docs_enabled else None,
    redoc_url="/redoc" if settings.docs_enabled else None,
    openapi_url="/openapi.json" if settings.docs_enabled else None,
    # Debug mode only in development
    debug=settings.debug_enabled,
)


app.include_router(sync.router)
app.include_router(validation.router)
app.include_router(health.router)
app.include_router(stats.router)
