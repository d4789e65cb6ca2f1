"""Health routes - System health and readiness checks."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy import text
from sqlalchemy.orm import Session

from warehouse_sync.api.deps import get_db
from warehouse_sync.schemas.api import HealthResponse
from warehouse_sync.services.data_service import DataService

router = APIRouter(prefix="/health", tags=["health"])


@router.get("", response_model=HealthResponse)
def health(request: Request, response: Response, db: Session = Depends(get_db)):
    """
    Health check endpoint for load balancer and Docker health checks.

    Checks database connectivity, running engines and the last validation result.
    Returns 503 if database is unreachable.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception as e:
        response.status_code = 503
        return HealthResponse(database=f"down: {e}")

    orchestrator = getattr(request.app.state, "orchestrator", None)
    running = sum(1 for s in orchestrator.get_status() if s["running"]) if orchestrator else None

    last_validation = DataService(db).get_latest_validation()

    return HealthResponse(
        database=db_status,
        engines_running=running,
        last_validation_status=last_validation.status if last_validation else None,
    )


@router.get("/ready")
def readiness(response: Response, db: Session = Depends(get_db)):
    """
    Kubernetes/ELB readiness probe - checks if service can serve traffic.

    Returns 200 if ready, 503 if database is unreachable.
    """
    try:
        db.execute(text("SELECT 1"))
        return {"status": "ready", "timestamp": datetime.now(timezone.utc).isoformat()}
    except Exception as e:
        response.status_code = 503
        return {"status": "not_ready", "error": str(e), "timestamp": datetime.now(timezone.utc).isoformat()}
