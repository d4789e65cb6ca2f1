"""API dependencies"""

from typing import Generator

from fastapi import HTTPException, Request
from sqlalchemy.orm import Session

from warehouse_sync.core.db import SessionLocal
from warehouse_sync.services.orchestrator import MultiTableOrchestrator
from warehouse_sync.services.validation_service import ValidationService


def get_db() -> Generator[Session, None, None]:
    """Database dependency"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_orchestrator(request: Request) -> MultiTableOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sync engines are not initialized")
    return orchestrator


def get_validator(request: Request) -> ValidationService:
    validator = getattr(request.app.state, "validator", None)
    if validator is None:
        raise HTTPException(status_code=503, detail="Validation service is not initialized")
    return validator
