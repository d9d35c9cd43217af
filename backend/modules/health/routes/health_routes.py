"""
Health endpoints. Both are unauthenticated and cheap so clients can use
them to wake a sleeping backend.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from core.database import get_db
from ..services.health_service import HealthService
from ..schemas.health_schemas import HealthCheckResponse, HealthStatus, PingResponse

router = APIRouter(prefix="/api/health", tags=["Health"])


@router.get("", response_model=HealthCheckResponse)
async def health_check(response: Response, db: Session = Depends(get_db)):
    """Overall status; 503 when a component is unhealthy."""
    service = HealthService(db)
    result = await service.check_health()
    if result.status == HealthStatus.UNHEALTHY:
        response.status_code = 503
    return result


@router.get("/ping", response_model=PingResponse)
async def ping():
    """Does not touch the database."""
    return PingResponse(timestamp=datetime.utcnow())
