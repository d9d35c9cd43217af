"""
Pydantic schemas for health endpoints.
"""

from pydantic import BaseModel
from typing import Dict, List, Optional, Any
from datetime import datetime
from enum import Enum


class HealthStatus(str, Enum):
    """Health status values"""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


class ComponentStatus(BaseModel):
    """Status of a single component"""
    name: str
    status: HealthStatus
    response_time_ms: Optional[float] = None
    details: Optional[Dict[str, Any]] = None
    last_checked: datetime
    message: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Overall health check response"""
    status: HealthStatus
    timestamp: datetime
    version: str
    uptime_seconds: float
    components: List[ComponentStatus]
    checks_passed: int
    checks_failed: int


class PingResponse(BaseModel):
    status: str = "ok"
    timestamp: datetime
