# backend/modules/health/tests/test_health_endpoints.py

from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from modules.health.schemas.health_schemas import HealthStatus
from modules.health.services.health_service import HealthService
from modules.realtime.services.broadcast_channel import broadcast_channel


class TestHealthEndpoints:
    def test_ping(self, client):
        response = client.get("/api/health/ping")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_health_check(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert {c["name"] for c in data["components"]} == {"database", "realtime"}
        assert data["checks_failed"] == 0


class TestHealthService:
    @pytest.mark.asyncio
    async def test_database_failure_is_unhealthy(self):
        db = MagicMock()
        db.execute.side_effect = OperationalError("SELECT 1", {}, Exception("gone"))

        result = await HealthService(db).check_health()

        assert result.status == HealthStatus.UNHEALTHY
        assert result.checks_failed == 1

    @pytest.mark.asyncio
    async def test_stopped_channel_is_degraded(self, db_session):
        assert broadcast_channel.started is False
        result = await HealthService(db_session).check_health()
        assert result.status == HealthStatus.DEGRADED
