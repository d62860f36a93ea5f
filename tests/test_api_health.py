"""
Tests for dealnet/api/health.py - liveness and readiness.
"""
from datetime import datetime
from unittest.mock import AsyncMock, patch

from dealnet.api.health import health_check, readiness_check
from dealnet.services.partners import PartnerRegistryError


class TestHealthCheck:
    async def test_returns_healthy(self):
        result = await health_check()
        assert result["status"] == "healthy"
        assert datetime.fromisoformat(result["timestamp"]).tzinfo is not None


class TestReadinessCheck:
    async def test_all_healthy_returns_ready(self, mock_redis):
        mock_db = AsyncMock()
        result = await readiness_check(db=mock_db)
        assert result["status"] == "ready"
        assert result["checks"] == {"database": True, "partners": True, "redis": True}

    async def test_redis_down_is_degraded(self):
        mock_db = AsyncMock()
        with patch("dealnet.utils.redis_client.get_redis", new_callable=AsyncMock,
                   side_effect=ConnectionError("refused")):
            result = await readiness_check(db=mock_db)
        assert result["status"] == "degraded"
        assert result["checks"]["redis"] is False

    async def test_database_down_is_unavailable(self, mock_redis):
        mock_db = AsyncMock()
        mock_db.execute = AsyncMock(side_effect=Exception("connection refused"))
        result = await readiness_check(db=mock_db)
        assert result["status"] == "unavailable"
        assert result["checks"]["database"] is False

    async def test_registry_broken_is_unavailable(self, mock_redis):
        with patch("dealnet.services.partners.get_partners_config",
                   side_effect=PartnerRegistryError("bad json")):
            result = await readiness_check(db=AsyncMock())
        assert result["status"] == "unavailable"
        assert result["checks"]["partners"] is False
