"""
Tests for dealnet/main.py - FastAPI app creation, middleware and lifespan.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from dealnet.main import CorrelationIdMiddleware, create_app, lifespan
from dealnet.services.event_reader import EventStoreError
from dealnet.services.partners import PartnerRegistryError


def _make_mock_settings(**overrides):
    """Build a mock Settings object."""
    defaults = {
        "app_env": "test",
        "app_base_url": "http://localhost:8000",
        "log_level": "WARNING",
        "site_key": "trendsinusa",
        "admin_api_token": "token",
        "sentry_dsn": "",
    }
    defaults.update(overrides)
    settings = MagicMock()
    for k, v in defaults.items():
        setattr(settings, k, v)
    return settings


class TestCreateApp:
    def test_returns_fastapi_instance(self):
        with (
            patch("dealnet.main.get_settings", return_value=_make_mock_settings()),
            patch("dealnet.main.configure_structured_logging"),
        ):
            app = create_app()

        assert isinstance(app, FastAPI)
        assert app.title == "Dealnet"

    def test_configures_structured_logging(self):
        with (
            patch("dealnet.main.get_settings", return_value=_make_mock_settings(log_level="DEBUG")),
            patch("dealnet.main.configure_structured_logging") as mock_log,
        ):
            create_app()

        mock_log.assert_called_once_with("DEBUG", site_key="trendsinusa")

    def test_routes_registered(self):
        with (
            patch("dealnet.main.get_settings", return_value=_make_mock_settings()),
            patch("dealnet.main.configure_structured_logging"),
        ):
            app = create_app()

        paths = set(app.openapi()["paths"])
        assert {
            "/api/track",
            "/out/{provider}/{asin}",
            "/api/partners/{partner_key}/v1/intelligence",
            "/api/partners/{partner_key}/v1/deals",
            "/api/v1/admin/signals",
            "/api/v1/admin/ctr",
            "/api/v1/admin/governance",
            "/api/v1/admin/alerts/{alert_id}/resolve",
            "/health",
            "/health/ready",
        } <= paths

    def test_error_handlers_registered(self):
        with (
            patch("dealnet.main.get_settings", return_value=_make_mock_settings()),
            patch("dealnet.main.configure_structured_logging"),
        ):
            app = create_app()

        assert EventStoreError in app.exception_handlers
        assert PartnerRegistryError in app.exception_handlers


class TestCorrelationIdMiddleware:
    async def test_generates_and_echoes_id(self):
        app = FastAPI()
        app.add_middleware(CorrelationIdMiddleware)

        @app.get("/ping")
        async def ping():
            return {"ok": True}

        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            generated = await client.get("/ping")
            echoed = await client.get("/ping", headers={"X-Correlation-ID": "abc123"})

        assert len(generated.headers["X-Correlation-ID"]) == 32
        assert echoed.headers["X-Correlation-ID"] == "abc123"


class TestLifespan:
    async def test_initializes_sentry_when_configured(self):
        settings = _make_mock_settings(sentry_dsn="https://key@sentry.example/1")
        with (
            patch("dealnet.main.get_settings", return_value=settings),
            patch("sentry_sdk.init") as sentry_init,
            patch("dealnet.services.partners.get_partners_config", return_value=MagicMock(partners=[])),
            patch("dealnet.utils.redis_client.close_redis", new_callable=AsyncMock) as close_redis,
        ):
            async with lifespan(FastAPI()):
                pass

        sentry_init.assert_called_once()
        assert sentry_init.call_args.kwargs["environment"] == "test"
        close_redis.assert_awaited_once()

    async def test_sentry_failure_does_not_block_startup(self):
        settings = _make_mock_settings(sentry_dsn="https://key@sentry.example/1")
        with (
            patch("dealnet.main.get_settings", return_value=settings),
            patch("sentry_sdk.init", side_effect=RuntimeError("bad dsn")),
            patch("dealnet.services.partners.get_partners_config", return_value=MagicMock(partners=[])),
            patch("dealnet.utils.redis_client.close_redis", new_callable=AsyncMock),
        ):
            async with lifespan(FastAPI()):
                pass

    async def test_broken_registry_is_logged_not_raised(self):
        with (
            patch("dealnet.main.get_settings", return_value=_make_mock_settings()),
            patch("dealnet.services.partners.get_partners_config",
                  side_effect=PartnerRegistryError("missing")),
            patch("dealnet.utils.redis_client.close_redis", new_callable=AsyncMock),
        ):
            async with lifespan(FastAPI()):
                pass
