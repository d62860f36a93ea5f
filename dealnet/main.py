"""
Dealnet - attribution, privacy-safe signals and partner governance for the
deals network. Main FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from dealnet.config import get_settings
from dealnet.api.router import api_router
from dealnet.services.event_reader import EventStoreError
from dealnet.services.partners import PartnerRegistryError
from dealnet.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("dealnet")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Injects a correlation ID into every request context and response header."""

    async def dispatch(self, request: Request, call_next) -> Response:
        cid = request.headers.get("X-Correlation-ID") or generate_correlation_id()
        set_correlation_id(cid)
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown events."""
    settings = get_settings()
    logger.info("Dealnet starting up (env=%s, site=%s)", settings.app_env, settings.site_key)

    if not settings.admin_api_token:
        logger.warning("ADMIN_API_TOKEN not set - admin API will answer 503.")

    # Load the partner registry early so a broken file shows up in the boot log
    try:
        from dealnet.services.partners import get_partners_config
        config = get_partners_config()
        logger.info("Partner registry ready (%d partners)", len(config.partners))
    except PartnerRegistryError as e:
        logger.error("Partner registry unavailable: %s", str(e))

    # Initialize Sentry if configured
    if settings.sentry_dsn:
        try:
            import sentry_sdk
            sentry_sdk.init(
                dsn=settings.sentry_dsn,
                traces_sample_rate=0.1,
                environment=settings.app_env,
            )
            logger.info("Sentry initialized")
        except Exception as e:
            logger.warning("Sentry initialization failed: %s", str(e))

    yield

    from dealnet.utils.redis_client import close_redis
    await close_redis()
    logger.info("Dealnet shutdown complete")


async def event_store_error_handler(request: Request, exc: EventStoreError) -> JSONResponse:
    logger.error("Event store unavailable for %s: %s", request.url.path, str(exc))
    return JSONResponse({"detail": "Service temporarily unavailable"}, status_code=503)


async def partner_registry_error_handler(request: Request, exc: PartnerRegistryError) -> JSONResponse:
    logger.error("Partner registry unavailable for %s: %s", request.url.path, str(exc))
    return JSONResponse({"detail": "Service temporarily unavailable"}, status_code=503)


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level, site_key=settings.site_key)

    application = FastAPI(
        title="Dealnet",
        description="Attribution, signals and partner governance for the deals network",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(CorrelationIdMiddleware)
    application.add_exception_handler(EventStoreError, event_store_error_handler)
    application.add_exception_handler(PartnerRegistryError, partner_registry_error_handler)

    # Include all routes
    application.include_router(api_router)

    return application


app = create_app()
