"""
eventsink - webhook event ingestion and batched persistence for GitHub, Linear and Slack.
Main FastAPI application entry point (read API plus pipeline lifecycle).

The HTTP layer that verifies and receives webhooks calls
`app.state.ingestion.ingest(...)`; this app owns that pipeline's lifecycle.
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from eventsink.config import get_settings
from eventsink.database import dispose_engine
from eventsink.api.router import api_router
from eventsink.services.ingestion import create_ingestion_service
from eventsink.utils.errors import BatchFlushError
from eventsink.utils.logging import (
    configure_structured_logging,
    generate_correlation_id,
    set_correlation_id,
)

logger = logging.getLogger("eventsink")


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
    """Start the ingestion pipeline; drain it and close the pool on shutdown."""
    settings = get_settings()
    logger.info(
        "eventsink starting up (env=%s, batching=%s)",
        settings.app_env, settings.enable_batching,
    )

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

    ingestion = create_ingestion_service(settings)
    app.state.ingestion = ingestion
    await ingestion.start()

    try:
        yield
    finally:
        logger.info("eventsink shutting down - draining pipeline")
        try:
            await ingestion.stop()
        except BatchFlushError as e:
            logger.critical(
                "Shutdown drain failed, %d buffered events were not persisted: %s",
                e.pending, str(e.cause),
                extra={"batch_size": e.pending},
            )
            raise
        finally:
            await dispose_engine()
        logger.info("eventsink shutdown complete")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    configure_structured_logging(settings.log_level)

    application = FastAPI(
        title="eventsink",
        description="Webhook event ingestion and batched persistence",
        version="1.0.0",
        lifespan=lifespan,
    )

    application.add_middleware(CorrelationIdMiddleware)
    application.include_router(api_router)

    return application


app = create_app()
