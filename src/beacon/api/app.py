"""FastAPI application factory for Beacon.

Creates the application with:
- Versioned ingestion API (/api/v1/events, /api/v1/events/batch, /api/v1/identify)
- Session-authenticated dashboard reads, SSE streams, webhooks and push
- Health probes
- Lifecycle management for the database, Redis and the event store client
- Uniform ``{success: false, ...}`` error bodies
- ORJSON for fast JSON serialization
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, cast

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ExceptionHandler

from beacon.api.errors import (
    ApiError,
    api_error_handler,
    generic_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from beacon.api.middleware import CorrelationMiddleware
from beacon.api.routers import events, health, ingest, push, streams, webhooks
from beacon.api.services import build_services
from beacon.cache.redis import close_redis, get_redis
from beacon.config import settings
from beacon.observability import configure_logging
from beacon.persistence.db import close_db, get_session_factory, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle.

    On startup:
    - Configure structured logging
    - Create tables and the connection pool
    - Connect to Redis
    - Build the service graph

    On shutdown:
    - Wait for pending fan-out and cache writes
    - Close the event store client, Redis and the database
    """
    configure_logging(json_format=settings.env != "dev", level=settings.log_level)

    logger.info(f"Starting Beacon ({settings.env})")
    await init_db()
    redis = await get_redis()
    app.state.services = build_services(redis, get_session_factory())
    logger.info("Beacon startup complete", extra={"instance_id": settings.instance_id})

    yield

    logger.info("Shutting down Beacon")
    await app.state.services.aclose()
    await close_redis()
    await close_db()
    logger.info("Beacon shutdown complete")


def create_app(use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application.

    Tests pass ``use_lifespan=False`` and assign ``app.state.services``
    themselves.
    """
    app = FastAPI(
        title="Beacon",
        description="Multi-tenant event ingestion and notification service",
        version="0.1.0",
        default_response_class=ORJSONResponse,
        lifespan=lifespan if use_lifespan else None,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )

    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(ApiError, cast(ExceptionHandler, api_error_handler))
    app.add_exception_handler(
        StarletteHTTPException, cast(ExceptionHandler, http_exception_handler)
    )
    app.add_exception_handler(
        RequestValidationError, cast(ExceptionHandler, validation_exception_handler)
    )
    app.add_exception_handler(Exception, cast(ExceptionHandler, generic_exception_handler))

    app.include_router(health.router)
    app.include_router(ingest.router)
    app.include_router(streams.router)
    app.include_router(events.router)
    app.include_router(webhooks.router)
    app.include_router(push.router)

    return app
