# -*- coding: utf-8 -*-
"""Location: ./toolchest/main.py
Copyright 2025
SPDX-License-Identifier: Apache-2.0
Authors: ToolChest Contributors

ToolChest Admin - main module.
This module defines the FastAPI application serving the admin back office
API. It is responsible for:
- Building the shared cache and the relationship, analytics and performance services
- Starting and stopping the background monitoring loop
- Recording request latency and failures for the performance figures
- Translating service, validation and database errors into HTTP responses

Run with ``uvicorn toolchest.main:app`` or ``python -m toolchest.main``.
"""

# Standard
from contextlib import asynccontextmanager
import time
from typing import AsyncIterator

# Third-Party
from fastapi import Depends, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
import uvicorn
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

# First-Party
from toolchest import __version__
from toolchest.cache import TTLCache
from toolchest.config import settings
from toolchest.db import get_db, init_db
from toolchest.routers import analytics, monitoring, relationships
from toolchest.services.analytics_service import AnalyticsService
from toolchest.services.base_service import ServiceError
from toolchest.services.logging_service import LoggingService
from toolchest.services.performance_service import PerformanceService
from toolchest.services.relationship_service import RelationshipService
from toolchest.utils.error_formatter import ErrorFormatter
from toolchest.utils.orjson_response import ORJSONResponse

# Initialize logging service first
logging_service = LoggingService()
logger = logging_service.get_logger("toolchest")


def build_services(app: FastAPI) -> None:
    """Create the application services and attach them to ``app.state``.

    The relationship and analytics services share one cache so writes to
    assignments can invalidate cached analytics.

    Args:
        app: Application to configure.
    """
    cache = TTLCache(default_ttl=settings.cache_default_ttl, max_entries=settings.cache_max_entries)
    performance_service = PerformanceService()
    app.state.cache = cache
    app.state.performance_service = performance_service
    app.state.relationship_service = RelationshipService(cache=cache)
    app.state.analytics_service = AnalyticsService(performance_service=performance_service, cache=cache)


####################
# Startup/Shutdown #
####################
@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """
    Manage the application's startup and shutdown lifecycle.

    Args:
        _app (FastAPI): FastAPI app

    Yields:
        None
    """
    # Initialize logging service FIRST so startup messages use the configured handlers
    await logging_service.initialize()
    logger.info(f"Starting {settings.app_name} {__version__}")
    settings.log_summary()

    init_db()
    build_services(_app)
    relationship_service: RelationshipService = _app.state.relationship_service
    analytics_service: AnalyticsService = _app.state.analytics_service
    await relationship_service.initialize()
    await analytics_service.initialize()
    if settings.monitoring_enabled:
        analytics_service.start_monitoring()

    try:
        yield
    finally:
        logger.info("Shutting down services")
        await analytics_service.shutdown()
        await relationship_service.shutdown()
        await logging_service.shutdown()


# Initialize FastAPI app with orjson for JSON serialization
app = FastAPI(
    title=settings.app_name,
    version=__version__,
    description="Admin back office API for the ToolChest catalog",
    root_path=settings.app_root_path,
    lifespan=lifespan,
    default_response_class=ORJSONResponse,
)


@app.middleware("http")
async def record_request_timing(request: Request, call_next):
    """Feed request latency and server failures into the performance service.

    Args:
        request: Incoming request.
        call_next: Next handler in the chain.

    Returns:
        Response: The downstream response.

    Raises:
        Exception: Re-raises unhandled downstream errors after recording them.
    """
    performance_service = getattr(request.app.state, "performance_service", None)
    started = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        if performance_service is not None:
            performance_service.record_request((time.perf_counter() - started) * 1000, failed=True)
        raise
    if performance_service is not None:
        performance_service.record_request((time.perf_counter() - started) * 1000, failed=response.status_code >= 500)
    return response


@app.exception_handler(ServiceError)
async def service_exception_handler(request: Request, exc: ServiceError):
    """Answer service errors with their mapped status code.

    Server-side failures are also recorded in the monitoring error log.

    Args:
        request: The request that failed.
        exc: The service error.

    Returns:
        ORJSONResponse: Error body with the error's status code.
    """
    if exc.status_code >= 500:
        analytics_service = getattr(request.app.state, "analytics_service", None)
        if analytics_service is not None:
            analytics_service.log_error(exc.message, exc, {"path": request.url.path, "context": exc.context})
    return ORJSONResponse(status_code=exc.status_code, content=ErrorFormatter.format_service_error(exc))


@app.exception_handler(ValidationError)
async def validation_exception_handler(_request: Request, exc: ValidationError):
    """Handle Pydantic validation errors raised while building service inputs.

    Args:
        _request: The request that failed.
        exc: The validation error.

    Returns:
        ORJSONResponse: A 422 response with formatted details.
    """
    return ORJSONResponse(status_code=422, content=ErrorFormatter.format_validation_error(exc))


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(_request: Request, exc: RequestValidationError):
    """Handle FastAPI request parsing errors.

    Args:
        _request: The request that failed.
        exc: The request validation error.

    Returns:
        ORJSONResponse: A 422 response listing the offending fields.
    """
    return ORJSONResponse(status_code=422, content={"message": "Validation failed", "detail": jsonable_encoder(exc.errors()), "success": False})


@app.exception_handler(IntegrityError)
async def database_exception_handler(_request: Request, exc: IntegrityError):
    """Handle integrity errors that escaped the service layer.

    Args:
        _request: The request that failed.
        exc: The integrity error.

    Returns:
        ORJSONResponse: A 409 response with a user-friendly message.
    """
    return ORJSONResponse(status_code=409, content=ErrorFormatter.format_database_error(exc))


# Honour X-Forwarded-* headers when deployed behind a reverse proxy
app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

app.include_router(relationships.router)
app.include_router(analytics.router)
app.include_router(monitoring.router)


@app.get("/health")
async def healthcheck(request: Request, db: Session = Depends(get_db)):
    """Liveness and database reachability.

    Args:
        request: Incoming request.
        db: Database session.

    Returns:
        dict: Overall status, database status and uptime.
    """
    performance_service: PerformanceService = request.app.state.performance_service
    database = performance_service.check_database(db)
    return {
        "status": "healthy" if database.status != "unhealthy" else "unhealthy",
        "database": database.status,
        "uptimeSeconds": round(performance_service.uptime_seconds(), 2),
        "version": __version__,
    }


if __name__ == "__main__":  # pragma: no cover
    uvicorn.run("toolchest.main:app", host=settings.host, port=settings.port, log_config=None)
