"""
VPS Autoscaler - Main Application

FastAPI application hosting the management REST API and the background
monitoring-and-autoscaling control loop.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import UTC, datetime
import logging
from uuid import uuid4
import time
from typing import Any, AsyncGenerator, cast

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from pydantic import ValidationError
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from apps.backend.src.api import api_router
from apps.backend.src.api.common import limiter
from apps.backend.src.core.clock import SystemClock
from apps.backend.src.core.config import get_settings
from apps.backend.src.core.database import (
    check_database_health,
    close_database,
    get_async_session_factory,
    init_database,
)
from apps.backend.src.core.exceptions import InfrastructureException
from apps.backend.src.core.logging import set_request_id, setup_logging
from apps.backend.src.schemas.common import HealthCheckResponse
from apps.backend.src.services.control_loop import create_control_loop
from apps.backend.src.utils.exception_handling import status_for_exception
from apps.backend.src.utils.provisioning_client import get_provisioning_client

# Global settings
settings = get_settings()

# Configure structured logging
setup_logging(level=settings.logging.log_level.upper(), log_format=settings.logging.log_format)

logger = logging.getLogger(__name__)

APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager for startup and shutdown tasks"""
    logger.info("Starting VPS Autoscaler API Server...")

    app.state.control_loop = None
    app.state.provisioning_client = None
    app.state.clock = SystemClock()

    try:
        await init_database()
        logger.info("Database initialized successfully")

        provisioning_client = get_provisioning_client()
        app.state.provisioning_client = provisioning_client

        # The driver always exists so ticks and manual scaling can be requested over the API
        control_loop = create_control_loop(
            settings, get_async_session_factory(), provisioning_client, clock=app.state.clock
        )
        app.state.control_loop = control_loop

        if settings.control_loop.control_loop_enabled:
            await control_loop.start()
            logger.info("Control loop started successfully")
        else:
            logger.info("Control loop disabled via configuration")

        logger.info(f"Environment: {settings.environment}")
        logger.info(f"Database: {settings.database.postgres_host}:{settings.database.postgres_port}")
        logger.info(f"API Server: {settings.api.api_host}:{settings.api.api_port}")
        logger.info("API Server startup completed - Ready to accept HTTP requests")

        yield

    except Exception as e:
        logger.error(f"Startup failed: {e}")
        raise
    finally:
        logger.info("Shutting down VPS Autoscaler API Server...")

        control_loop = getattr(app.state, "control_loop", None)
        if control_loop is not None:
            await control_loop.stop()
            app.state.control_loop = None
            logger.info("Control loop stopped")

        provisioning_client = getattr(app.state, "provisioning_client", None)
        if provisioning_client is not None:
            await provisioning_client.close()
            app.state.provisioning_client = None

        await close_database()
        logger.info("Database connections closed")

        logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="VPS Autoscaler API",
    description="Monitoring and autoscaling control loop for cloud virtual servers",
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    debug=settings.debug,
)

# Add rate limiter state to app
app.state.limiter = limiter


def rate_limit_handler(request: Request, exc: Exception) -> Response:
    """Wrapper for slowapi rate limit handler with proper typing"""
    if isinstance(exc, RateLimitExceeded):
        return _rate_limit_exceeded_handler(request, exc)
    return JSONResponse({"error": "Rate limit exceeded"}, status_code=429)


app.add_exception_handler(RateLimitExceeded, rate_limit_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


# Correlation ID middleware (request-scoped request_id)
@app.middleware("http")
async def correlation_middleware(request: Request, call_next: Any) -> Response:
    request_id = request.headers.get("X-Request-ID") or str(uuid4())
    set_request_id(request_id)
    try:
        response = cast(Response, await call_next(request))
    finally:
        set_request_id(None)
    response.headers["X-Request-ID"] = request_id
    return response


@app.middleware("http")
async def timing_middleware(request: Request, call_next: Any) -> Response:
    """Add request timing and basic logging"""
    start_time = time.time()

    logger.info(
        "request.start",
        extra={
            "method": request.method,
            "path": str(request.url.path),
            "client": request.client.host if request.client else None,
        },
    )

    try:
        response = cast(Response, await call_next(request))
    except Exception as e:
        logger.error(
            "request.error",
            exc_info=True,
            extra={
                "method": request.method,
                "path": str(request.url.path),
                "duration_ms": int((time.time() - start_time) * 1000),
                "exception_type": type(e).__name__,
            },
        )
        raise

    process_time = time.time() - start_time
    response.headers["X-Process-Time"] = str(process_time)
    logger.info(
        "request.end",
        extra={
            "method": request.method,
            "path": str(request.url.path),
            "status_code": response.status_code,
            "duration_ms": int(process_time * 1000),
        },
    )
    return response


def _error_body(request: Request, code: str, message: Any, details: dict[str, Any] | None = None) -> dict[str, Any]:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "timestamp": datetime.now(UTC).isoformat(),
        "path": str(request.url.path),
        "method": request.method,
    }
    if details is not None:
        error["details"] = details
    return {"error": error}


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle HTTP exceptions with consistent error format"""
    logger.warning(f"HTTP {exc.status_code} error on {request.method} {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request, f"HTTP_{exc.status_code}", exc.detail),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """Handle Pydantic validation errors"""
    logger.warning(f"Validation error on {request.method} {request.url.path}: {exc.error_count()} errors")

    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=_error_body(
            request,
            "VALIDATION_ERROR",
            "Request validation failed",
            {"error_count": exc.error_count(), "errors": errors},
        ),
    )


@app.exception_handler(InfrastructureException)
async def infrastructure_exception_handler(request: Request, exc: InfrastructureException) -> JSONResponse:
    """Handle domain exceptions raised outside of decorated handlers"""
    logger.error(
        f"Infrastructure error on {request.method} {request.url.path}: {exc.error_code} - {exc.message}",
        extra=exc.log_extra(),
    )
    body = _error_body(request, exc.error_code, exc.message, exc.details)
    body["error"]["server_id"] = exc.server_id
    body["error"]["operation"] = exc.operation
    return JSONResponse(status_code=status_for_exception(exc), content=body)


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_exception_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Handle SQLAlchemy database errors"""
    logger.error(f"Database error on {request.method} {request.url.path}: {str(exc)}", exc_info=True)

    error_msg = str(exc).lower()
    if any(keyword in error_msg for keyword in ["connection", "timeout", "connect"]):
        status_code, error_code, message = 503, "DATABASE_CONNECTION_ERROR", "Database connection failed"
    else:
        status_code, error_code, message = 500, "DATABASE_OPERATION_ERROR", "Database operation failed"

    return JSONResponse(
        status_code=status_code,
        content=_error_body(
            request,
            error_code,
            message,
            {"database_error": str(exc) if settings.debug else "Database error occurred"},
        ),
    )


@app.exception_handler(asyncio.TimeoutError)
async def timeout_exception_handler(request: Request, exc: asyncio.TimeoutError) -> JSONResponse:
    """Handle asyncio timeout errors"""
    logger.error(f"Timeout error on {request.method} {request.url.path}: Operation timed out")
    return JSONResponse(
        status_code=504,
        content=_error_body(request, "OPERATION_TIMEOUT", "Operation timed out", {"timeout_type": "asyncio_timeout"}),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle unexpected exceptions"""
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}",
        exc_info=True,
        extra={
            "exception_type": type(exc).__name__,
            "request_path": str(request.url.path),
            "request_method": request.method,
        },
    )
    return JSONResponse(
        status_code=500,
        content=_error_body(
            request,
            "INTERNAL_SERVER_ERROR",
            "An unexpected error occurred",
            {
                "exception_type": type(exc).__name__,
                "exception_message": str(exc) if settings.debug else "Internal server error",
            },
        ),
    )


@app.get("/health", response_model=HealthCheckResponse)
@limiter.limit("10/minute")
async def health_check(request: Request) -> HealthCheckResponse:
    """Application health check endpoint"""
    database_health = await check_database_health()
    control_loop = getattr(request.app.state, "control_loop", None)

    if control_loop is None:
        loop_status = "not_initialized"
    else:
        loop_status = "running" if control_loop.is_running else "stopped"

    database_ok = database_health.get("status") == "healthy"
    return HealthCheckResponse(
        status="healthy" if database_ok else "degraded",
        version=APP_VERSION,
        environment=settings.environment,
        database=database_health,
        services={
            "database": "healthy" if database_ok else "unhealthy",
            "control_loop": loop_status,
            "api_server": "healthy",
        },
        timestamp=datetime.now(UTC),
    )


@app.get("/")
@limiter.limit("30/minute")
async def root(request: Request) -> dict[str, Any]:
    """Root endpoint with API information"""
    return {
        "name": "VPS Autoscaler API",
        "version": APP_VERSION,
        "description": "Monitoring and autoscaling control loop for cloud virtual servers",
        "endpoints": {"rest_api": "/api", "health": "/health", "documentation": "/docs"},
        "timestamp": datetime.now(UTC).isoformat(),
    }


app.include_router(api_router, prefix="/api")


# Development server startup
if __name__ == "__main__":
    uvicorn.run(
        "apps.backend.src.main:app",
        host=settings.api.api_host,
        port=settings.api.api_port,
        reload=settings.debug,
        log_level=settings.api.api_log_level.lower(),
        access_log=True,
    )
