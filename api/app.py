"""
learnflow - FastAPI Application Factory

Shared pieces of the lms and reco apps: lifespan, request tracking
middleware, error mapping and the health endpoint.

Error mapping:
    ValidationError  -> 422
    NotFoundError    -> 404
    ConcurrencyError -> 409
    other LearnflowError -> 500 (503 when recoverable upstream trouble)
"""
from contextlib import asynccontextmanager
from typing import Any, Optional, Union
import time
import uuid

from fastapi import APIRouter, FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry import trace
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from core.bootstrap import LmsServices, RecoServices
from core.errors import (
    ConcurrencyError,
    LearnflowError,
    NotFoundError,
    UpstreamUnavailableError,
    ValidationError,
)
from api.schemas import HealthResponse
from observability import get_logger
from observability.logging import bind_context, clear_context
from observability.tracing import create_span


logger = get_logger(__name__)

Services = Union[LmsServices, RecoServices]

VERSION = "0.1.0"


def get_current_trace_id() -> Optional[str]:
    """Get current trace ID as hex string."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        if ctx.is_valid:
            return format(ctx.trace_id, "032x")
    return None


def error_status(error: LearnflowError) -> int:
    if isinstance(error, ConcurrencyError):
        return 409
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ValidationError):
        return 422
    if isinstance(error, UpstreamUnavailableError):
        return 503
    return 500


async def learnflow_error_handler(request: Request, exc: LearnflowError) -> JSONResponse:
    status_code = error_status(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "Request rejected",
        error_code=exc.error_code,
        error=exc.message,
        status_code=status_code,
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.message, "code": exc.error_code},
    )


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def get_services(request: Request) -> Any:
    return request.app.state.services


def create_app(
    service_name: str,
    services: Services,
    router: APIRouter,
    create_tables: bool = False,
) -> FastAPI:
    """
    Create one service's FastAPI application.

    Args:
        service_name: "lms" or "reco"
        services: Wired collaborators from core.bootstrap
        router: The service's /api routes
        create_tables: Create the service's tables on startup
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting learnflow service", service=service_name, event="startup")
        await services.startup(create_tables=create_tables)
        yield
        logger.info("Shutting down learnflow service", service=service_name, event="shutdown")
        await services.shutdown()

    app = FastAPI(
        title=f"learnflow {service_name}",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.service_name = service_name

    app.add_middleware(
        CORSMiddleware,
        allow_origins=services.config.api.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(LearnflowError, learnflow_error_handler)
    app.middleware("http")(observability_middleware)

    app.include_router(router, prefix="/api")
    app.add_api_route("/health", health_check, methods=["GET"], response_model=HealthResponse)
    return app


async def observability_middleware(request: Request, call_next):
    """Add request tracking with trace context."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    start_time = time.perf_counter()

    # Bind request context to all logs
    bind_context(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    try:
        response: Response = await call_next(request)
        duration = time.perf_counter() - start_time

        trace_id = get_current_trace_id()
        if trace_id:
            response.headers["X-Trace-ID"] = trace_id

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration * 1000:.2f}ms"

        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=duration * 1000,
        )
        return response
    except Exception as e:
        duration = time.perf_counter() - start_time
        logger.error("Request failed", error=str(e), duration_ms=duration * 1000)
        raise
    finally:
        clear_context()


async def health_check(request: Request) -> HealthResponse:
    """Check service health and database reachability."""
    services = get_services(request)
    with create_span("health_check", attributes={"endpoint": "/health"}):
        try:
            async with services.db.session() as session:
                await session.execute(text("SELECT 1"))
            database = "healthy"
        except (SQLAlchemyError, OSError) as e:
            logger.warning("Database health check failed", error=str(e))
            database = "unavailable"

        return HealthResponse(
            status="healthy" if database == "healthy" else "degraded",
            service=request.app.state.service_name,
            version=VERSION,
            components={"database": database},
            trace_id=get_current_trace_id(),
        )
