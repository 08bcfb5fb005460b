import hmac
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.api.routes.health import router as health_router
from app.api.routes.profiles import router as profiles_router
from app.api.routes.projects import router as projects_router
from app.api.routes.rule_types import router as rule_types_router
from app.api.routes.users import router as users_router
from app.api.server import ControlPlaneServer
from app.core.config import settings
from app.core.db import get_async_sessionmaker, reset_async_engine
from app.core.errors import (
    ControlPlaneError,
    StatusCode,
    get_http_status,
    public_details,
)
from app.core.events import EventPublisher, LoggingPublisher
from app.core.observability import (
    ObservabilityMiddleware,
    configure_structured_logging,
    get_request_id,
    metrics_endpoint,
)
from app.core.security import TokenValidator, build_token_validator, close_async_http_client
from app.db.sql_store import SqlStore
from app.db.store import Store

# Configure structured logging before creating logger
if settings.observability_structured_logs:
    configure_structured_logging(settings.app_log_level)

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


def _error_body(code: str, message: str, details: dict | None = None) -> dict:
    return {"code": code, "message": message, "details": details or {}}


def create_app(
    store: Store | None = None,
    publisher: EventPublisher | None = None,
    validator: TokenValidator | None = None,
) -> FastAPI:
    """
    Create and configure the FastAPI gateway.

    Sets up:
    - Structured logging with correlation IDs
    - Observability middleware (metrics, request tracking)
    - CORS middleware
    - Exception handlers for domain errors
    - API routers
    - Metrics endpoint for Prometheus scraping

    The store, publisher and token validator default to the production
    ones; tests pass their own.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await close_async_http_client()
        if store is None:
            await reset_async_engine()

    app = FastAPI(
        title="Policy Control Plane",
        description="Multi-tenant control plane for supply-chain security policies",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.server = ControlPlaneServer(
        store if store is not None else SqlStore(get_async_sessionmaker()),
        publisher or LoggingPublisher(),
        validator or build_token_validator(),
    )

    # ============================================================================
    # Middleware
    # ============================================================================

    if settings.observability_enabled:
        app.add_middleware(ObservabilityMiddleware)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ============================================================================
    # Exception Handlers
    # ============================================================================

    @app.exception_handler(ControlPlaneError)
    async def control_plane_error_handler(
        request: Request, exc: ControlPlaneError
    ) -> JSONResponse:
        """
        Render a domain error as `{code, message, details}`.

        Internal and Unknown errors never carry details; their cause was
        already logged by the context pipeline.
        """
        status_code = get_http_status(exc)
        if status_code >= 500:
            logger.error(
                "%s: %s", exc.__class__.__name__, exc.message, extra={"path": request.url.path}
            )

        return JSONResponse(
            status_code=status_code,
            content=_error_body(exc.code.value, exc.message, public_details(exc)),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body("HTTPException", str(exc.detail)),
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Catch-all: log the exception, answer with a generic 500."""
        logger.error(
            "Unhandled exception: %s",
            exc,
            exc_info=True,
            extra={"path": request.url.path, "request_id": get_request_id()},
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=_error_body(StatusCode.UNKNOWN.value, "unexpected error"),
        )

    # ============================================================================
    # Router Registration
    # ============================================================================

    app.include_router(health_router, prefix=API_PREFIX)
    app.include_router(rule_types_router, prefix=API_PREFIX)
    app.include_router(profiles_router, prefix=API_PREFIX)
    app.include_router(users_router, prefix=API_PREFIX)
    app.include_router(projects_router, prefix=API_PREFIX)

    # ============================================================================
    # Metrics Endpoint (Prometheus) - Token Protected
    # ============================================================================

    async def protected_metrics(request: Request) -> Response:
        """
        Prometheus metrics, behind the X-Metrics-Token header.
        """
        expected_token = settings.metrics_token
        if not expected_token:
            logger.error("Metrics endpoint accessed but METRICS_TOKEN not configured")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Metrics token not configured. Set METRICS_TOKEN environment variable.",
            )

        # Constant-time comparison
        metrics_token = request.headers.get("X-Metrics-Token")
        if not hmac.compare_digest(metrics_token or "", expected_token):
            logger.warning(
                "Unauthorized metrics access attempt",
                extra={"client_ip": request.client.host if request.client else "unknown"},
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN, detail="Invalid metrics token"
            )

        return metrics_endpoint()

    if settings.observability_enabled:
        app.add_route("/metrics", protected_metrics)

    return app
