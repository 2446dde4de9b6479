"""
Main FastAPI application.

Payment session and notification API with:
- CORS configuration
- Error handling
- Request ID tracking
- Structured logging
- Prometheus metrics

Run with ``uvicorn --factory catering_payments.api.main:create_app``.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import httpx
import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from catering_payments import __version__
from catering_payments.config import Settings, get_settings
from catering_payments.core.clock import Clock, SystemClock
from catering_payments.core.exceptions import GatewayUnavailableError
from catering_payments.core.payment_service import PaymentService
from catering_payments.core.reconciliation import PendingPaymentReconciler
from catering_payments.core.transaction_ids import TransactionIdFactory
from catering_payments.core.webhook import WebhookReconciler
from catering_payments.database.connection import (
    close_db,
    create_engine,
    create_session_factory,
    init_db,
)
from catering_payments.integrations.auth import TokenVerifier
from catering_payments.integrations.midtrans_client import MidtransClient
from catering_payments.monitoring.health import HealthCheck
from catering_payments.monitoring.logging import setup_logging

from .routes import admin_router, monitoring_router, payment_router, webhook_router

logger = structlog.get_logger(__name__)


def _lifespan(engine: Optional[AsyncEngine]):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, Any]:
        """
        Application lifespan manager.

        Creates missing tables on startup and disposes of the engine on
        shutdown, when the app owns its engine.
        """
        settings: Settings = app.state.settings
        logger.info("application_startup", app_name=settings.app_name, env=settings.app_env)

        if engine is not None:
            try:
                await init_db(engine)
                logger.info("database_initialized")
            except Exception as e:
                logger.error("database_initialization_failed", error=str(e))
                raise

        yield

        logger.info("application_shutdown")
        if engine is not None:
            await close_db(engine)
            logger.info("database_connections_closed")

    return lifespan


def create_app(
    settings: Optional[Settings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    clock: Optional[Clock] = None,
    gateway_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the application with its services wired from ``settings``.

    Args:
        settings: Application settings (defaults to the environment)
        session_factory: Optional session factory; the app creates and owns
            an engine when omitted
        clock: Optional time source (defaults to the configured timezone)
        gateway_transport: Optional httpx transport for the gateway client

    Raises:
        GatewayUnavailableError: The gateway server key is not configured
    """
    settings = settings or get_settings()
    setup_logging(settings)

    if not settings.midtrans_server_key:
        logger.error("midtrans_server_key_missing")
        raise GatewayUnavailableError("MIDTRANS_SERVER_KEY not configured")

    engine: Optional[AsyncEngine] = None
    if session_factory is None:
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)

    clock = clock or SystemClock(settings.timezone)
    gateway = MidtransClient(settings.gateway_config(), transport=gateway_transport)
    id_factory = TransactionIdFactory(settings.transaction_prefix, clock)
    webhook_reconciler = WebhookReconciler(settings.midtrans_server_key, id_factory, clock)

    app = FastAPI(
        title="Catering Payments",
        description=(
            "Midtrans payment sessions and payment notification reconciliation "
            "for catering orders."
        ),
        version=__version__,
        lifespan=_lifespan(engine),
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.payment_service = PaymentService(settings, gateway, clock, id_factory=id_factory)
    app.state.webhook_reconciler = webhook_reconciler
    app.state.pending_reconciler = PendingPaymentReconciler(
        settings, gateway, webhook_reconciler, clock
    )
    app.state.token_verifier = TokenVerifier(
        settings.auth_jwt_secret, audience=settings.auth_jwt_audience or None
    )
    app.state.health_check = HealthCheck(settings, session_factory)

    # CORS configuration
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.get_allowed_origins_list(),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_request_id_middleware(request: Request, call_next: Any) -> Response:
        """
        Add request ID to all requests for tracing.

        Also adds timing information and structured logging context.
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        start_time = time.time()

        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        logger.info(
            "request_started",
            client_host=request.client.host if request.client else None,
        )

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            logger.info(
                "request_completed",
                status_code=response.status_code,
                duration_seconds=time.time() - start_time,
            )
            return response

        except Exception as e:
            logger.error(
                "request_failed",
                error=str(e),
                duration_seconds=time.time() - start_time,
            )
            raise

        finally:
            structlog.contextvars.clear_contextvars()

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled exceptions."""
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
        )
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "error": "Internal server error",
            },
        )

    app.include_router(payment_router)
    app.include_router(webhook_router)
    app.include_router(admin_router)
    app.include_router(monitoring_router)

    @app.get("/", tags=["root"])
    async def root() -> dict[str, Any]:
        """Root endpoint with API information."""
        return {
            "service": settings.app_name,
            "version": __version__,
            "status": "operational",
            "environment": settings.app_env,
            "production_gateway": settings.midtrans_is_production,
            "docs": "/docs",
            "health": "/health",
            "metrics": "/metrics",
        }

    logger.info("application_created", app_name=settings.app_name)
    return app


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "catering_payments.api.main:create_app",
        factory=True,
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
