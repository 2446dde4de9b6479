"""
API routes for payment session creation and payment notifications.
"""
import json
from typing import Any, Dict, Optional

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse, PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from catering_payments.core.exceptions import PaymentError, PaymentValidationError, StoreError
from catering_payments.core.payment_service import normalize_order_ids
from catering_payments.core.webhook import PaymentNotification
from catering_payments.database.connection import get_db
from catering_payments.database.repository import OrderRepository
from catering_payments.integrations.auth import CallerContext

from .schemas import (
    CreatePaymentRequest,
    CreatePaymentResponse,
    ErrorResponse,
    HealthCheckResponse,
    MidtransNotification,
    ReconciliationResponse,
    WebhookResponse,
)

logger = structlog.get_logger(__name__)

# The storefront and the gateway call these endpoints cross-origin
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}

# Create routers
payment_router = APIRouter(prefix="/payments", tags=["payments"])
webhook_router = APIRouter(prefix="/webhooks", tags=["webhooks"])
admin_router = APIRouter(prefix="/admin", tags=["admin"])
monitoring_router = APIRouter(tags=["monitoring"])


def get_repository(request: Request, db: AsyncSession = Depends(get_db)) -> OrderRepository:
    """Store access bound to the request's session."""
    return OrderRepository(db, timeout_seconds=request.app.state.settings.store_timeout_seconds)


def _error(message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"success": False, "error": message},
        headers=CORS_HEADERS,
    )


async def _json_body(request: Request) -> Any:
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise PaymentValidationError("Invalid JSON body")


@payment_router.options("/create", include_in_schema=False)
async def create_payment_preflight() -> Response:
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@payment_router.post(
    "/create",
    response_model=CreatePaymentResponse,
    responses={400: {"model": ErrorResponse}},
    summary="Create a payment session",
    description="Create a Midtrans Snap session for one or more orders, reusing an open one",
)
async def create_payment(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    repository: OrderRepository = Depends(get_repository),
) -> Response:
    """
    Create or reuse a payment session.

    Guest checkouts read orders with the service credential; authenticated
    checkouts only see orders owned by the bearer token's subject.
    """
    state = request.app.state
    try:
        body = await _json_body(request)
        try:
            payload = CreatePaymentRequest.model_validate(body)
        except ValidationError as e:
            logger.info("api_create_payment_invalid_body", errors=e.error_count())
            raise PaymentValidationError("Invalid request body")

        order_ids = normalize_order_ids(payload.order_id, payload.order_ids)
        if payload.is_guest:
            caller = CallerContext.guest()
        else:
            caller = state.token_verifier.verify(authorization)

        logger.info(
            "api_create_payment_request",
            order_count=len(order_ids),
            is_guest=caller.is_guest,
            force_new=payload.force_new_token,
        )

        result = await state.payment_service.create_payment(
            repository, order_ids, caller, force_new=payload.force_new_token
        )

    except PaymentValidationError as e:
        logger.warning("api_create_payment_validation_error", error=e.message)
        return _error(e.message)

    except PaymentError as e:
        logger.info("api_create_payment_error", error=e.message, error_type=type(e).__name__)
        return _error(e.message)

    except Exception as e:
        logger.error("api_create_payment_unexpected_error", error=str(e))
        return _error("Failed to create payment")

    logger.info(
        "api_create_payment_success",
        reused=result.reused,
        payment_method=result.payment_info.payment_method,
    )
    return JSONResponse(content=result.to_response(), headers=CORS_HEADERS)


@webhook_router.options("/midtrans", include_in_schema=False)
async def midtrans_webhook_preflight() -> Response:
    return PlainTextResponse("ok", headers=CORS_HEADERS)


@webhook_router.post(
    "/midtrans",
    response_model=WebhookResponse,
    summary="Midtrans notification endpoint",
    description="Apply a Midtrans payment notification; always answers HTTP 200",
)
async def midtrans_webhook(
    request: Request,
    repository: OrderRepository = Depends(get_repository),
) -> Response:
    """
    Handle Midtrans payment notifications.

    Any failure is reported in the body, never as an HTTP error, because
    the gateway retries non-2xx answers indefinitely.
    """
    try:
        body = await _json_body(request)
        notification = MidtransNotification.model_validate(body)
    except (PaymentValidationError, ValidationError) as e:
        logger.warning("api_webhook_invalid_payload", error=str(e))
        return JSONResponse(
            content={"success": False, "message": "Invalid notification payload"},
            headers=CORS_HEADERS,
        )

    try:
        result = await request.app.state.webhook_reconciler.reconcile(
            repository, PaymentNotification.from_mapping(notification.model_dump())
        )
        content: Dict[str, Any] = result.to_response()
    except Exception as e:
        logger.error("api_webhook_unexpected_error", error=str(e))
        content = {"success": False, "message": "Failed to process notification"}

    return JSONResponse(content=content, headers=CORS_HEADERS)


@admin_router.post(
    "/reconcile",
    response_model=ReconciliationResponse,
    summary="Run pending-payment reconciliation",
    description="Check stale pending transactions against the gateway and apply their status",
)
async def run_reconciliation(
    request: Request,
    repository: OrderRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Run one reconciliation batch."""
    try:
        report = await request.app.state.pending_reconciler.run_once(repository)
    except StoreError as e:
        logger.error("api_reconciliation_error", error=e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Reconciliation failed: {e.message}",
        )
    return report.to_dict()


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(request: Request) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await request.app.state.health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(request: Request) -> Dict[str, Any]:
    """Liveness probe endpoint."""
    return await request.app.state.health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(request: Request) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    result = await request.app.state.health_check.readiness()
    if result["status"] != "healthy":
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=result)
    return result


@monitoring_router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics",
    include_in_schema=False,
)
async def prometheus_metrics() -> Response:
    """Expose Prometheus metrics."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
