"""
API routes for payment initiation, gateway callbacks and invoices.
"""
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from fastapi.responses import RedirectResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.ext.asyncio import AsyncSession

from payment_reconciliation.config import Settings, get_settings
from payment_reconciliation.core.initiation import PaymentInitiator
from payment_reconciliation.core.invoices import InvoiceService, Page
from payment_reconciliation.core.reconciliation import ReconciliationEngine
from payment_reconciliation.core.state_machine import CallbackOutcome
from payment_reconciliation.database.connection import get_db
from payment_reconciliation.database.models import Payment
from payment_reconciliation.enums import PaymentPurpose
from payment_reconciliation.integrations.callbacks import CallbackChannel
from payment_reconciliation.monitoring.health import HealthCheck, HealthCheckError

from .deps import (
    Principal,
    get_health_check,
    get_initiator,
    get_invoice_service,
    get_principal,
    get_reconciliation_engine,
)
from .schemas import (
    ApiResponse,
    HealthCheckResponse,
    InitiatePaymentData,
    InitiatePaymentRequest,
    IpnAckResponse,
    PageMeta,
    PayerSummary,
    PaymentListResponse,
    PaymentResponse,
)

logger = structlog.get_logger(__name__)

payment_router = APIRouter(prefix="/payments", tags=["payments"])
callback_router = APIRouter(prefix="/payments/ssl", tags=["gateway-callbacks"])
monitoring_router = APIRouter(tags=["monitoring"])

MEMBERSHIP_SUCCESS_MESSAGE = "Payment successful & membership activated"
DONATION_SUCCESS_MESSAGE = "Payment successful & fund updated"


def _payment_response(payment: Payment, include_user: bool = True) -> PaymentResponse:
    user = None
    if include_user:
        payer = payment.user
        user = PayerSummary(
            id=str(payer.id),
            name=payer.name,
            email=payer.email,
            phone=payer.phone,
            address=payer.address,
            city_state=payer.city_state,
        )
    return PaymentResponse(
        id=str(payment.id),
        transaction_id=payment.transaction_id,
        user_id=str(payment.user_id),
        amount=payment.amount,
        method=payment.method,
        purpose=payment.purpose,
        status=payment.status,
        sender_number=payment.sender_number,
        paid_at=payment.paid_at,
        created_at=payment.created_at,
        user=user,
    )


def _page_response(page: Page, message: str) -> PaymentListResponse:
    return PaymentListResponse(
        message=message,
        data=[_payment_response(p) for p in page.items],
        meta=PageMeta(total=page.total, page=page.page, limit=page.limit, totalPages=page.total_pages),
    )


async def _callback_payload(request: Request) -> Dict[str, Any]:
    """Gateway callbacks are form posts; proxies sometimes re-post them as JSON."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}
    form = await request.form()
    return {key: value for key, value in form.items() if isinstance(value, str)}


def _frontend_redirect(settings: Settings, page: str, params: Optional[Dict[str, Any]] = None) -> RedirectResponse:
    url = f"{settings.frontend_url.rstrip('/')}/{page}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return RedirectResponse(url=url, status_code=status.HTTP_303_SEE_OTHER)


@payment_router.post(
    "/initiate",
    response_model=ApiResponse[InitiatePaymentData],
    summary="Initiate a payment",
    description="Create an INITIATED payment and return the gateway checkout URL",
)
async def initiate_payment(
    request: InitiatePaymentRequest,
    principal: Principal = Depends(get_principal),
    initiator: PaymentInitiator = Depends(get_initiator),
) -> ApiResponse[InitiatePaymentData]:
    start_time = time.time()
    logger.info(
        "api_initiate_payment_request",
        user_id=principal.user_id,
        method=request.method.value,
        purpose=request.purpose.value,
        amount=str(request.amount),
    )

    gateway_url = await initiator.initiate(
        user_id=principal.user_id,
        method=request.method,
        amount=request.amount,
        purpose=request.purpose,
    )

    logger.info("api_initiate_payment_success", duration_seconds=time.time() - start_time)
    return ApiResponse[InitiatePaymentData](
        message="Payment initiated successfully",
        data=InitiatePaymentData(gatewayUrl=gateway_url),
    )


@payment_router.get(
    "/invoice/{payment_id}",
    response_model=ApiResponse[PaymentResponse],
    summary="Get payment invoice",
    description="Fetch one payment; visible to its payer and to administrators",
)
async def get_invoice(
    payment_id: str,
    principal: Principal = Depends(get_principal),
    invoices: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db),
) -> ApiResponse[PaymentResponse]:
    payment = await invoices.get_payment_by_id(db, payment_id, principal.user_id, principal.role)
    return ApiResponse[PaymentResponse](
        message="Invoice retrieved successfully",
        data=_payment_response(payment),
    )


@payment_router.get(
    "/my-payments",
    response_model=PaymentListResponse,
    summary="List my payments",
)
async def list_my_payments(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    principal: Principal = Depends(get_principal),
    invoices: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db),
) -> PaymentListResponse:
    result = await invoices.list_for_user(db, principal.user_id, status=status_filter, page=page, limit=limit)
    return _page_response(result, "Payments retrieved successfully")


@payment_router.get(
    "",
    response_model=PaymentListResponse,
    summary="List all payments",
    description="Administrators only; filter by status and search by transaction id or sender number",
)
async def list_all_payments(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    limit: Optional[int] = Query(default=None, ge=1),
    principal: Principal = Depends(get_principal),
    invoices: InvoiceService = Depends(get_invoice_service),
    db: AsyncSession = Depends(get_db),
) -> PaymentListResponse:
    result = await invoices.list_all(
        db, principal.role, status=status_filter, search=search, page=page, limit=limit
    )
    return _page_response(result, "All payments retrieved successfully")


@callback_router.post("/success", summary="Gateway success redirect", response_class=RedirectResponse)
async def ssl_success(
    request: Request,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    payload = await _callback_payload(request)
    result = await engine.handle_callback(CallbackChannel.SUCCESS, payload)

    message = (
        MEMBERSHIP_SUCCESS_MESSAGE
        if result.purpose is PaymentPurpose.MEMBERSHIP_FEE
        else DONATION_SUCCESS_MESSAGE
    )
    return _frontend_redirect(
        settings,
        "payment-success.html",
        {"tranId": result.transaction_id, "amount": payload.get("amount", ""), "message": message},
    )


@callback_router.post("/fail", summary="Gateway failure redirect", response_class=RedirectResponse)
async def ssl_fail(
    request: Request,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    await engine.handle_callback(CallbackChannel.FAIL, await _callback_payload(request))
    return _frontend_redirect(settings, "payment-fail.html")


@callback_router.post("/cancel", summary="Gateway cancel redirect", response_class=RedirectResponse)
async def ssl_cancel(
    request: Request,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
    settings: Settings = Depends(get_settings),
) -> RedirectResponse:
    await engine.handle_callback(CallbackChannel.CANCEL, await _callback_payload(request))
    return _frontend_redirect(settings, "payment-cancel.html")


@callback_router.post(
    "/ipn",
    response_model=IpnAckResponse,
    summary="Gateway IPN",
    description="Server-to-server payment notification; always acknowledged",
)
async def ssl_ipn(
    request: Request,
    engine: ReconciliationEngine = Depends(get_reconciliation_engine),
) -> IpnAckResponse:
    result = await engine.handle_callback(CallbackChannel.IPN, await _callback_payload(request))
    message = "IPN processed" if result.outcome is CallbackOutcome.IPN_VALID else "Invalid IPN"
    return IpnAckResponse(
        message=message,
        result=result.result,
        transaction_id=result.transaction_id or None,
    )


@monitoring_router.get(
    "/health",
    response_model=HealthCheckResponse,
    summary="Health check",
    description="Check overall system health",
)
async def health(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Health check endpoint for monitoring."""
    return await health_check.check_all()


@monitoring_router.get(
    "/health/live",
    response_model=HealthCheckResponse,
    summary="Liveness probe",
    description="Kubernetes liveness probe endpoint",
)
async def liveness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    return await health_check.liveness()


@monitoring_router.get(
    "/health/ready",
    response_model=HealthCheckResponse,
    summary="Readiness probe",
    description="Kubernetes readiness probe endpoint",
)
async def readiness(health_check: HealthCheck = Depends(get_health_check)) -> Dict[str, Any]:
    """Readiness probe endpoint."""
    try:
        result = await health_check.readiness()
    except HealthCheckError as e:
        logger.error("readiness_check_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"status": "unhealthy", "error": str(e)},
        ) from e
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
