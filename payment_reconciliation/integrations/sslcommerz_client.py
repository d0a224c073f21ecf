"""
SSLCommerz hosted-checkout client.

Implements:
- Session creation against the v4 gateway API
- Circuit breaker around the gateway host
- Mapping of every transport or gateway refusal to UpstreamGatewayError

Session creation is not retried here: a retried POST may open a second
checkout for the same transaction id, and the initiator already bounds the
call with its own timeout.
"""
import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx
import structlog

from payment_reconciliation.config import Settings, get_settings
from payment_reconciliation.core.errors import UpstreamGatewayError
from payment_reconciliation.core.gateway import GatewayPaymentRequest, GatewaySessionResult
from payment_reconciliation.enums import PaymentPurpose
from payment_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

T = TypeVar("T")

SESSION_PATH = "/gwprocess/v4/api.php"
CALLBACK_PATHS = {
    "success_url": "/payments/ssl/success",
    "fail_url": "/payments/ssl/fail",
    "cancel_url": "/payments/ssl/cancel",
    "ipn_url": "/payments/ssl/ipn",
}

PRODUCT_NAMES = {
    PaymentPurpose.MEMBERSHIP_FEE: "Membership Fee",
    PaymentPurpose.MONTHLY_DONATION: "Monthly Donation",
    PaymentPurpose.PROJECT_DONATION: "Project Donation",
}


class CircuitBreaker:
    """
    Circuit breaker for gateway calls.

    Opens after consecutive failures and lets a trial call through once the
    reset timeout has passed.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        timeout: int = 60,
        success_threshold: int = 1,
    ):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds before attempting to close circuit
            success_threshold: Successful calls needed to close circuit
        """
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.success_threshold = success_threshold
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = "closed"  # closed, open, half_open

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await func with circuit breaker protection.

        Raises:
            UpstreamGatewayError: If circuit is open
        """
        if self.state == "open":
            if self.last_failure_time and time.time() - self.last_failure_time > self.timeout:
                self._set_state("half_open")
                self.success_count = 0
                logger.info("circuit_breaker_half_open")
            else:
                raise UpstreamGatewayError("Payment gateway is temporarily unavailable")

        try:
            result = await func(*args, **kwargs)
        except (Exception, asyncio.CancelledError):
            # Cancellation here is the caller timing the gateway out.
            self.on_failure()
            raise
        self.on_success()
        return result

    def on_success(self) -> None:
        """Record successful call."""
        self.failure_count = 0
        if self.state == "half_open":
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self._set_state("closed")
                logger.info("circuit_breaker_closed")

    def on_failure(self) -> None:
        """Record failed call."""
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.state == "half_open" or self.failure_count >= self.failure_threshold:
            self._set_state("open")
            logger.warning("circuit_breaker_opened", failure_count=self.failure_count)

    def _set_state(self, state: str) -> None:
        self.state = state
        metrics.set_circuit_breaker_state(state)


class SSLCommerzGateway:
    """GatewaySession backed by the SSLCommerz v4 session API."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client
        self._owns_client = client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=self.settings.gateway_failure_threshold,
            timeout=self.settings.gateway_reset_timeout_seconds,
        )

        logger.info(
            "sslcommerz_gateway_initialized",
            sandbox=self.settings.sslcommerz_sandbox,
            store_id=self.settings.sslcommerz_store_id,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.settings.sslcommerz_base_url,
                timeout=self.settings.gateway_timeout_seconds,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    def build_session_form(self, request: GatewayPaymentRequest) -> Dict[str, str]:
        """
        Build the form body for a session request.

        Args:
            request: Payment to open a checkout for

        Returns:
            Dict[str, str]: Form fields
        """
        base_url = self.settings.public_base_url.rstrip("/")
        profile = request.user
        product_name = PRODUCT_NAMES.get(request.purpose, request.purpose.value)

        form = {
            "store_id": self.settings.sslcommerz_store_id,
            "store_passwd": self.settings.sslcommerz_store_password,
            "total_amount": f"{request.amount:.2f}",
            "currency": self.settings.currency,
            "tran_id": request.transaction_id,
            "cus_name": profile.name,
            "cus_email": profile.email,
            "cus_phone": profile.phone or "N/A",
            "cus_add1": profile.address or "N/A",
            "cus_city": profile.city or "N/A",
            "cus_country": "Bangladesh",
            "shipping_method": "NO",
            "num_of_item": "1",
            "product_name": product_name,
            "product_category": "Service",
            "product_profile": "non-physical-goods",
            "value_a": str(request.payment_id),
            "value_b": request.purpose.value,
            "value_c": str(request.user_id),
        }
        for name, path in CALLBACK_PATHS.items():
            form[name] = f"{base_url}{path}"
        return form

    async def create_payment(self, request: GatewayPaymentRequest) -> GatewaySessionResult:
        """
        Open an SSLCommerz checkout session.

        Args:
            request: Payment to open a checkout for

        Returns:
            GatewaySessionResult: Hosted checkout URL and session key

        Raises:
            UpstreamGatewayError: Transport failure or gateway refusal
        """
        logger.info(
            "creating_gateway_session",
            transaction_id=request.transaction_id,
            amount=str(request.amount),
        )
        body = await self.circuit_breaker.call(self._post_session, self.build_session_form(request))

        logger.info(
            "gateway_session_created",
            transaction_id=request.transaction_id,
            session_key=body.get("sessionkey"),
        )
        return GatewaySessionResult(
            gateway_url=body["GatewayPageURL"],
            session_key=body.get("sessionkey"),
        )

    async def _post_session(self, form: Dict[str, str]) -> Dict[str, Any]:
        transaction_id = form.get("tran_id")
        try:
            response = await self.client.post(SESSION_PATH, data=form)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            logger.error("gateway_transport_error", transaction_id=transaction_id, error=str(e))
            raise UpstreamGatewayError(
                "Payment gateway request failed", transaction_id=transaction_id
            ) from e
        except ValueError as e:
            logger.error("gateway_invalid_response", transaction_id=transaction_id, error=str(e))
            raise UpstreamGatewayError(
                "Payment gateway returned an unreadable response", transaction_id=transaction_id
            ) from e

        if not isinstance(body, dict) or body.get("status") != "SUCCESS" or not body.get("GatewayPageURL"):
            reason = body.get("failedreason") if isinstance(body, dict) else None
            logger.error("gateway_session_refused", transaction_id=transaction_id, reason=reason)
            raise UpstreamGatewayError(
                reason or "Payment gateway refused the session", transaction_id=transaction_id
            )
        return body
