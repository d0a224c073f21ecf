"""
Tests for the SSLCommerz session client and its circuit breaker.
"""
import asyncio
import time
import uuid
from decimal import Decimal
from typing import Any, List
from urllib.parse import parse_qs

import httpx
import pytest

from payment_reconciliation.core.errors import UpstreamGatewayError
from payment_reconciliation.core.gateway import GatewayPaymentRequest, PayerProfile
from payment_reconciliation.core.initiation import PaymentInitiator
from payment_reconciliation.enums import PaymentMethod, PaymentPurpose
from payment_reconciliation.integrations.sslcommerz_client import (
    SESSION_PATH,
    CircuitBreaker,
    SSLCommerzGateway,
)

GATEWAY_URL = "https://sandbox.sslcommerz.com/EasyCheckOut/testcde1234"


def _request(purpose: PaymentPurpose = PaymentPurpose.MEMBERSHIP_FEE) -> GatewayPaymentRequest:
    return GatewayPaymentRequest(
        user=PayerProfile(name="Rahim Uddin", email="rahim@example.org", phone="01711000000"),
        user_id=uuid.uuid4(),
        amount=Decimal("500"),
        purpose=purpose,
        transaction_id="TXN2648213719",
        payment_id=uuid.uuid4(),
    )


def _gateway(test_settings: Any, handler: Any, breaker: CircuitBreaker = None) -> SSLCommerzGateway:
    client = httpx.AsyncClient(
        base_url=test_settings.sslcommerz_base_url,
        transport=httpx.MockTransport(handler),
    )
    return SSLCommerzGateway(settings=test_settings, client=client, circuit_breaker=breaker)


@pytest.mark.unit
class TestSessionCreation:
    @pytest.mark.asyncio
    async def test_posts_session_form_and_returns_gateway_url(self, test_settings: Any) -> None:
        seen: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, json={"status": "SUCCESS", "GatewayPageURL": GATEWAY_URL, "sessionkey": "testcde1234"}
            )

        request = _request()
        result = await _gateway(test_settings, handler).create_payment(request)

        assert result.gateway_url == GATEWAY_URL
        assert result.session_key == "testcde1234"
        assert seen[0].url.path == SESSION_PATH
        form = {k: v[0] for k, v in parse_qs(seen[0].content.decode()).items()}
        assert form["store_id"] == "teststore"
        assert form["total_amount"] == "500.00"
        assert form["currency"] == "BDT"
        assert form["tran_id"] == "TXN2648213719"
        assert form["success_url"] == "https://api.example.org/payments/ssl/success"
        assert form["ipn_url"] == "https://api.example.org/payments/ssl/ipn"
        assert form["value_a"] == str(request.payment_id)
        assert form["value_b"] == "MEMBERSHIP_FEE"
        assert form["product_name"] == "Membership Fee"
        assert form["cus_city"] == "N/A"

    @pytest.mark.asyncio
    async def test_refusal_raises_upstream_error(self, test_settings: Any) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "FAILED", "failedreason": "Store Credential Error"})

        with pytest.raises(UpstreamGatewayError, match="Store Credential Error"):
            await _gateway(test_settings, handler).create_payment(_request())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [httpx.Response(503, text="unavailable"), httpx.Response(200, text="<html>not json</html>")],
    )
    async def test_http_and_decode_errors_raise_upstream_error(
        self, response: httpx.Response, test_settings: Any
    ) -> None:
        with pytest.raises(UpstreamGatewayError):
            await _gateway(test_settings, lambda request: response).create_payment(_request())

    @pytest.mark.asyncio
    async def test_transport_error_raises_upstream_error(self, test_settings: Any) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(UpstreamGatewayError):
            await _gateway(test_settings, handler).create_payment(_request())


@pytest.mark.unit
class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_opens_after_threshold_and_fails_fast(self, test_settings: Any) -> None:
        calls: List[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(500)

        breaker = CircuitBreaker(failure_threshold=2, timeout=60)
        gateway = _gateway(test_settings, handler, breaker)

        for _ in range(2):
            with pytest.raises(UpstreamGatewayError):
                await gateway.create_payment(_request())
        assert breaker.state == "open"

        with pytest.raises(UpstreamGatewayError, match="temporarily unavailable"):
            await gateway.create_payment(_request())
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_half_open_trial_closes_on_success(self, test_settings: Any) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"status": "SUCCESS", "GatewayPageURL": GATEWAY_URL})

        breaker = CircuitBreaker(failure_threshold=1, timeout=10)
        breaker.on_failure()
        breaker.last_failure_time = time.time() - 11
        assert breaker.state == "open"

        result = await _gateway(test_settings, handler, breaker).create_payment(_request())

        assert result.gateway_url == GATEWAY_URL
        assert breaker.state == "closed"

    @pytest.mark.asyncio
    async def test_gateway_timeouts_open_the_breaker(
        self, test_settings: Any, session_factory: Any, make_user: Any
    ) -> None:
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(10)
            return httpx.Response(200, json={"status": "SUCCESS", "GatewayPageURL": GATEWAY_URL})

        breaker = CircuitBreaker(failure_threshold=2, timeout=60)
        initiator = PaymentInitiator(
            session_factory=session_factory,
            gateways={PaymentMethod.SSLCOMMERZ: _gateway(test_settings, handler, breaker)},
            settings=test_settings,
        )
        user = await make_user()

        for _ in range(2):
            with pytest.raises(UpstreamGatewayError, match="did not respond in time"):
                await initiator.initiate(
                    user.id, PaymentMethod.SSLCOMMERZ, Decimal("500"), PaymentPurpose.MEMBERSHIP_FEE
                )
        assert breaker.state == "open"
        assert breaker.failure_count == 2

        with pytest.raises(UpstreamGatewayError, match="temporarily unavailable"):
            await initiator.initiate(
                user.id, PaymentMethod.SSLCOMMERZ, Decimal("500"), PaymentPurpose.MEMBERSHIP_FEE
            )
