"""
Payment initiation.

Flow:
1. Reject methods without a wired gateway
2. Load the payer
3. Generate a transaction id
4. Commit the payment in INITIATED (callbacks may beat the gateway reply)
5. Open the gateway session, bounded by a timeout
6. Return the redirect URL
"""
import asyncio
import time
import uuid
from decimal import Decimal, InvalidOperation
from typing import Callable, Mapping, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payment_reconciliation.config import Settings, get_settings
from payment_reconciliation.core.errors import (
    UnsupportedMethodError,
    UpstreamGatewayError,
    UserNotFoundError,
    ValidationError,
)
from payment_reconciliation.core.gateway import (
    GatewayPaymentRequest,
    GatewaySession,
    PayerProfile,
)
from payment_reconciliation.core.repository import PaymentRepository, UserRepository
from payment_reconciliation.core.transaction_ids import generate_transaction_id
from payment_reconciliation.database.connection import get_session_factory
from payment_reconciliation.enums import PaymentMethod, PaymentPurpose
from payment_reconciliation.integrations.sslcommerz_client import SSLCommerzGateway
from payment_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)


class PaymentInitiator:
    """Creates payment records and hands the payer off to a gateway."""

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        gateways: Optional[Mapping[PaymentMethod, GatewaySession]] = None,
        payments: Optional[PaymentRepository] = None,
        users: Optional[UserRepository] = None,
        settings: Optional[Settings] = None,
        transaction_id_factory: Callable[[], str] = generate_transaction_id,
    ):
        """
        Initialize payment initiator.

        Args:
            session_factory: Session factory (defaults to the application's)
            gateways: Gateway session per supported payment method (defaults to SSLCommerz)
            payments: Payment repository
            users: User repository
            settings: Application settings
            transaction_id_factory: Transaction id generator
        """
        self.settings = settings or get_settings()
        if gateways is None:
            gateways = {PaymentMethod.SSLCOMMERZ: SSLCommerzGateway(self.settings)}
        self.gateways = dict(gateways)
        self.session_factory = session_factory or get_session_factory()
        self.payments = payments or PaymentRepository()
        self.users = users or UserRepository()
        self.transaction_id_factory = transaction_id_factory

    async def initiate(
        self,
        user_id: str | uuid.UUID,
        method: PaymentMethod | str,
        amount: Decimal,
        purpose: PaymentPurpose | str,
    ) -> str:
        """
        Start a payment and return the gateway redirect URL.

        Args:
            user_id: Paying user
            method: Payment method
            amount: Positive amount
            purpose: Payment purpose

        Returns:
            str: URL the payer is redirected to

        Raises:
            UnsupportedMethodError: No gateway for this method
            ValidationError: Unknown purpose or non-positive amount
            UserNotFoundError: Unknown user
            UpstreamGatewayError: Gateway failed or timed out
        """
        try:
            purpose = PaymentPurpose(purpose)
        except ValueError:
            raise ValidationError(f"Unsupported payment purpose: {purpose}", purpose=str(purpose))
        try:
            amount = Decimal(amount)
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError("Amount must be a number", amount=str(amount))

        try:
            method = PaymentMethod(method)
        except ValueError:
            metrics.record_initiation(str(method), purpose.value, "rejected")
            raise UnsupportedMethodError(f"Unsupported payment method: {method}", method=str(method))

        gateway = self.gateways.get(method)
        if gateway is None:
            metrics.record_initiation(method.value, purpose.value, "rejected")
            raise UnsupportedMethodError(f"Unsupported payment method: {method.value}", method=method.value)

        if not amount.is_finite() or amount <= 0:
            metrics.record_initiation(method.value, purpose.value, "rejected")
            raise ValidationError("Amount must be positive", amount=str(amount))

        transaction_id = self.transaction_id_factory()
        log = logger.bind(transaction_id=transaction_id, method=method.value, purpose=purpose.value)

        async with self.session_factory() as db:
            async with db.begin():
                user = await self.users.find_by_id(db, user_id)
                if user is None:
                    metrics.record_initiation(method.value, purpose.value, "rejected")
                    raise UserNotFoundError(f"User {user_id} not found", user_id=str(user_id))

                payment = await self.payments.create(
                    db,
                    user_id=user.id,
                    amount=amount,
                    method=method,
                    purpose=purpose,
                    transaction_id=transaction_id,
                )
                profile = PayerProfile(
                    name=user.name,
                    email=user.email,
                    phone=user.phone,
                    address=user.address,
                    city=user.city_state,
                )
                request = GatewayPaymentRequest(
                    user=profile,
                    user_id=user.id,
                    amount=amount,
                    purpose=purpose,
                    transaction_id=transaction_id,
                    payment_id=payment.id,
                )

        log.info("payment_record_created", payment_id=str(request.payment_id), amount=str(amount))

        # The INITIATED row stays behind if the gateway fails.
        start_time = time.time()
        try:
            session = await asyncio.wait_for(
                gateway.create_payment(request),
                timeout=self.settings.gateway_timeout_seconds,
            )
        except asyncio.TimeoutError:
            metrics.record_gateway_call(method.value, "timeout", time.time() - start_time)
            metrics.record_initiation(method.value, purpose.value, "gateway_error")
            log.error("gateway_session_timeout", timeout_seconds=self.settings.gateway_timeout_seconds)
            raise UpstreamGatewayError(
                "Payment gateway did not respond in time", transaction_id=transaction_id
            )
        except UpstreamGatewayError as e:
            metrics.record_gateway_call(method.value, "error", time.time() - start_time)
            metrics.record_initiation(method.value, purpose.value, "gateway_error")
            log.error("gateway_session_failed", error=str(e))
            raise

        metrics.record_gateway_call(method.value, "success", time.time() - start_time)
        metrics.record_initiation(method.value, purpose.value, "redirected", float(amount))
        log.info("payment_initiated", payment_id=str(request.payment_id))
        return session.gateway_url
