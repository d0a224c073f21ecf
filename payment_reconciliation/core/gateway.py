"""GatewaySession contract: open a hosted checkout and hand back its URL."""
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Protocol

from payment_reconciliation.enums import PaymentPurpose


@dataclass(frozen=True)
class PayerProfile:
    """User fields the gateway shows on its checkout page."""

    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None


@dataclass(frozen=True)
class GatewayPaymentRequest:
    user: PayerProfile
    user_id: uuid.UUID
    amount: Decimal
    purpose: PaymentPurpose
    transaction_id: str
    payment_id: uuid.UUID


@dataclass(frozen=True)
class GatewaySessionResult:
    gateway_url: str
    session_key: Optional[str] = None


class GatewaySession(Protocol):
    async def create_payment(self, request: GatewayPaymentRequest) -> GatewaySessionResult:
        """Open a checkout session; raise UpstreamGatewayError on failure."""
        ...
