"""
FastAPI dependencies: caller identity and service instances.

Authentication happens upstream; the gateway in front of this service forwards
the authenticated user id and role as trusted headers.
"""
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from fastapi import Depends, Request

from payment_reconciliation.config import Settings, get_settings
from payment_reconciliation.core.errors import UnauthenticatedError
from payment_reconciliation.core.initiation import PaymentInitiator
from payment_reconciliation.core.invoices import InvoiceService
from payment_reconciliation.core.reconciliation import ReconciliationEngine
from payment_reconciliation.monitoring.health import HealthCheck


@dataclass(frozen=True)
class Principal:
    user_id: str
    role: Optional[str] = None


def get_principal(request: Request, settings: Settings = Depends(get_settings)) -> Principal:
    """
    Resolve the caller from the trusted identity headers.

    Raises:
        UnauthenticatedError: No user id header
    """
    user_id = (request.headers.get(settings.principal_id_header) or "").strip()
    if not user_id:
        raise UnauthenticatedError("Authentication required")
    role = (request.headers.get(settings.principal_role_header) or "").strip().upper() or None
    return Principal(user_id=user_id, role=role)


@lru_cache()
def get_initiator() -> PaymentInitiator:
    return PaymentInitiator()


@lru_cache()
def get_reconciliation_engine() -> ReconciliationEngine:
    return ReconciliationEngine()


@lru_cache()
def get_invoice_service() -> InvoiceService:
    return InvoiceService()


@lru_cache()
def get_health_check() -> HealthCheck:
    initiator = get_initiator()
    gateway = next(iter(initiator.gateways.values()), None)
    return HealthCheck(circuit_breaker=getattr(gateway, "circuit_breaker", None))
