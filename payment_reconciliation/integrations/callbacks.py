"""
Parsing of inbound SSLCommerz callbacks.

The gateway posts the browser redirects (success, fail, cancel) and the
server-to-server IPN as form bodies; some proxies re-post them as JSON. Only
the fields reconciliation and the audit trail need are extracted.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from payment_reconciliation.core.errors import InvalidCallbackError
from payment_reconciliation.core.state_machine import CallbackOutcome

IPN_VALID_STATUS = "VALID"


class CallbackChannel(str, Enum):
    """Endpoint a callback arrived on."""

    SUCCESS = "success"
    FAIL = "fail"
    CANCEL = "cancel"
    IPN = "ipn"


@dataclass(frozen=True)
class GatewayCallback:
    transaction_id: str
    amount: Optional[str] = None
    status: Optional[str] = None
    validation_id: Optional[str] = None
    bank_transaction_id: Optional[str] = None

    def audit_fields(self) -> Dict[str, str]:
        """Gateway-reported fields worth keeping on the payment event."""
        fields = {
            "val_id": self.validation_id,
            "gateway_status": self.status,
            "gateway_amount": self.amount,
            "bank_tran_id": self.bank_transaction_id,
        }
        return {k: v for k, v in fields.items() if v is not None}


def _field(payload: Mapping[str, Any], name: str) -> Optional[str]:
    value = payload.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_callback(payload: Mapping[str, Any]) -> GatewayCallback:
    """
    Extract the reconciliation fields from a callback body.

    Raises:
        InvalidCallbackError: If tran_id is missing or blank
    """
    transaction_id = _field(payload, "tran_id")
    if transaction_id is None:
        raise InvalidCallbackError("Callback payload is missing tran_id")

    return GatewayCallback(
        transaction_id=transaction_id,
        amount=_field(payload, "amount"),
        status=_field(payload, "status"),
        validation_id=_field(payload, "val_id"),
        bank_transaction_id=_field(payload, "bank_tran_id"),
    )


def ipn_outcome(status: Optional[str]) -> CallbackOutcome:
    """Only an exact "VALID" status confirms a payment."""
    return CallbackOutcome.IPN_VALID if status == IPN_VALID_STATUS else CallbackOutcome.IPN_INVALID


def outcome_for(channel: CallbackChannel, callback: GatewayCallback) -> CallbackOutcome:
    if channel is CallbackChannel.SUCCESS:
        return CallbackOutcome.SUCCESS
    if channel is CallbackChannel.FAIL:
        return CallbackOutcome.FAIL
    if channel is CallbackChannel.CANCEL:
        return CallbackOutcome.CANCEL
    return ipn_outcome(callback.status)
