"""
Pydantic schemas for API request/response models.
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from payment_reconciliation.enums import PaymentMethod, PaymentPurpose

T = TypeVar("T")


class InitiatePaymentRequest(BaseModel):
    """Request schema for starting a payment."""

    method: PaymentMethod = Field(..., description="Payment method (gateway)")
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2, description="Amount in BDT")
    purpose: PaymentPurpose = Field(..., description="What the payment is for")

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"method": "SSLCOMMERZ", "amount": "500.00", "purpose": "MEMBERSHIP_FEE"},
                {"method": "SSLCOMMERZ", "amount": "1000", "purpose": "PROJECT_DONATION"},
            ]
        }
    }


class InitiatePaymentData(BaseModel):
    gatewayUrl: str = Field(..., description="Hosted checkout URL to redirect the payer to")


class PayerSummary(BaseModel):
    """Payer fields shown on invoices and admin listings."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    email: str
    phone: Optional[str] = None
    address: Optional[str] = None
    city_state: Optional[str] = None


class PaymentResponse(BaseModel):
    """A payment as shown on invoices and listings."""

    id: str = Field(..., description="Payment ID")
    transaction_id: str = Field(..., description="Gateway transaction id")
    user_id: str = Field(..., description="Paying user")
    amount: Decimal = Field(..., description="Amount")
    method: str = Field(..., description="Payment method")
    purpose: str = Field(..., description="Payment purpose")
    status: str = Field(..., description="Payment status")
    sender_number: Optional[str] = Field(default=None, description="Payer wallet/phone number")
    paid_at: Optional[datetime] = Field(default=None, description="When the payment completed")
    created_at: datetime = Field(..., description="Creation timestamp")
    user: Optional[PayerSummary] = Field(default=None, description="Payer details")


class PageMeta(BaseModel):
    total: int
    page: int
    limit: int
    totalPages: int


class ApiResponse(BaseModel, Generic[T]):
    """Envelope for every JSON response of the payments API."""

    success: bool = True
    statusCode: int = 200
    message: str
    data: Optional[T] = None
    meta: Optional[PageMeta] = None


class PaymentListResponse(ApiResponse[List[PaymentResponse]]):
    pass


class IpnAckResponse(BaseModel):
    """Acknowledgement returned to the gateway for an IPN."""

    message: str
    result: str
    transaction_id: Optional[str] = None


class HealthCheckResponse(BaseModel):
    """Response schema for health checks."""

    status: str = Field(..., description="Overall health status (healthy/unhealthy)")
    checks: Optional[Dict[str, Any]] = Field(default=None, description="Individual service checks")
    message: Optional[str] = Field(default=None, description="Status message")
