"""FastAPI application and routes."""
from .main import app
from .schemas import ApiResponse, InitiatePaymentRequest, PaymentResponse

__all__ = ["app", "ApiResponse", "InitiatePaymentRequest", "PaymentResponse"]
