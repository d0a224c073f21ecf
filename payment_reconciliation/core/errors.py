"""
Exception taxonomy for payment initiation, reconciliation and invoice access.

Every exception carries:
- Error code (for client handling)
- Message (safe to show to callers)
- HTTP status code (for API responses)
"""
from typing import Any, Dict


class PaymentServiceError(Exception):
    """Base exception for all payment service errors."""

    error_code = "payment_error"
    http_status = 500

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for API responses"""
        return {
            "code": self.error_code,
            "message": self.message,
            "type": self.__class__.__name__,
        }


class NotFoundError(PaymentServiceError):
    error_code = "not_found"
    http_status = 404


class PaymentNotFoundError(NotFoundError):
    """No payment row for the given id or transaction id."""

    error_code = "payment_not_found"


class UserNotFoundError(NotFoundError):
    error_code = "user_not_found"


class ConflictError(PaymentServiceError):
    """
    Reserved for write conflicts surfaced to callers.

    Duplicate callbacks are absorbed by reconciliation and never raise this.
    """

    error_code = "conflict"
    http_status = 409


class ForbiddenError(PaymentServiceError):
    """Caller is neither the payer nor an administrator."""

    error_code = "forbidden"
    http_status = 403


class UnauthenticatedError(PaymentServiceError):
    error_code = "unauthenticated"
    http_status = 401


class UnsupportedMethodError(PaymentServiceError):
    """No gateway is wired for the requested payment method."""

    error_code = "unsupported_payment_method"
    http_status = 400


class UpstreamGatewayError(PaymentServiceError):
    """The gateway failed, timed out or refused to open a session."""

    error_code = "upstream_gateway_error"
    http_status = 502


class InvalidCallbackError(PaymentServiceError):
    """Inbound gateway callback without a usable tran_id."""

    error_code = "invalid_callback"
    http_status = 400


class ValidationError(PaymentServiceError):
    error_code = "validation_error"
    http_status = 400
