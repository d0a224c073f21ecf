"""Gateway integrations."""
from .callbacks import CallbackChannel, GatewayCallback, ipn_outcome, outcome_for, parse_callback
from .sslcommerz_client import CircuitBreaker, SSLCommerzGateway

__all__ = [
    "CallbackChannel",
    "CircuitBreaker",
    "GatewayCallback",
    "SSLCommerzGateway",
    "ipn_outcome",
    "outcome_for",
    "parse_callback",
]
