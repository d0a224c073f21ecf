"""Database package for the payment reconciliation service."""
from .connection import close_db, create_engine, get_db, get_session_factory, init_db
from .models import Base, FundTransaction, Payment, PaymentEvent, User

__all__ = [
    "Base",
    "FundTransaction",
    "Payment",
    "PaymentEvent",
    "User",
    "close_db",
    "create_engine",
    "get_db",
    "get_session_factory",
    "init_db",
]
