"""Enumerations shared by the persistence layer, the services and the API."""
from enum import Enum


class PaymentStatus(str, Enum):
    """
    Payment lifecycle states.

    State machine:
    INITIATED → PAID
        ↓
    FAILED / CANCELLED → PAID (a late authoritative confirmation still wins)

    PAID is absorbing: nothing leaves it.
    """

    INITIATED = "INITIATED"
    PAID = "PAID"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


class PaymentMethod(str, Enum):
    """Gateway identifiers. Only SSLCOMMERZ has a gateway implementation."""

    SSLCOMMERZ = "SSLCOMMERZ"
    BKASH = "BKASH"


class PaymentPurpose(str, Enum):
    """What a payment is for; decides the side effect fired on completion."""

    MEMBERSHIP_FEE = "MEMBERSHIP_FEE"
    MONTHLY_DONATION = "MONTHLY_DONATION"
    PROJECT_DONATION = "PROJECT_DONATION"


class UserRole(str, Enum):
    USER = "USER"
    MEMBER = "MEMBER"
    ADMIN = "ADMIN"
    SUPER_ADMIN = "SUPER_ADMIN"


class UserStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"


ADMIN_ROLES = frozenset({UserRole.ADMIN, UserRole.SUPER_ADMIN})

DONATION_LABELS = {
    PaymentPurpose.MONTHLY_DONATION: "Monthly Donation",
    PaymentPurpose.PROJECT_DONATION: "Project Donation",
}
