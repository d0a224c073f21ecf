"""
Transaction id generation.

Format: TXN + 2-digit year + 6-digit random + 2-digit day of month,
e.g. TXN2648213719 for a payment started on the 19th in 2026.

Uniqueness is not checked against the store; the UNIQUE constraint on
payments.transaction_id turns a collision into an insert error.
"""
import re
import secrets
from datetime import datetime, timezone
from typing import Optional

TRANSACTION_ID_PREFIX = "TXN"

TRANSACTION_ID_PATTERN = re.compile(r"^TXN(?P<year>\d{2})(?P<random>\d{6})(?P<day>\d{2})$")


def generate_transaction_id(now: Optional[datetime] = None) -> str:
    """
    Generate a human-decodable transaction id.

    Args:
        now: Clock override (defaults to current UTC time)

    Returns:
        str: Transaction id
    """
    now = now or datetime.now(timezone.utc)
    year = now.strftime("%y")
    random_part = 100000 + secrets.randbelow(900000)
    day = f"{now.day:02d}"
    return f"{TRANSACTION_ID_PREFIX}{year}{random_part}{day}"


def is_transaction_id(value: str) -> bool:
    return TRANSACTION_ID_PATTERN.match(value) is not None
