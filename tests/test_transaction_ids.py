"""
Unit tests for transaction id generation.
"""
from datetime import datetime, timezone

import pytest

from payment_reconciliation.core.transaction_ids import (
    TRANSACTION_ID_PATTERN,
    generate_transaction_id,
    is_transaction_id,
)


@pytest.mark.unit
def test_transaction_id_encodes_year_and_day() -> None:
    tx_id = generate_transaction_id(datetime(2026, 3, 7, tzinfo=timezone.utc))

    match = TRANSACTION_ID_PATTERN.match(tx_id)
    assert match is not None
    assert len(tx_id) == 13
    assert match.group("year") == "26"
    assert match.group("day") == "07"
    assert 100000 <= int(match.group("random")) <= 999999


@pytest.mark.unit
def test_transaction_ids_vary() -> None:
    ids = {generate_transaction_id() for _ in range(50)}
    assert len(ids) > 1
    assert all(is_transaction_id(tx_id) for tx_id in ids)


@pytest.mark.unit
@pytest.mark.parametrize("value", ["", "TXN", "TXN26123456", "TXX2612345607", "txn2612345607"])
def test_rejects_malformed_ids(value: str) -> None:
    assert not is_transaction_id(value)
