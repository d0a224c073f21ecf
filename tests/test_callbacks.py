"""
Tests for callback parsing and the per-channel error policy.
"""
from typing import Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from payment_reconciliation.core.errors import InvalidCallbackError, PaymentNotFoundError
from payment_reconciliation.core.reconciliation import APPLIED, ERROR, IGNORED, INVALID, NOT_FOUND
from payment_reconciliation.core.state_machine import CallbackOutcome
from payment_reconciliation.enums import PaymentStatus
from payment_reconciliation.integrations.callbacks import (
    CallbackChannel,
    ipn_outcome,
    outcome_for,
    parse_callback,
)


@pytest.mark.unit
class TestParsing:
    def test_extracts_reconciliation_fields(self) -> None:
        callback = parse_callback(
            {"tran_id": " TXN2648213719 ", "amount": "500.00", "status": "VALID", "val_id": "2603141"}
        )

        assert callback.transaction_id == "TXN2648213719"
        assert callback.amount == "500.00"
        assert callback.status == "VALID"
        assert callback.validation_id == "2603141"
        assert callback.audit_fields() == {
            "val_id": "2603141",
            "gateway_status": "VALID",
            "gateway_amount": "500.00",
        }

    @pytest.mark.parametrize("payload", [{}, {"tran_id": ""}, {"tran_id": "   "}, {"status": "VALID"}])
    def test_missing_tran_id_is_invalid(self, payload: dict) -> None:
        with pytest.raises(InvalidCallbackError):
            parse_callback(payload)

    @pytest.mark.parametrize(
        "status,expected",
        [
            ("VALID", CallbackOutcome.IPN_VALID),
            ("VALIDATED", CallbackOutcome.IPN_INVALID),
            ("FAILED", CallbackOutcome.IPN_INVALID),
            ("valid", CallbackOutcome.IPN_INVALID),
            (None, CallbackOutcome.IPN_INVALID),
        ],
    )
    def test_only_exact_valid_confirms(self, status: Any, expected: CallbackOutcome) -> None:
        assert ipn_outcome(status) is expected

    def test_browser_channels_ignore_gateway_status(self) -> None:
        callback = parse_callback({"tran_id": "TXN2648213719", "status": "FAILED"})
        assert outcome_for(CallbackChannel.SUCCESS, callback) is CallbackOutcome.SUCCESS
        assert outcome_for(CallbackChannel.CANCEL, callback) is CallbackOutcome.CANCEL


@pytest.mark.unit
class TestHandleCallback:
    """Success errors propagate; other channels acknowledge."""

    @pytest.mark.asyncio
    async def test_success_without_tran_id_raises(self, reconciliation_engine: Any) -> None:
        with pytest.raises(InvalidCallbackError):
            await reconciliation_engine.handle_callback(CallbackChannel.SUCCESS, {"amount": "10"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("channel", [CallbackChannel.FAIL, CallbackChannel.CANCEL, CallbackChannel.IPN])
    async def test_other_channels_without_tran_id_are_acknowledged(
        self, channel: CallbackChannel, reconciliation_engine: Any
    ) -> None:
        result = await reconciliation_engine.handle_callback(channel, {})
        assert result.result == INVALID

    @pytest.mark.asyncio
    async def test_success_for_unknown_transaction_raises(self, reconciliation_engine: Any) -> None:
        with pytest.raises(PaymentNotFoundError):
            await reconciliation_engine.handle_callback(CallbackChannel.SUCCESS, {"tran_id": "TXN2600000001"})

    @pytest.mark.asyncio
    async def test_ipn_for_unknown_transaction_is_acknowledged(self, reconciliation_engine: Any) -> None:
        result = await reconciliation_engine.handle_callback(
            CallbackChannel.IPN, {"tran_id": "TXN2600000001", "status": "VALID"}
        )
        assert result.result == NOT_FOUND

    @pytest.mark.asyncio
    async def test_invalid_ipn_status_is_ignored(
        self, reconciliation_engine: Any, make_user: Any, make_payment: Any, fetch: Any
    ) -> None:
        payment = await make_payment(await make_user())

        result = await reconciliation_engine.handle_callback(
            CallbackChannel.IPN, {"tran_id": payment.transaction_id, "status": "INVALID_TRANSACTION"}
        )

        assert result.result == IGNORED
        assert (await fetch.payment(payment.transaction_id)).status == PaymentStatus.INITIATED.value

    @pytest.mark.asyncio
    async def test_valid_ipn_completes_payment(
        self, reconciliation_engine: Any, make_user: Any, make_payment: Any, fetch: Any
    ) -> None:
        payment = await make_payment(await make_user())

        result = await reconciliation_engine.handle_callback(
            CallbackChannel.IPN, {"tran_id": payment.transaction_id, "status": "VALID"}
        )

        assert result.result == APPLIED
        assert (await fetch.payment(payment.transaction_id)).status == PaymentStatus.PAID.value

    @pytest.mark.asyncio
    async def test_gateway_fields_are_kept_on_audit_events(
        self, reconciliation_engine: Any, make_user: Any, make_payment: Any, fetch: Any
    ) -> None:
        payment = await make_payment(await make_user())
        payload = {
            "tran_id": payment.transaction_id,
            "status": "VALID",
            "val_id": "2603141",
            "amount": "500.00",
            "bank_tran_id": "260314BNK",
            "store_passwd": "must-not-be-kept",
        }

        await reconciliation_engine.handle_callback(CallbackChannel.IPN, payload)
        await reconciliation_engine.handle_callback(CallbackChannel.SUCCESS, payload)

        applied, duplicate = await fetch.events(payment.id)
        assert applied.event_type == "payment.paid"
        assert applied.event_data["val_id"] == "2603141"
        assert applied.event_data["bank_tran_id"] == "260314BNK"
        assert applied.event_data["gateway_status"] == "VALID"
        assert duplicate.event_type == "callback.duplicate"
        assert duplicate.event_data["gateway_amount"] == "500.00"
        assert "store_passwd" not in applied.event_data

    @pytest.mark.asyncio
    async def test_store_errors_on_fail_channel_are_logged_not_raised(
        self, reconciliation_engine: Any, make_user: Any, make_payment: Any, fetch: Any
    ) -> None:
        payment = await make_payment(await make_user())
        reconciliation_engine.payments.compare_and_set_status = AsyncMock(
            side_effect=OperationalError("UPDATE payments", {}, Exception("database is locked"))
        )

        result = await reconciliation_engine.handle_callback(
            CallbackChannel.FAIL, {"tran_id": payment.transaction_id}
        )

        assert result.result == ERROR
        assert reconciliation_engine.payments.compare_and_set_status.await_count == 3
        assert (await fetch.payment(payment.transaction_id)).status == PaymentStatus.INITIATED.value
