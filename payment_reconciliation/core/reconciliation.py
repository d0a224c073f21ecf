"""
Reconciliation engine for gateway callbacks.

Turns success/fail/cancel redirects and IPN notifications, which may arrive
late, out of order, twice, or concurrently, into at most one state change per
payment and at most one fund credit or membership elevation per payment.

Flow for one callback:
1. Open a transaction
2. Look the payment up by transaction id
3. Ask the state machine for the transition (no-op if already PAID)
4. Conditional UPDATE on status; only the caller that changed the row continues
5. Run the side effects on the same transaction
6. Record the audit event and commit (any failure rolls everything back)
"""
import time
import uuid
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

import structlog
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from payment_reconciliation.config import Settings, get_settings
from payment_reconciliation.core.errors import (
    InvalidCallbackError,
    PaymentNotFoundError,
    PaymentServiceError,
    UserNotFoundError,
)
from payment_reconciliation.core.ledger import LedgerEffects, SqlLedgerEffects
from payment_reconciliation.core.repository import PaymentRepository, UserRepository
from payment_reconciliation.core.state_machine import (
    TARGET_STATUS,
    CallbackOutcome,
    CreditFund,
    Effect,
    ElevateMembership,
    transition,
)
from payment_reconciliation.database.connection import get_session_factory
from payment_reconciliation.database.models import Payment
from payment_reconciliation.enums import PaymentPurpose, PaymentStatus, UserRole
from payment_reconciliation.integrations.callbacks import (
    CallbackChannel,
    GatewayCallback,
    outcome_for,
    parse_callback,
)
from payment_reconciliation.monitoring.logging import payment_context
from payment_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

APPLIED = "applied"
DUPLICATE = "duplicate"
IGNORED = "ignored"
NOT_FOUND = "not_found"
INVALID = "invalid"
ERROR = "error"

SKIPPED_ELEVATION = "elevate_membership_skipped"


@dataclass(frozen=True)
class ReconcileResult:
    """What one reconciliation call did."""

    transaction_id: str
    outcome: CallbackOutcome
    result: str
    payment_id: Optional[uuid.UUID] = None
    status: Optional[PaymentStatus] = None
    purpose: Optional[PaymentPurpose] = None
    effects: Tuple[str, ...] = ()

    @property
    def applied(self) -> bool:
        return self.result == APPLIED


def _result(payment: Payment, outcome: CallbackOutcome, result: str, effects: Tuple[str, ...] = ()) -> ReconcileResult:
    return ReconcileResult(
        transaction_id=payment.transaction_id,
        outcome=outcome,
        result=result,
        payment_id=payment.id,
        status=PaymentStatus(payment.status),
        purpose=PaymentPurpose(payment.purpose),
        effects=effects,
    )


class ReconciliationEngine:
    """
    Applies gateway callbacks to payments idempotently.

    Concurrency is scoped to the payment row: the conditional status UPDATE is
    the only point where two callbacks for the same transaction contend, and
    callbacks for different transactions never wait on each other (on SQLite,
    which has no row locks, all writers serialize on the database lock).
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        payments: Optional[PaymentRepository] = None,
        users: Optional[UserRepository] = None,
        ledger: Optional[LedgerEffects] = None,
        settings: Optional[Settings] = None,
    ):
        """
        Initialize reconciliation engine.

        Args:
            session_factory: Session factory (defaults to the application's)
            payments: Payment repository
            users: User repository
            ledger: Fund credit / membership elevation effects
            settings: Application settings
        """
        self.settings = settings or get_settings()
        self.session_factory = session_factory or get_session_factory()
        self.payments = payments or PaymentRepository()
        self.users = users or UserRepository()
        self.ledger: LedgerEffects = ledger or SqlLedgerEffects()

    async def reconcile(
        self,
        transaction_id: str,
        outcome: CallbackOutcome,
        callback: Optional[GatewayCallback] = None,
    ) -> ReconcileResult:
        """
        Merge one callback outcome into the payment's state.

        Args:
            transaction_id: Gateway transaction id (tran_id)
            outcome: Normalized callback outcome
            callback: Parsed gateway fields to keep on the audit event

        Returns:
            ReconcileResult: applied, duplicate, ignored or not_found

        Raises:
            PaymentNotFoundError: SUCCESS for an unknown transaction
            PaymentServiceError: A side effect failed; nothing was committed
        """
        with payment_context(transaction_id=transaction_id):
            return await self._reconcile(transaction_id, CallbackOutcome(outcome), callback)

    async def _reconcile(
        self, transaction_id: str, outcome: CallbackOutcome, callback: Optional[GatewayCallback]
    ) -> ReconcileResult:
        start_time = time.time()
        log = logger.bind(outcome=outcome.value)

        if outcome is CallbackOutcome.IPN_INVALID:
            log.info("ipn_not_valid_acknowledged")
            result = ReconcileResult(transaction_id=transaction_id, outcome=outcome, result=IGNORED)
            metrics.record_reconciliation(outcome.value, IGNORED, time.time() - start_time)
            return result

        try:
            result = await self._reconcile_with_retry(transaction_id, outcome, callback)
        except PaymentNotFoundError:
            metrics.record_reconciliation(outcome.value, NOT_FOUND, time.time() - start_time)
            if outcome is CallbackOutcome.SUCCESS:
                log.warning("success_callback_for_unknown_transaction")
                raise
            log.info("callback_for_unknown_transaction_ignored")
            return ReconcileResult(transaction_id=transaction_id, outcome=outcome, result=NOT_FOUND)
        except Exception:
            metrics.record_reconciliation(outcome.value, ERROR, time.time() - start_time)
            raise

        for effect in result.effects:
            metrics.record_side_effect(effect)
        metrics.record_reconciliation(outcome.value, result.result, time.time() - start_time)

        log.info(
            "reconciliation_completed",
            result=result.result,
            payment_id=str(result.payment_id),
            status=result.status.value if result.status else None,
            effects=list(result.effects),
        )
        return result

    async def _reconcile_with_retry(
        self, transaction_id: str, outcome: CallbackOutcome, callback: Optional[GatewayCallback]
    ) -> ReconcileResult:
        # Lock timeouts are safe to retry: a retried transition re-reads the row.
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(OperationalError),
            stop=stop_after_attempt(self.settings.reconcile_max_attempts),
            wait=wait_exponential(multiplier=0.05, max=1),
            reraise=True,
        ):
            with attempt:
                return await self._reconcile_once(transaction_id, outcome, callback)
        raise AssertionError("unreachable")  # pragma: no cover

    async def _reconcile_once(
        self, transaction_id: str, outcome: CallbackOutcome, callback: Optional[GatewayCallback]
    ) -> ReconcileResult:
        correlation_id = uuid.uuid4()
        gateway_fields = callback.audit_fields() if callback is not None else {}

        async with self.session_factory() as db:
            async with db.begin():
                payment = await self.payments.find_by_transaction_id(db, transaction_id)
                if payment is None:
                    raise PaymentNotFoundError(
                        f"Payment {transaction_id} not found", transaction_id=transaction_id
                    )

                step = transition(payment, outcome)
                if step.is_noop:
                    return await self._absorb(db, payment, outcome, correlation_id, gateway_fields)

                changed = await self.payments.compare_and_set_status(
                    db,
                    transaction_id,
                    expected=step.sources,
                    new_status=step.status,
                    paid_at=step.paid_at,
                )
                if not changed:
                    # Another callback moved the row between our read and write.
                    await db.refresh(payment)
                    return await self._absorb(db, payment, outcome, correlation_id, gateway_fields)

                fired = []
                for effect in step.effects:
                    fired.append(await self._apply_effect(db, payment, effect))

                await self.payments.record_event(
                    db,
                    payment.id,
                    event_type=f"payment.{step.status.value.lower()}",
                    event_data={
                        "transaction_id": transaction_id,
                        "outcome": outcome.value,
                        "from_status": step.from_status.value,
                        "to_status": step.status.value,
                        "effects": fired,
                        **gateway_fields,
                    },
                    correlation_id=correlation_id,
                )
                await db.refresh(payment)
                return _result(payment, outcome, APPLIED, tuple(fired))

    async def _absorb(
        self,
        db: AsyncSession,
        payment: Payment,
        outcome: CallbackOutcome,
        correlation_id: uuid.UUID,
        gateway_fields: Mapping[str, str],
    ) -> ReconcileResult:
        """Record a callback that changes nothing."""
        status = PaymentStatus(payment.status)
        result = DUPLICATE if TARGET_STATUS.get(outcome) is status else IGNORED

        await self.payments.record_event(
            db,
            payment.id,
            event_type=f"callback.{result}",
            event_data={
                "transaction_id": payment.transaction_id,
                "outcome": outcome.value,
                "status": status.value,
                **gateway_fields,
            },
            correlation_id=correlation_id,
        )
        return _result(payment, outcome, result)

    async def _apply_effect(self, db: AsyncSession, payment: Payment, effect: Effect) -> str:
        if isinstance(effect, ElevateMembership):
            user = await self.users.find_by_id(db, payment.user_id)
            if user is None:
                raise UserNotFoundError(
                    f"User {payment.user_id} not found for membership elevation",
                    user_id=str(payment.user_id),
                )
            if UserRole(user.role) is not UserRole.USER:
                logger.info(
                    "membership_elevation_skipped",
                    user_id=str(user.id),
                    role=user.role,
                    transaction_id=payment.transaction_id,
                )
                return SKIPPED_ELEVATION
            await self.ledger.elevate_to_member(db, user.id)
            return effect.kind

        if isinstance(effect, CreditFund):
            await self.ledger.credit_fund(
                db,
                user_id=payment.user_id,
                amount=payment.amount,
                payment_id=payment.id,
                transaction_id=payment.transaction_id,
                label=effect.label,
            )
            return effect.kind

        raise TypeError(f"Unknown effect: {effect!r}")

    async def handle_callback(
        self, channel: CallbackChannel, payload: Mapping[str, Any]
    ) -> ReconcileResult:
        """
        Parse and reconcile one inbound callback.

        Errors on the success redirect are raised to the caller. On the fail,
        cancel and IPN channels they are logged and acknowledged as a no-op,
        since the gateway can only react to them by redelivering.

        Args:
            channel: Endpoint the callback arrived on
            payload: Form or JSON body

        Returns:
            ReconcileResult: What the callback did
        """
        channel = CallbackChannel(channel)
        metrics.record_callback(channel.value)

        try:
            callback = parse_callback(payload)
        except InvalidCallbackError:
            if channel is CallbackChannel.SUCCESS:
                raise
            logger.warning("invalid_callback_ignored", channel=channel.value)
            return ReconcileResult(
                transaction_id="",
                outcome=_channel_default_outcome(channel),
                result=INVALID,
            )

        outcome = outcome_for(channel, callback)
        logger.info(
            "callback_received",
            channel=channel.value,
            transaction_id=callback.transaction_id,
            outcome=outcome.value,
            gateway_status=callback.status,
        )

        if channel is CallbackChannel.SUCCESS:
            return await self.reconcile(callback.transaction_id, outcome, callback)

        try:
            return await self.reconcile(callback.transaction_id, outcome, callback)
        except (PaymentServiceError, SQLAlchemyError) as e:
            logger.error(
                "callback_reconciliation_failed",
                channel=channel.value,
                transaction_id=callback.transaction_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return ReconcileResult(
                transaction_id=callback.transaction_id, outcome=outcome, result=ERROR
            )


def _channel_default_outcome(channel: CallbackChannel) -> CallbackOutcome:
    return {
        CallbackChannel.SUCCESS: CallbackOutcome.SUCCESS,
        CallbackChannel.FAIL: CallbackOutcome.FAIL,
        CallbackChannel.CANCEL: CallbackOutcome.CANCEL,
        CallbackChannel.IPN: CallbackOutcome.IPN_INVALID,
    }[channel]
