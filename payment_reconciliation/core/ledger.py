"""
Downstream effects of a completed payment: fund credit and membership elevation.

Both operations run on the caller's session, inside the transaction that marks
the payment PAID. If either raises, the PAID marking rolls back with it.
"""
import uuid
from decimal import Decimal
from typing import Protocol

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from payment_reconciliation.database.models import FundTransaction, User
from payment_reconciliation.enums import UserRole, UserStatus

logger = structlog.get_logger(__name__)


class LedgerEffects(Protocol):
    """Contract the reconciliation engine needs from the ledger."""

    async def credit_fund(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        amount: Decimal,
        payment_id: uuid.UUID,
        transaction_id: str,
        label: str,
    ) -> None:
        ...

    async def elevate_to_member(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        ...


class SqlLedgerEffects:
    """LedgerEffects backed by the fund_transactions and users tables."""

    async def credit_fund(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        amount: Decimal,
        payment_id: uuid.UUID,
        transaction_id: str,
        label: str,
    ) -> None:
        """
        Add a fund credit for a donation payment.

        Args:
            db: Session of the completing transaction
            user_id: Donor
            amount: Credited amount
            payment_id: Source payment (unique per credit)
            transaction_id: Gateway transaction id
            label: Human-readable source, e.g. 'Project Donation'
        """
        db.add(
            FundTransaction(
                user_id=user_id,
                amount=amount,
                payment_id=payment_id,
                transaction_id=transaction_id,
                label=label,
            )
        )
        await db.flush()
        logger.info(
            "fund_credited",
            user_id=str(user_id),
            payment_id=str(payment_id),
            transaction_id=transaction_id,
            amount=str(amount),
            label=label,
        )

    async def elevate_to_member(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        """Promote a USER to MEMBER and activate the account."""
        stmt = (
            update(User)
            .where(User.id == user_id, User.role == UserRole.USER.value)
            .values(role=UserRole.MEMBER.value, status=UserStatus.ACTIVE.value)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        logger.info(
            "membership_elevated",
            user_id=str(user_id),
            rows_updated=result.rowcount,
        )
