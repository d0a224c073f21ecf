"""
Repositories over the payment store.

Every method takes the caller's session so that reads, the conditional status
write and the side effects of one reconciliation share a single transaction.
"""
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payment_reconciliation.database.models import Payment, PaymentEvent, User
from payment_reconciliation.enums import PaymentMethod, PaymentPurpose, PaymentStatus

logger = structlog.get_logger(__name__)

ALL_STATUSES = "ALL"


def _as_uuid(value: str | uuid.UUID) -> Optional[uuid.UUID]:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


@dataclass(frozen=True)
class PaymentFilters:
    """Listing filters. page is 1-based."""

    user_id: Optional[uuid.UUID] = None
    status: Optional[str] = None
    search: Optional[str] = None
    page: int = 1
    limit: int = 10

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaymentRepository:
    """Persistence operations for Payment rows."""

    async def create(
        self,
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        amount: Decimal,
        method: PaymentMethod,
        purpose: PaymentPurpose,
        transaction_id: str,
        sender_number: Optional[str] = None,
    ) -> Payment:
        """
        Insert a payment in INITIATED.

        Args:
            db: Database session
            user_id: Paying user
            amount: Positive amount in the configured currency
            method: Gateway identifier
            purpose: Payment purpose
            transaction_id: Freshly generated transaction id

        Returns:
            Payment: the flushed row (id assigned)
        """
        payment = Payment(
            id=uuid.uuid4(),
            transaction_id=transaction_id,
            user_id=user_id,
            amount=amount,
            method=PaymentMethod(method).value,
            purpose=PaymentPurpose(purpose).value,
            status=PaymentStatus.INITIATED.value,
            sender_number=sender_number,
        )
        db.add(payment)
        await db.flush()
        return payment

    async def find_by_id(
        self, db: AsyncSession, payment_id: str | uuid.UUID, with_user: bool = False
    ) -> Optional[Payment]:
        payment_uuid = _as_uuid(payment_id)
        if payment_uuid is None:
            return None
        stmt = select(Payment).where(Payment.id == payment_uuid)
        if with_user:
            stmt = stmt.options(selectinload(Payment.user))
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def find_by_transaction_id(self, db: AsyncSession, transaction_id: str) -> Optional[Payment]:
        result = await db.execute(select(Payment).where(Payment.transaction_id == transaction_id))
        return result.scalar_one_or_none()

    async def compare_and_set_status(
        self,
        db: AsyncSession,
        transaction_id: str,
        expected: Iterable[PaymentStatus],
        new_status: PaymentStatus,
        paid_at: Optional[datetime] = None,
    ) -> bool:
        """
        Move a payment to new_status only if it is currently in one of expected.

        The single conditional UPDATE takes the row lock, so of two concurrent
        callers only one sees a changed row; the other gets False once the
        winner commits.

        Returns:
            bool: True if this call performed the transition
        """
        expected_values = [PaymentStatus(s).value for s in expected]
        if not expected_values:
            return False

        values: Dict[str, Any] = {"status": PaymentStatus(new_status).value, "updated_at": func.now()}
        if paid_at is not None:
            values["paid_at"] = paid_at

        stmt = (
            update(Payment)
            .where(
                Payment.transaction_id == transaction_id,
                Payment.status.in_(expected_values),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        changed = result.rowcount == 1

        logger.debug(
            "payment_status_cas",
            transaction_id=transaction_id,
            expected=expected_values,
            new_status=values["status"],
            changed=changed,
        )
        return changed

    async def list_payments(
        self, db: AsyncSession, filters: PaymentFilters
    ) -> Tuple[List[Payment], int]:
        """
        Filter, page and count payments, newest first.

        Returns:
            Tuple[List[Payment], int]: page rows and total matching rows
        """
        conditions = []
        if filters.user_id is not None:
            conditions.append(Payment.user_id == filters.user_id)
        if filters.status and filters.status.upper() != ALL_STATUSES:
            conditions.append(Payment.status == filters.status.upper())
        if filters.search:
            conditions.append(
                or_(
                    Payment.transaction_id.icontains(filters.search, autoescape=True),
                    Payment.sender_number.icontains(filters.search, autoescape=True),
                )
            )

        total_stmt = select(func.count()).select_from(Payment).where(*conditions)
        total = (await db.execute(total_stmt)).scalar_one()

        rows_stmt = (
            select(Payment)
            .options(selectinload(Payment.user))
            .where(*conditions)
            .order_by(Payment.created_at.desc(), Payment.id)
            .offset(filters.offset)
            .limit(filters.limit)
        )
        rows = list((await db.execute(rows_stmt)).scalars().all())
        return rows, total

    async def record_event(
        self,
        db: AsyncSession,
        payment_id: uuid.UUID,
        event_type: str,
        event_data: Dict[str, Any],
        correlation_id: uuid.UUID,
    ) -> None:
        """
        Record a payment event for audit trail.

        Args:
            db: Database session
            payment_id: Payment ID
            event_type: Event type (e.g. 'payment.paid')
            event_data: Event data
            correlation_id: Correlation ID for tracing
        """
        db.add(
            PaymentEvent(
                payment_id=payment_id,
                event_type=event_type,
                event_data=event_data,
                correlation_id=correlation_id,
            )
        )
        await db.flush()


class UserRepository:
    """Read access to referenced users."""

    async def find_by_id(self, db: AsyncSession, user_id: str | uuid.UUID) -> Optional[User]:
        user_uuid = _as_uuid(user_id)
        if user_uuid is None:
            return None
        result = await db.execute(select(User).where(User.id == user_uuid))
        return result.scalar_one_or_none()
