"""Read access to payments: single invoices and paged listings."""
import math
import uuid
from dataclasses import dataclass
from typing import List, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from payment_reconciliation.config import Settings, get_settings
from payment_reconciliation.core.errors import ForbiddenError, PaymentNotFoundError, ValidationError
from payment_reconciliation.core.repository import ALL_STATUSES, PaymentFilters, PaymentRepository
from payment_reconciliation.database.models import Payment
from payment_reconciliation.enums import ADMIN_ROLES, PaymentStatus, UserRole

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Page:
    items: List[Payment]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _is_admin(role: Optional[str]) -> bool:
    try:
        return UserRole(str(role).upper()) in ADMIN_ROLES
    except ValueError:
        return False


class InvoiceService:
    """Payment lookups with owner/administrator access checks."""

    def __init__(
        self,
        payments: Optional[PaymentRepository] = None,
        settings: Optional[Settings] = None,
    ):
        self.payments = payments or PaymentRepository()
        self.settings = settings or get_settings()

    async def get_payment_by_id(
        self,
        db: AsyncSession,
        payment_id: str | uuid.UUID,
        requester_id: str | uuid.UUID,
        requester_role: Optional[str],
    ) -> Payment:
        """
        Fetch one payment for its owner or an administrator.

        Raises:
            PaymentNotFoundError: Unknown (or malformed) id
            ForbiddenError: Requester is neither the payer nor an administrator
        """
        payment = await self.payments.find_by_id(db, payment_id, with_user=True)
        if payment is None:
            raise PaymentNotFoundError("Payment not found", payment_id=str(payment_id))

        if str(payment.user_id) != str(requester_id) and not _is_admin(requester_role):
            logger.warning(
                "invoice_access_denied",
                payment_id=str(payment.id),
                requester_id=str(requester_id),
            )
            raise ForbiddenError("You are not allowed to view this invoice")
        return payment

    async def list_for_user(
        self,
        db: AsyncSession,
        user_id: str | uuid.UUID,
        status: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page:
        """List the caller's own payments, newest first."""
        try:
            user_uuid = uuid.UUID(str(user_id))
        except ValueError:
            return self._empty(page, limit)
        return await self._list(db, user_id=user_uuid, status=status, search=None, page=page, limit=limit)

    async def list_all(
        self,
        db: AsyncSession,
        requester_role: Optional[str],
        status: Optional[str] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> Page:
        """
        List every payment for administrators.

        Raises:
            ForbiddenError: Requester role is not ADMIN or SUPER_ADMIN
        """
        if not _is_admin(requester_role):
            raise ForbiddenError("Administrator role required")
        return await self._list(db, user_id=None, status=status, search=search, page=page, limit=limit)

    async def _list(
        self,
        db: AsyncSession,
        user_id: Optional[uuid.UUID],
        status: Optional[str],
        search: Optional[str],
        page: int,
        limit: Optional[int],
    ) -> Page:
        page, limit = self._page_bounds(page, limit)
        status = self._status_filter(status)
        filters = PaymentFilters(
            user_id=user_id,
            status=status,
            search=search.strip() if search and search.strip() else None,
            page=page,
            limit=limit,
        )
        rows, total = await self.payments.list_payments(db, filters)
        return Page(items=rows, total=total, page=page, limit=limit)

    def _page_bounds(self, page: int, limit: Optional[int]) -> tuple[int, int]:
        page = max(int(page or 1), 1)
        limit = int(limit or self.settings.default_page_size)
        return page, max(1, min(limit, self.settings.max_page_size))

    def _empty(self, page: int, limit: Optional[int]) -> Page:
        page, limit = self._page_bounds(page, limit)
        return Page(items=[], total=0, page=page, limit=limit)

    @staticmethod
    def _status_filter(status: Optional[str]) -> Optional[str]:
        if not status or status.upper() == ALL_STATUSES:
            return None
        try:
            return PaymentStatus(status.upper()).value
        except ValueError:
            raise ValidationError(f"Unknown payment status: {status}", status=status)
