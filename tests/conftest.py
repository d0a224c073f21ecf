"""
Pytest configuration and fixtures.

Every test gets its own file-backed SQLite database under tmp_path, so
concurrent sessions in the race tests contend on a real database lock.
"""
import asyncio
import uuid
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from payment_reconciliation.config import Settings
from payment_reconciliation.core.errors import UpstreamGatewayError
from payment_reconciliation.core.gateway import GatewayPaymentRequest, GatewaySessionResult
from payment_reconciliation.core.ledger import SqlLedgerEffects
from payment_reconciliation.core.reconciliation import ReconciliationEngine
from payment_reconciliation.core.repository import PaymentRepository
from payment_reconciliation.core.transaction_ids import generate_transaction_id
from payment_reconciliation.database.connection import create_engine, create_session_factory, init_db
from payment_reconciliation.database.models import FundTransaction, Payment, PaymentEvent, User
from payment_reconciliation.enums import PaymentMethod, PaymentPurpose, PaymentStatus, UserRole, UserStatus


@pytest.fixture
def test_settings(tmp_path: Any) -> Settings:
    """Create test settings."""
    return Settings(
        _env_file=None,
        app_name="payment-reconciliation-test",
        app_env="test",
        log_level="DEBUG",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'payments.db'}",
        sslcommerz_store_id="teststore",
        sslcommerz_store_password="teststore@ssl",
        public_base_url="https://api.example.org",
        frontend_url="https://app.example.org",
        gateway_timeout_seconds=0.5,
        reconcile_max_attempts=3,
    )


@pytest_asyncio.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine, Any]:
    """Create a fresh schema in a per-test SQLite file."""
    engine = create_engine(test_settings.database_url)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(db_engine)


class RecordingLedger(SqlLedgerEffects):
    """SqlLedgerEffects that records each call and can be told to fail."""

    def __init__(self) -> None:
        self.credits: List[Dict[str, Any]] = []
        self.elevations: List[uuid.UUID] = []
        self.fail_with: Optional[Exception] = None

    async def credit_fund(self, db: AsyncSession, **kwargs: Any) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.credits.append(kwargs)
        await super().credit_fund(db, **kwargs)

    async def elevate_to_member(self, db: AsyncSession, user_id: uuid.UUID) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.elevations.append(user_id)
        await super().elevate_to_member(db, user_id)


class FakeGateway:
    """GatewaySession that records requests instead of calling SSLCommerz."""

    def __init__(
        self,
        url: str = "https://sandbox.sslcommerz.com/EasyCheckOut/testcde",
        error: Optional[Exception] = None,
        delay: float = 0,
    ) -> None:
        self.url = url
        self.error = error
        self.delay = delay
        self.requests: List[GatewayPaymentRequest] = []

    async def create_payment(self, request: GatewayPaymentRequest) -> GatewaySessionResult:
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GatewaySessionResult(gateway_url=self.url, session_key="testcde")


@pytest.fixture
def ledger() -> RecordingLedger:
    return RecordingLedger()


@pytest.fixture
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def failing_gateway() -> FakeGateway:
    return FakeGateway(error=UpstreamGatewayError("Payment gateway refused the session"))


@pytest.fixture
def reconciliation_engine(
    session_factory: async_sessionmaker[AsyncSession],
    ledger: RecordingLedger,
    test_settings: Settings,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        session_factory=session_factory,
        ledger=ledger,
        settings=test_settings,
    )


@pytest.fixture
def make_user(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    """Factory inserting a committed user."""

    async def _make_user(
        role: UserRole = UserRole.USER,
        status: UserStatus = UserStatus.PENDING,
        email: Optional[str] = None,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            name="Rahim Uddin",
            email=email or f"{uuid.uuid4().hex[:10]}@example.org",
            phone="01711000000",
            address="House 12, Road 4",
            city_state="Dhaka",
            role=role.value,
            status=status.value,
        )
        async with session_factory() as db:
            async with db.begin():
                db.add(user)
        return user

    return _make_user


@pytest.fixture
def make_payment(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    """Factory inserting a committed payment (INITIATED unless told otherwise)."""

    async def _make_payment(
        user: User,
        purpose: PaymentPurpose = PaymentPurpose.MEMBERSHIP_FEE,
        amount: Decimal = Decimal("500.00"),
        status: PaymentStatus = PaymentStatus.INITIATED,
        sender_number: Optional[str] = None,
        transaction_id: Optional[str] = None,
    ) -> Payment:
        async with session_factory() as db:
            async with db.begin():
                payment = await PaymentRepository().create(
                    db,
                    user_id=user.id,
                    amount=amount,
                    method=PaymentMethod.SSLCOMMERZ,
                    purpose=purpose,
                    transaction_id=transaction_id or generate_transaction_id(),
                    sender_number=sender_number,
                )
                payment.status = status.value
        return payment

    return _make_payment


@pytest.fixture
def fetch(session_factory: async_sessionmaker[AsyncSession]) -> Callable[..., Any]:
    """Read helpers for asserting on committed state."""

    class _Fetch:
        async def payment(self, transaction_id: str) -> Payment:
            async with session_factory() as db:
                result = await db.execute(select(Payment).where(Payment.transaction_id == transaction_id))
                return result.scalar_one()

        async def user(self, user_id: uuid.UUID) -> User:
            async with session_factory() as db:
                return (await db.execute(select(User).where(User.id == user_id))).scalar_one()

        async def fund_transactions(self, payment_id: Optional[uuid.UUID] = None) -> List[FundTransaction]:
            stmt = select(FundTransaction)
            if payment_id is not None:
                stmt = stmt.where(FundTransaction.payment_id == payment_id)
            async with session_factory() as db:
                return list((await db.execute(stmt)).scalars().all())

        async def events(self, payment_id: uuid.UUID) -> List[PaymentEvent]:
            stmt = select(PaymentEvent).where(PaymentEvent.payment_id == payment_id).order_by(PaymentEvent.id)
            async with session_factory() as db:
                return list((await db.execute(stmt)).scalars().all())

    return _Fetch()
