"""
Test configuration and fixtures for the land escrow backend tests.
"""
import pytest
from typing import AsyncGenerator, List, Optional
from decimal import Decimal
from datetime import datetime, timezone
import uuid

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from httpx import AsyncClient, ASGITransport

from app.core.database import Base, get_db
from app.core.exceptions import ExternalServiceFailure
from app.modules.payments.gateway import (
    PaymentGateway, CheckoutSession, VerificationResult, get_payment_gateway
)
from main import app


# ============================================================
# Database Fixtures
# ============================================================

# Use SQLite for testing (in-memory)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture
async def test_engine():
    """Create a fresh database per test"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create database session for each test"""
    async_session = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session() as session:
        yield session
        await session.rollback()


# ============================================================
# Payment Gateway Fake
# ============================================================

class FakeGateway(PaymentGateway):
    """In-memory gateway recording every call"""

    def __init__(self):
        self.initialized: List[dict] = []
        self.payouts: List[dict] = []
        self.refunds: List[dict] = []
        self.verified: List[str] = []
        self.fail_with: Optional[str] = None
        self.verify_status = "success"
        self.verify_amount: Optional[Decimal] = None
        self.valid_signature = "valid-signature"

    def _maybe_fail(self):
        if self.fail_with:
            raise ExternalServiceFailure(self.fail_with)

    async def initialize_payment(self, email, amount_ghs, reference, metadata=None):
        self._maybe_fail()
        self.initialized.append({"email": email, "amount_ghs": amount_ghs, "reference": reference})
        return CheckoutSession(
            authorization_url=f"https://checkout.paystack.test/{reference}",
            reference=reference,
        )

    async def verify_payment(self, reference):
        self._maybe_fail()
        self.verified.append(reference)
        initialized = next((i for i in self.initialized if i["reference"] == reference), None)
        amount = self.verify_amount
        if amount is None:
            amount = initialized["amount_ghs"] if initialized else Decimal("0.00")
        return VerificationResult(
            reference=reference,
            successful=self.verify_status == "success",
            amount_ghs=amount,
            gateway_status=self.verify_status,
        )

    async def refund_payment(self, funding_reference, amount_ghs):
        self._maybe_fail()
        self.refunds.append({"reference": funding_reference, "amount_ghs": amount_ghs})
        return f"RF-{len(self.refunds)}"

    async def payout(self, name, phone, amount_ghs, reference, reason):
        self._maybe_fail()
        self.payouts.append({"phone": phone, "amount_ghs": amount_ghs, "reference": reference})
        return f"TRF-{len(self.payouts)}"

    def verify_webhook_signature(self, body, signature):
        return signature == self.valid_signature


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
async def client(db_session, gateway) -> AsyncGenerator[AsyncClient, None]:
    """Create test client with database and gateway overrides"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ============================================================
# User Fixtures
# ============================================================

async def _create_user(db_session, phone, full_name, email=None, role=None):
    from app.modules.users.models import User, UserRole, KYCTier

    user = User(
        phone=phone,
        email=email,
        full_name=full_name,
        role=role or UserRole.USER,
        kyc_tier=KYCTier.TIER_1,
        is_active=True,
    )
    db_session.add(user)
    await db_session.commit()
    await db_session.refresh(user)
    return user


@pytest.fixture
async def buyer(db_session):
    return await _create_user(db_session, "+233241000001", "Ama Mensah", email="ama@example.com")


@pytest.fixture
async def seller(db_session):
    return await _create_user(db_session, "+233241000002", "Kofi Boateng", email="kofi@example.com")


@pytest.fixture
async def outsider(db_session):
    return await _create_user(db_session, "+233241000003", "Yaw Owusu", email="yaw@example.com")


@pytest.fixture
async def admin_user(db_session):
    from app.modules.users.models import UserRole
    return await _create_user(db_session, "+233241000009", "Esi Admin", email="admin@example.com", role=UserRole.ADMIN)


@pytest.fixture
async def support_user(db_session):
    from app.modules.users.models import UserRole
    return await _create_user(db_session, "+233241000008", "Kwame Support", role=UserRole.SUPPORT)


def make_headers(user):
    from app.core.security import create_access_token

    token = create_access_token(data={"sub": str(user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def buyer_headers(buyer):
    return make_headers(buyer)


@pytest.fixture
def seller_headers(seller):
    return make_headers(seller)


@pytest.fixture
def outsider_headers(outsider):
    return make_headers(outsider)


@pytest.fixture
def admin_headers(admin_user):
    return make_headers(admin_user)


@pytest.fixture
def support_headers(support_user):
    return make_headers(support_user)


# ============================================================
# Listing / Transaction Fixtures
# ============================================================

@pytest.fixture
async def listing(db_session, seller):
    from app.modules.listings.models import Listing, ListingStatus

    listing = Listing(
        seller_id=seller.id,
        title="Half plot at East Legon",
        region="Greater Accra",
        district="Accra Metropolitan",
        town="East Legon",
        price_ghs=Decimal("120000.00"),
        status=ListingStatus.PUBLISHED,
    )
    db_session.add(listing)
    await db_session.commit()
    await db_session.refresh(listing)
    return listing


# Statuses reached only after the buyer's payment has settled
_FUNDED_STATUSES = {
    "FUNDED", "VERIFICATION_PERIOD", "DISPUTED", "READY_TO_RELEASE", "RELEASED", "REFUNDED",
}


async def create_transaction_in(
    db_session,
    listing,
    buyer,
    status: str = "CREATED",
    price: Decimal = Decimal("120000.00"),
    milestones: int = 2,
    completed: int = 0,
):
    """
    Persist a transaction directly in ``status``, with ``milestones``
    milestones of which the first ``completed`` are approved by both sides.
    """
    from app.modules.transactions.models import Transaction, EscrowMilestone, TransactionStatus
    from app.modules.transactions.services import calculate_fee
    from app.modules.payments.models import Payment, PaymentStatus, PaymentType
    from app.modules.disputes.models import Dispute, DisputeStatus

    now = datetime.now(timezone.utc)
    fee, net = calculate_fee(price, 500)
    txn_status = TransactionStatus(status)

    transaction = Transaction(
        listing_id=listing.id,
        buyer_id=buyer.id,
        seller_id=listing.seller_id,
        status=txn_status,
        agreed_price_ghs=price,
        platform_fee_bps=500,
        platform_fee_ghs=fee,
        seller_net_ghs=net,
        verification_days_min=7,
        verification_started_at=now if status not in ("CREATED", "ESCROW_REQUESTED", "FUNDED") else None,
        closed_at=now if status in ("RELEASED", "REFUNDED", "CLOSED") else None,
    )
    for order in range(1, milestones + 1):
        done = order <= completed
        transaction.milestones.append(EscrowMilestone(
            name=f"Milestone {order}",
            amount_ghs=price if order == 1 else Decimal("0.00"),
            sort_order=order,
            buyer_approved_at=now if done else None,
            seller_approved_at=now if done else None,
            completed_at=now if done else None,
        ))

    if status == "ESCROW_REQUESTED":
        transaction.payments.append(Payment(
            payer_user_id=buyer.id,
            type=PaymentType.TRANSACTION_FUNDING,
            status=PaymentStatus.PENDING,
            amount_ghs=price,
            provider_ref=f"LE-TEST-{uuid.uuid4().hex[:10]}",
            authorization_url="https://checkout.paystack.test/pending",
        ))
    elif status in _FUNDED_STATUSES:
        transaction.payments.append(Payment(
            payer_user_id=buyer.id,
            type=PaymentType.TRANSACTION_FUNDING,
            status=PaymentStatus.SUCCESS,
            amount_ghs=price,
            provider_ref=f"LE-TEST-{uuid.uuid4().hex[:10]}",
        ))

    if status == "DISPUTED":
        transaction.disputes.append(Dispute(
            raised_by_id=buyer.id,
            status=DisputeStatus.OPEN,
            reason="Site plan does not match the land on the ground",
        ))

    db_session.add(transaction)
    await db_session.commit()
    await db_session.refresh(transaction)
    return transaction


@pytest.fixture
def make_transaction(db_session, listing, buyer):
    async def _make(status: str = "CREATED", **kwargs):
        return await create_transaction_in(db_session, listing, buyer, status=status, **kwargs)
    return _make


@pytest.fixture
def user_factory():
    """For tests that manage their own sessions"""
    return _create_user


@pytest.fixture
def transaction_factory():
    return create_transaction_in
