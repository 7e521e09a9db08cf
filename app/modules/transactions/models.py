from sqlalchemy import (
    Column, Integer, String, Numeric, Boolean, DateTime, Text, ForeignKey,
    CheckConstraint, Enum as SQLEnum
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base
import enum


class TransactionStatus(str, enum.Enum):
    """Escrow transaction status"""
    CREATED = "CREATED"
    ESCROW_REQUESTED = "ESCROW_REQUESTED"
    FUNDED = "FUNDED"
    VERIFICATION_PERIOD = "VERIFICATION_PERIOD"
    DISPUTED = "DISPUTED"
    READY_TO_RELEASE = "READY_TO_RELEASE"
    RELEASED = "RELEASED"
    REFUNDED = "REFUNDED"
    CLOSED = "CLOSED"


TERMINAL_STATUSES = frozenset({
    TransactionStatus.RELEASED,
    TransactionStatus.REFUNDED,
    TransactionStatus.CLOSED,
})


class TransactionAction(str, enum.Enum):
    """Actions a client may request on a transaction"""
    FUND = "fund"
    APPROVE_MILESTONE = "approve-milestone"
    DISPUTE = "dispute"
    RELEASE = "release"
    REFUND = "refund"
    CLOSE = "close"
    REINSTATE = "reinstate"


class ActorRole(str, enum.Enum):
    """Role of the acting user relative to one transaction"""
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    SYSTEM = "system"


class Transaction(Base):
    """
    Escrow transaction between one buyer and one seller for one listing.
    Mutated only through the lifecycle engine; closed, never deleted.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("buyer_id <> seller_id", name="ck_transactions_distinct_parties"),
        CheckConstraint("agreed_price_ghs > 0", name="ck_transactions_positive_price"),
    )

    id = Column(Integer, primary_key=True, index=True)
    listing_id = Column(Integer, ForeignKey("listings.id"), nullable=False, index=True)
    buyer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    offer_reference = Column(String(100), nullable=True)

    status = Column(SQLEnum(TransactionStatus), default=TransactionStatus.CREATED, nullable=False, index=True)

    # Money (GHS, 2 dp)
    agreed_price_ghs = Column(Numeric(18, 2), nullable=False)
    platform_fee_bps = Column(Integer, nullable=False)
    platform_fee_ghs = Column(Numeric(18, 2), nullable=False)
    seller_net_ghs = Column(Numeric(18, 2), nullable=False)

    verification_days_min = Column(Integer, nullable=False)
    verification_started_at = Column(DateTime(timezone=True), nullable=True)

    # High-value release approval
    release_approved_at = Column(DateTime(timezone=True), nullable=True)
    release_approved_by = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)
    closed_at = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False)

    # Relationships
    listing = relationship("Listing", lazy="selectin")
    buyer = relationship("User", foreign_keys=[buyer_id], lazy="selectin")
    seller = relationship("User", foreign_keys=[seller_id], lazy="selectin")
    milestones = relationship(
        "EscrowMilestone",
        back_populates="transaction",
        order_by="EscrowMilestone.sort_order",
        lazy="selectin",
    )
    disputes = relationship("Dispute", back_populates="transaction", lazy="selectin")
    payments = relationship("Payment", back_populates="transaction", lazy="selectin")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self):
        return f"<Transaction(id={self.id}, status={self.status}, price={self.agreed_price_ghs})>"


class EscrowMilestone(Base):
    """Payment / verification checkpoint requiring buyer and seller approval"""
    __tablename__ = "escrow_milestones"
    __table_args__ = (
        CheckConstraint("amount_ghs >= 0", name="ck_escrow_milestones_amount"),
    )

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)

    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    amount_ghs = Column(Numeric(18, 2), nullable=False, default=0)
    sort_order = Column(Integer, nullable=False)

    buyer_approved_at = Column(DateTime(timezone=True), nullable=True)
    seller_approved_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    requires_admin_approval = Column(Boolean, default=False, nullable=False)
    admin_approved_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    version = Column(Integer, nullable=False)

    transaction = relationship("Transaction", back_populates="milestones")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def __repr__(self):
        return f"<EscrowMilestone(id={self.id}, transaction_id={self.transaction_id}, name={self.name})>"
