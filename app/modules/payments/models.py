from sqlalchemy import Column, Integer, String, Numeric, DateTime, Text, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base
import enum


class PaymentProvider(str, enum.Enum):
    PAYSTACK = "PAYSTACK"


class PaymentType(str, enum.Enum):
    TRANSACTION_FUNDING = "TRANSACTION_FUNDING"  # Buyer pays into escrow
    SELLER_PAYOUT = "SELLER_PAYOUT"              # Escrow released to seller
    REFUND = "REFUND"                            # Escrow returned to buyer


class PaymentStatus(str, enum.Enum):
    INITIATED = "INITIATED"
    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Payment(Base):
    """Money movement through the payment gateway"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    payer_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    payee_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    provider = Column(SQLEnum(PaymentProvider), default=PaymentProvider.PAYSTACK, nullable=False)
    type = Column(SQLEnum(PaymentType), nullable=False, index=True)
    status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.INITIATED, nullable=False, index=True)

    amount_ghs = Column(Numeric(18, 2), nullable=False)
    currency = Column(String(3), default="GHS", nullable=False)

    provider_ref = Column(String(100), unique=True, index=True, nullable=False)
    authorization_url = Column(Text, nullable=True)
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    transaction = relationship("Transaction", back_populates="payments")

    def __repr__(self):
        return f"<Payment(id={self.id}, type={self.type}, status={self.status}, ref={self.provider_ref})>"
