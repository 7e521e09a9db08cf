from sqlalchemy import Column, Integer, DateTime, Text, ForeignKey, Enum as SQLEnum
from typing import Optional
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base
import enum


class DisputeStatus(str, enum.Enum):
    OPEN = "OPEN"
    RESOLVED = "RESOLVED"
    DISMISSED = "DISMISSED"


class DisputeOutcome(str, enum.Enum):
    """How a dispute was settled"""
    RELEASE = "RELEASE"      # Funds go to the seller
    REFUND = "REFUND"        # Funds go back to the buyer
    TERMINATE = "TERMINATE"  # Transaction closed administratively


class Dispute(Base):
    """Dispute raised by the buyer during the verification period"""
    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(Integer, ForeignKey("transactions.id"), nullable=False, index=True)
    raised_by_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    status = Column(SQLEnum(DisputeStatus), default=DisputeStatus.OPEN, nullable=False, index=True)
    reason = Column(Text, nullable=True)

    resolution_outcome = Column(SQLEnum(DisputeOutcome), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    resolved_by_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    resolved_at = Column(DateTime(timezone=True), nullable=True)

    transaction = relationship("Transaction", back_populates="disputes")

    def __repr__(self):
        return f"<Dispute(id={self.id}, transaction_id={self.transaction_id}, status={self.status})>"


class MessageSenderType(str, enum.Enum):
    BUYER = "BUYER"
    SELLER = "SELLER"
    ADMIN = "ADMIN"


class DisputeMessage(Base):
    """Message on a dispute thread between the parties and platform staff"""
    __tablename__ = "dispute_messages"

    id = Column(Integer, primary_key=True, index=True)
    dispute_id = Column(Integer, ForeignKey("disputes.id"), nullable=False, index=True)
    sender_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    sender_type = Column(SQLEnum(MessageSenderType), nullable=False)
    content = Column(Text, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    sender = relationship("User", lazy="selectin")

    @property
    def sender_name(self) -> Optional[str]:
        return self.sender.full_name if self.sender else None

    def __repr__(self):
        return f"<DisputeMessage(id={self.id}, dispute_id={self.dispute_id}, sender_type={self.sender_type})>"
