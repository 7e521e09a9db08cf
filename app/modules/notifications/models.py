from sqlalchemy import Column, Integer, String, DateTime, Text, Enum as SQLEnum, ForeignKey, JSON
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class NotificationType(str, enum.Enum):
    """Type of notification"""
    TRANSACTION = "transaction"      # Escrow status changes
    DISPUTE = "dispute"              # Dispute raised / resolved
    PAYMENT = "payment"              # Funding, payout and refund alerts
    SYSTEM = "system"                # Maintenance, updates


class NotificationChannel(str, enum.Enum):
    """Notification delivery channel"""
    SMS = "sms"
    EMAIL = "email"
    IN_APP = "in_app"


class NotificationStatus(str, enum.Enum):
    """Status of notification delivery"""
    PENDING = "pending"
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"
    READ = "read"


class Notification(Base):
    """
    Notification model for storing all user alerts.
    Supports multiple channels: SMS, Email, In-App.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    # Notification content
    type = Column(SQLEnum(NotificationType), nullable=False, index=True)
    channel = Column(SQLEnum(NotificationChannel), nullable=False)

    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)

    # Delivery status
    status = Column(SQLEnum(NotificationStatus), default=NotificationStatus.PENDING, nullable=False, index=True)

    # Related entity (optional) - e.g. 'transaction', 'dispute'
    related_entity_type = Column(String(50), nullable=True)
    related_entity_id = Column(Integer, nullable=True)

    extra_data = Column(JSON, nullable=True)

    # External provider reference
    external_id = Column(String(255), nullable=True)  # Twilio SID, SendGrid ID
    error_message = Column(Text, nullable=True)

    # Timestamps
    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    read_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Notification(id={self.id}, user_id={self.user_id}, type={self.type}, status={self.status})>"
