from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, JSON, Enum as SQLEnum
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class AuditActorType(str, enum.Enum):
    USER = "USER"
    SYSTEM = "SYSTEM"


class AuditLog(Base):
    """Append-only record of every state change"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # What
    entity_type = Column(String(50), nullable=False, index=True)  # transaction, milestone, dispute, payment
    entity_id = Column(Integer, nullable=False, index=True)
    action = Column(String(100), nullable=False)
    diff = Column(JSON, nullable=True)  # e.g. {"from": "FUNDED", "to": "VERIFICATION_PERIOD"}

    # Who
    actor_type = Column(SQLEnum(AuditActorType), nullable=False)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, entity={self.entity_type}:{self.entity_id}, action={self.action})>"
