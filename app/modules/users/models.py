from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum as SQLEnum
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class UserRole(str, enum.Enum):
    """Platform role"""
    USER = "user"                # Buyers and sellers
    ADMIN = "admin"              # Full access
    SUPPORT = "support"          # Customer support, dispute handling
    FINANCE = "finance"          # Payouts, high-value approvals
    COMPLIANCE = "compliance"    # KYC/AML, dispute handling


STAFF_ROLES = {UserRole.ADMIN, UserRole.SUPPORT, UserRole.FINANCE, UserRole.COMPLIANCE}
HIGH_VALUE_APPROVER_ROLES = {UserRole.ADMIN, UserRole.FINANCE}


class KYCTier(str, enum.Enum):
    """Identity verification level"""
    TIER_0 = "tier_0"
    TIER_1 = "tier_1"
    TIER_2 = "tier_2"


class User(Base):
    """Marketplace user (buyer, seller or platform staff)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    email = Column(String(255), unique=True, index=True, nullable=True)
    phone = Column(String(20), unique=True, index=True, nullable=False)
    full_name = Column(String(200), nullable=False)

    role = Column(SQLEnum(UserRole), default=UserRole.USER, nullable=False)
    kyc_tier = Column(SQLEnum(KYCTier), default=KYCTier.TIER_0, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES

    def __repr__(self):
        return f"<User(id={self.id}, phone={self.phone}, role={self.role})>"
