from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Enum as SQLEnum
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from app.core.database import Base
import enum


class ListingStatus(str, enum.Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    SUSPENDED = "suspended"  # Listings are suspended, never deleted
    SOLD = "sold"


class Listing(Base):
    """Land listing offered for sale"""
    __tablename__ = "listings"

    id = Column(Integer, primary_key=True, index=True)
    seller_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    title = Column(String(255), nullable=False)
    region = Column(String(100), nullable=False)
    district = Column(String(100), nullable=True)
    town = Column(String(100), nullable=True)
    price_ghs = Column(Numeric(18, 2), nullable=False)

    status = Column(SQLEnum(ListingStatus), default=ListingStatus.PUBLISHED, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    seller = relationship("User", lazy="selectin")

    def __repr__(self):
        return f"<Listing(id={self.id}, title={self.title}, status={self.status})>"
