from pydantic import BaseModel, ConfigDict, Field, model_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional, List, Literal

from app.modules.transactions.models import TransactionStatus, TransactionAction
from app.modules.users.schemas import UserSummary
from app.modules.disputes.schemas import DisputeResponse
from app.modules.payments.schemas import PaymentResponse


# ============ Requests ============

class MilestoneCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    amount_ghs: Decimal = Field(Decimal("0"), ge=0, decimal_places=2)


class TransactionCreate(BaseModel):
    """
    Open escrow for a listing at a price agreed off-platform.
    Milestones default to the standard deposit / documents / transfer plan.
    """
    listing_id: int
    buyer_id: Optional[int] = Field(None, description="Defaults to the caller when the caller is not the seller")
    agreed_price_ghs: Decimal = Field(..., gt=0, decimal_places=2)
    offer_reference: Optional[str] = Field(None, max_length=100)
    milestones: Optional[List[MilestoneCreate]] = Field(None, min_length=1)


class TransactionUpdate(BaseModel):
    """Either an action token or the target status it stands for"""
    action: Optional[TransactionAction] = None
    status: Optional[TransactionStatus] = None
    reason: Optional[str] = Field(None, max_length=2000)

    @model_validator(mode="after")
    def one_of_action_or_status(self):
        if (self.action is None) == (self.status is None):
            raise ValueError("Provide exactly one of 'action' or 'status'")
        return self


class AdminTransactionAction(BaseModel):
    action: TransactionAction
    reason: Optional[str] = Field(None, max_length=2000)


class MilestoneApproval(BaseModel):
    approve: bool


class HighValueDecision(BaseModel):
    action: Literal["approve", "reject"]
    notes: Optional[str] = Field(None, max_length=2000)
    milestone_id: Optional[int] = None


# ============ Responses ============

class ListingSummary(BaseModel):
    id: int
    title: str
    region: str
    district: Optional[str] = None
    town: Optional[str] = None
    price_ghs: Decimal

    model_config = ConfigDict(from_attributes=True)


class MilestoneResponse(BaseModel):
    id: int
    transaction_id: int
    name: str
    description: Optional[str] = None
    amount_ghs: Decimal
    sort_order: int
    buyer_approved_at: Optional[datetime] = None
    seller_approved_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    requires_admin_approval: bool
    admin_approved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionResponse(BaseModel):
    id: int
    listing_id: int
    buyer_id: int
    seller_id: int
    offer_reference: Optional[str] = None
    status: TransactionStatus
    agreed_price_ghs: Decimal
    platform_fee_bps: int
    platform_fee_ghs: Decimal
    seller_net_ghs: Decimal
    verification_days_min: int
    verification_started_at: Optional[datetime] = None
    release_approved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    version: int

    model_config = ConfigDict(from_attributes=True)


class TransactionDetailResponse(TransactionResponse):
    """Full record for the transaction page"""
    listing: ListingSummary
    buyer: UserSummary
    seller: UserSummary
    milestones: List[MilestoneResponse] = []
    disputes: List[DisputeResponse] = []
    payments: List[PaymentResponse] = []


class FeeBreakdown(BaseModel):
    transaction_id: int
    agreed_price_ghs: Decimal
    platform_fee_bps: int
    platform_fee_ghs: Decimal
    seller_net_ghs: Decimal
    currency: str = "GHS"


class HighValueStatus(BaseModel):
    transaction_id: int
    is_high_value: bool
    threshold_ghs: Decimal
    release_approved: bool
    release_approved_at: Optional[datetime] = None
    release_approved_by: Optional[int] = None
    pending_milestone_ids: List[int] = []
