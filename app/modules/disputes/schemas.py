from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from typing import Optional

from app.modules.disputes.models import DisputeStatus, DisputeOutcome, MessageSenderType


class DisputeResponse(BaseModel):
    id: int
    transaction_id: int
    raised_by_id: int
    status: DisputeStatus
    reason: Optional[str] = None
    resolution_outcome: Optional[DisputeOutcome] = None
    resolution_notes: Optional[str] = None
    resolved_by_id: Optional[int] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class DisputeResolveRequest(BaseModel):
    """Admin decision on an open dispute"""
    outcome: DisputeOutcome
    resolution_notes: str = Field(..., min_length=3, max_length=2000)


class DisputeMessageCreate(BaseModel):
    content: str = Field(..., min_length=1, max_length=2000)

    model_config = ConfigDict(str_strip_whitespace=True)


class DisputeMessageResponse(BaseModel):
    id: int
    dispute_id: int
    sender_id: int
    sender_type: MessageSenderType
    sender_name: Optional[str] = None
    content: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
