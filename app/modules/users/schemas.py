from pydantic import BaseModel, ConfigDict
from typing import Optional
from datetime import datetime

from app.modules.users.models import UserRole, KYCTier


class UserSummary(BaseModel):
    """Party summary embedded in transaction payloads"""
    id: int
    full_name: str
    phone: str

    model_config = ConfigDict(from_attributes=True)


class UserResponse(UserSummary):
    email: Optional[str] = None
    role: UserRole
    kyc_tier: KYCTier
    is_active: bool
    created_at: datetime
