from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Optional, List, Dict, Any

from app.modules.audit.models import AuditActorType
from app.modules.transactions.schemas import TransactionResponse


class TransactionPage(BaseModel):
    transactions: List[TransactionResponse]
    total: int
    page: int
    page_size: int
    total_pages: int


class AuditLogResponse(BaseModel):
    id: int
    entity_type: str
    entity_id: int
    action: str
    diff: Optional[Dict[str, Any]] = None
    actor_type: AuditActorType
    actor_user_id: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
