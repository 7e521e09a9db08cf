"""
Audit trail browsing.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.database import get_db
from app.modules.audit.services import AuditService
from app.modules.admin.schemas import AuditLogResponse

router = APIRouter(prefix="/audit", tags=["admin-audit"])


@router.get("", response_model=List[AuditLogResponse])
async def list_audit_entries(
    entity_type: Optional[str] = Query(None, description="transaction, milestone, dispute or payment"),
    entity_id: Optional[int] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    return await AuditService.list_entries(db, entity_type=entity_type, entity_id=entity_id, skip=skip, limit=limit)
