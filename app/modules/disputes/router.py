from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.database import get_db
from app.core.dependencies import get_current_active_user
from app.modules.users.models import User
from app.modules.disputes.models import DisputeStatus
from app.modules.disputes.schemas import DisputeMessageCreate, DisputeMessageResponse, DisputeResponse
from app.modules.disputes.services import DisputeService

router = APIRouter(prefix="/disputes", tags=["disputes"])


@router.get("", response_model=List[DisputeResponse])
async def list_disputes(
    status_filter: Optional[DisputeStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Disputes on the caller's transactions (all disputes for staff)"""
    return await DisputeService(db).list_disputes(current_user, status=status_filter, skip=skip, limit=limit)


@router.get("/{dispute_id}", response_model=DisputeResponse)
async def get_dispute(
    dispute_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await DisputeService(db).get_dispute(dispute_id, current_user)


@router.get("/{dispute_id}/messages", response_model=List[DisputeMessageResponse])
async def list_dispute_messages(
    dispute_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Dispute thread, oldest first"""
    return await DisputeService(db).list_messages(dispute_id, current_user)


@router.post("/{dispute_id}/messages", response_model=DisputeMessageResponse, status_code=status.HTTP_201_CREATED)
async def post_dispute_message(
    dispute_id: int,
    body: DisputeMessageCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Buyer or seller adds to the thread while the dispute is open"""
    return await DisputeService(db).post_message(dispute_id, current_user, body.content)
