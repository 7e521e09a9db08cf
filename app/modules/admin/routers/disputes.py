"""
Admin dispute resolution and staff messages.
"""
from fastapi import APIRouter, Depends, status
from typing import List
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import require_staff
from app.modules.users.models import User
from app.modules.payments.gateway import PaymentGateway, get_payment_gateway
from app.modules.disputes.schemas import (
    DisputeMessageCreate, DisputeMessageResponse, DisputeResolveRequest, DisputeResponse
)
from app.modules.disputes.services import DisputeService

router = APIRouter(prefix="/disputes", tags=["admin-disputes"])


@router.post("/{dispute_id}/resolve", response_model=DisputeResponse)
async def resolve_dispute(
    dispute_id: int,
    body: DisputeResolveRequest,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    admin: User = Depends(require_staff)
):
    """RELEASE pays the seller, REFUND returns funds to the buyer, TERMINATE closes the transaction"""
    return await DisputeService(db, gateway).resolve(dispute_id, body.outcome, body.resolution_notes, admin)


@router.get("/{dispute_id}/messages", response_model=List[DisputeMessageResponse])
async def list_dispute_messages(
    dispute_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_staff)
):
    return await DisputeService(db).list_messages(dispute_id, admin)


@router.post("/{dispute_id}/messages", response_model=DisputeMessageResponse, status_code=status.HTTP_201_CREATED)
async def post_dispute_message(
    dispute_id: int,
    body: DisputeMessageCreate,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_staff)
):
    """Post on the thread as platform staff"""
    return await DisputeService(db).post_message(dispute_id, admin, body.content, as_admin=True)
