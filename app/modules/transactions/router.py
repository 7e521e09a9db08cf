from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from app.core.database import get_db
from app.core.dependencies import get_current_active_user, require_high_value_approver
from app.modules.users.models import User
from app.modules.payments.gateway import PaymentGateway, get_payment_gateway
from app.modules.transactions import schemas
from app.modules.transactions.models import ActorRole, TransactionStatus
from app.modules.transactions.services import TransactionService
from app.core.exceptions import InvalidRequest

router = APIRouter(prefix="/transactions", tags=["transactions"])


@router.post("", response_model=schemas.TransactionDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_transaction(
    data: schemas.TransactionCreate,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """
    Open escrow for a listing.

    - Caller must be the buyer or the listing's seller
    - Fee is fixed at creation from the platform fee rate
    - High-value transactions require admin sign-off before the seller can release
    """
    return await TransactionService(db).create_transaction(data, current_user)


@router.get("", response_model=List[schemas.TransactionResponse])
async def list_my_transactions(
    role: Optional[ActorRole] = Query(None, description="buyer or seller"),
    status_filter: Optional[TransactionStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Transactions where the caller is buyer or seller"""
    return await TransactionService(db).list_user_transactions(
        current_user, role=role, status=status_filter, skip=skip, limit=limit
    )


@router.get("/{transaction_id}", response_model=schemas.TransactionDetailResponse)
async def get_transaction(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await TransactionService(db).get_for_user(transaction_id, current_user)


@router.put("/{transaction_id}", response_model=schemas.TransactionDetailResponse)
async def update_transaction(
    transaction_id: int,
    update: schemas.TransactionUpdate,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_active_user)
):
    """
    Request a lifecycle transition, either as ``{"action": ...}`` or as the
    target ``{"status": ...}``.
    """
    return await TransactionService(db, gateway).apply_transition(
        transaction_id,
        current_user,
        action=update.action,
        target_status=update.status,
        reason=update.reason,
    )


@router.get("/{transaction_id}/fees", response_model=schemas.FeeBreakdown)
async def get_fee_breakdown(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    return await TransactionService(db).fee_breakdown(transaction_id, current_user)


@router.put("/{transaction_id}/milestones/{milestone_id}", response_model=schemas.MilestoneResponse)
async def approve_milestone(
    transaction_id: int,
    milestone_id: int,
    body: schemas.MilestoneApproval,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    """Record the caller's approval of a milestone"""
    if not body.approve:
        raise InvalidRequest("Only approval is supported; send {\"approve\": true}")
    return await TransactionService(db).approve_milestone(transaction_id, milestone_id, current_user)


@router.get("/{transaction_id}/high-value-approval", response_model=schemas.HighValueStatus)
async def get_high_value_status(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    current_user: User = Depends(get_current_active_user)
):
    service = TransactionService(db)
    transaction = await service.get_for_user(transaction_id, current_user)
    return service.high_value_status(transaction)


@router.post("/{transaction_id}/high-value-approval", response_model=schemas.HighValueStatus)
async def decide_high_value(
    transaction_id: int,
    decision: schemas.HighValueDecision,
    db: AsyncSession = Depends(get_db),
    approver: User = Depends(require_high_value_approver)
):
    """Approve or reject release of a high-value escrow (admin/finance only)"""
    return await TransactionService(db).decide_high_value(transaction_id, decision, approver)
