"""
Admin transaction management endpoints.
"""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from typing import Optional

from app.core.database import get_db
from app.core.dependencies import require_staff
from app.modules.users.models import User
from app.modules.payments.gateway import PaymentGateway, get_payment_gateway
from app.modules.transactions.models import Transaction, TransactionStatus
from app.modules.transactions.schemas import AdminTransactionAction, TransactionDetailResponse
from app.modules.transactions.services import TransactionService
from app.modules.admin.schemas import TransactionPage

router = APIRouter(prefix="/transactions", tags=["admin-transactions"])


@router.get("", response_model=TransactionPage)
async def list_transactions(
    status: Optional[TransactionStatus] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    """List all transactions with filtering"""
    query = select(Transaction)
    if status:
        query = query.where(Transaction.status == status)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    transactions = await TransactionService(db).list_transactions(
        status=status, skip=(page - 1) * page_size, limit=page_size
    )

    return {
        "transactions": transactions,
        "total": total,
        "page": page,
        "page_size": page_size,
        "total_pages": (total + page_size - 1) // page_size
    }


@router.get("/{transaction_id}", response_model=TransactionDetailResponse)
async def get_transaction(
    transaction_id: int,
    db: AsyncSession = Depends(get_db),
    admin: User = Depends(require_staff)
):
    return await TransactionService(db).get_for_user(transaction_id, admin)


@router.put("/{transaction_id}", response_model=TransactionDetailResponse)
async def act_on_transaction(
    transaction_id: int,
    body: AdminTransactionAction,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    admin: User = Depends(require_staff)
):
    """
    Apply a transition as the platform, whatever the caller's relation to the
    transaction (release, refund, close, reinstate).
    """
    return await TransactionService(db, gateway).apply_transition(
        transaction_id, admin, action=body.action, reason=body.reason, as_admin=True
    )
