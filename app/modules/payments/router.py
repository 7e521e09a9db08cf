from fastapi import APIRouter, Depends, Header, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
import json

from app.core.database import get_db
from app.core.dependencies import get_current_active_user
from app.core.exceptions import InvalidRequest
from app.modules.users.models import User
from app.modules.payments import schemas
from app.modules.payments.gateway import PaymentGateway, get_payment_gateway
from app.modules.payments.services import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=schemas.PaymentInitResponse, status_code=status.HTTP_201_CREATED)
async def initiate_payment(
    data: schemas.PaymentCreate,
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    current_user: User = Depends(get_current_active_user)
):
    """
    Start escrow funding. Returns the gateway checkout URL the buyer is
    redirected to; repeating the call while payment is pending returns the
    same URL.
    """
    payment = await PaymentService(db, gateway).initiate_funding(data, current_user)
    return schemas.PaymentInitResponse(
        payment_id=payment.id,
        payment_url=payment.authorization_url,
        reference=payment.provider_ref,
        status=payment.status,
    )


@router.get("/callback", response_model=schemas.PaymentConfirmation)
async def payment_callback(
    reference: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """Gateway redirect after checkout"""
    service = PaymentService(db, gateway)
    payment = await service.confirm(reference)
    transaction = await service.transactions.get_transaction(payment.transaction_id)
    return schemas.PaymentConfirmation(
        reference=payment.provider_ref,
        status=payment.status,
        transaction_id=payment.transaction_id,
        transaction_status=transaction.status.value,
    )


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    x_paystack_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    """Paystack event notification, authenticated by HMAC signature"""
    body = await request.body()
    try:
        event = json.loads(body or b"{}")
    except ValueError:
        raise InvalidRequest("Malformed webhook payload")

    result = await PaymentService(db, gateway).handle_webhook(body, x_paystack_signature, event)
    return {"status": result}
