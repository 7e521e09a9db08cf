from pydantic import BaseModel, ConfigDict, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional

from app.modules.payments.models import PaymentType, PaymentStatus, PaymentProvider


class PaymentResponse(BaseModel):
    id: int
    transaction_id: int
    provider: PaymentProvider
    type: PaymentType
    status: PaymentStatus
    amount_ghs: Decimal
    currency: str
    provider_ref: str
    authorization_url: Optional[str] = None
    failure_reason: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentCreate(BaseModel):
    """Buyer request to fund escrow"""
    transaction_id: int = Field(..., alias="transactionId")
    type: PaymentType
    amount: Decimal = Field(..., gt=0, decimal_places=2)

    model_config = ConfigDict(populate_by_name=True)


class PaymentInitResponse(BaseModel):
    """Where to send the buyer to complete funding"""
    payment_id: int = Field(..., serialization_alias="paymentId")
    payment_url: str = Field(..., serialization_alias="paymentUrl")
    reference: str
    status: PaymentStatus

    model_config = ConfigDict(populate_by_name=True)


class PaymentConfirmation(BaseModel):
    reference: str
    status: PaymentStatus
    transaction_id: int = Field(..., serialization_alias="transactionId")
    transaction_status: str = Field(..., serialization_alias="transactionStatus")

    model_config = ConfigDict(populate_by_name=True)
