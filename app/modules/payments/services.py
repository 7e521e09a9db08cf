from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Optional
import logging

from app.core.exceptions import InvalidRequest, IllegalTransition, NotFound, PermissionDenied
from app.modules.audit.services import AuditService
from app.modules.payments.gateway import PaymentGateway
from app.modules.payments.models import Payment, PaymentStatus, PaymentType
from app.modules.payments.schemas import PaymentCreate
from app.modules.transactions.models import ActorRole, Transaction, TransactionAction, TransactionStatus
from app.modules.transactions.services import TransactionService
from app.modules.users.models import User

logger = logging.getLogger(__name__)


class PaymentService:
    """
    Escrow funding through the payment gateway.
    Funding is started by the buyer and confirmed by the gateway callback or
    webhook; both confirmation paths are idempotent.
    """

    def __init__(self, db: AsyncSession, gateway: PaymentGateway):
        self.db = db
        self.gateway = gateway
        self.transactions = TransactionService(db, gateway)

    async def get_by_reference(self, reference: str, lock: bool = False) -> Optional[Payment]:
        query = (
            select(Payment)
            .where(Payment.provider_ref == reference)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    def _pending_funding(transaction: Transaction) -> Optional[Payment]:
        return next(
            (p for p in transaction.payments
             if p.type == PaymentType.TRANSACTION_FUNDING and p.status == PaymentStatus.PENDING),
            None,
        )

    async def initiate_funding(self, data: PaymentCreate, user: User) -> Payment:
        """
        Start (or resume) the buyer's escrow payment.

        A transaction already waiting on a pending payment returns that
        payment, so a double-submitted form cannot open a second checkout.
        """
        if data.type != PaymentType.TRANSACTION_FUNDING:
            raise InvalidRequest("Only TRANSACTION_FUNDING payments can be initiated")

        transaction = await self.transactions.get_for_user(data.transaction_id, user)
        if self.transactions.actor_for(transaction, user).role != ActorRole.BUYER:
            raise PermissionDenied("Only the buyer can fund escrow")
        if data.amount != transaction.agreed_price_ghs:
            raise InvalidRequest(
                f"Amount must equal the agreed price of GHS {transaction.agreed_price_ghs}"
            )

        if transaction.status == TransactionStatus.ESCROW_REQUESTED:
            pending = self._pending_funding(transaction)
            if pending is not None:
                logger.info(f"Returning existing payment {pending.provider_ref} for transaction {transaction.id}")
                return pending
            # Previous attempt failed at the gateway
            transaction = await self.transactions.retry_funding(transaction.id, user)
            return self._pending_funding(transaction)

        if transaction.status != TransactionStatus.CREATED:
            raise IllegalTransition(
                f"Cannot fund a transaction in status {transaction.status.value}",
                transaction.status.value,
            )

        transaction = await self.transactions.apply_transition(
            transaction.id, user, action=TransactionAction.FUND
        )
        payment = self._pending_funding(transaction)
        logger.info(f"Funding payment {payment.provider_ref} opened for transaction {transaction.id}")
        return payment

    async def confirm(self, reference: str) -> Payment:
        """
        Verify a funding payment with the gateway and, when it succeeded,
        move the transaction into escrow.

        Only a SUCCESS payment is final. A charge still in progress leaves the
        payment PENDING, and a FAILED payment is verified again, so a late
        ``charge.success`` still lands the funds in escrow.
        """
        payment = await self.get_by_reference(reference, lock=True)
        if payment is None or payment.type != PaymentType.TRANSACTION_FUNDING:
            raise NotFound("Payment not found")
        if payment.status == PaymentStatus.SUCCESS:
            return payment

        result = await self.gateway.verify_payment(reference)

        if not result.successful:
            if not result.failed:
                logger.info(f"Payment {reference} still in progress at the gateway ({result.gateway_status})")
                await self.db.commit()
                return payment
            if payment.status != PaymentStatus.FAILED:
                payment.status = PaymentStatus.FAILED
                payment.failure_reason = f"Gateway status: {result.gateway_status}"
                AuditService.record(
                    self.db, "payment", payment.id, "FAILED", diff={"gateway_status": result.gateway_status}
                )
                logger.warning(f"Payment {reference} failed at the gateway ({result.gateway_status})")
            await self.db.commit()
            return payment

        if result.amount_ghs < payment.amount_ghs:
            if payment.status != PaymentStatus.FAILED:
                payment.status = PaymentStatus.FAILED
                payment.failure_reason = f"Paid GHS {result.amount_ghs}, expected GHS {payment.amount_ghs}"
                AuditService.record(
                    self.db, "payment", payment.id, "AMOUNT_MISMATCH",
                    diff={"paid": str(result.amount_ghs), "expected": str(payment.amount_ghs)},
                )
                logger.error(f"Payment {reference} underpaid: {payment.failure_reason}")
            await self.db.commit()
            return payment

        previous = payment.status
        payment.status = PaymentStatus.SUCCESS
        payment.failure_reason = None
        AuditService.record(
            self.db, "payment", payment.id, "SUCCESS",
            diff={"amount_ghs": str(payment.amount_ghs), "previous_status": previous.value},
        )
        await self.db.flush()

        transaction = await self.transactions.get_transaction(payment.transaction_id)
        if transaction.status == TransactionStatus.ESCROW_REQUESTED:
            await self.transactions.confirm_funding(transaction.id, reference)
        else:
            # Money arrived after staff moved the transaction on; needs manual refund
            logger.error(
                f"Payment {reference} settled for transaction {transaction.id} "
                f"in status {transaction.status.value}"
            )
            await self.db.commit()

        return await self.get_by_reference(reference)

    async def handle_webhook(self, body: bytes, signature: Optional[str], event: dict) -> str:
        if not self.gateway.verify_webhook_signature(body, signature):
            raise PermissionDenied("Invalid webhook signature")

        if event.get("event") != "charge.success":
            return "ignored"

        reference = (event.get("data") or {}).get("reference")
        if not reference or await self.get_by_reference(reference) is None:
            logger.info(f"Webhook for unknown reference {reference!r} ignored")
            return "ignored"

        await self.confirm(reference)
        return "ok"
