from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_
from typing import List, Optional, Tuple
import logging

from app.core.exceptions import InvalidState, NotFound, PermissionDenied
from app.modules.audit.services import AuditService
from app.modules.disputes.models import (
    Dispute, DisputeMessage, DisputeStatus, DisputeOutcome, MessageSenderType
)
from app.modules.notifications.services import EscrowNotifications
from app.modules.payments.gateway import PaymentGateway
from app.modules.transactions.models import ActorRole, Transaction, TransactionAction
from app.modules.transactions.services import TransactionService
from app.modules.users.models import User

logger = logging.getLogger(__name__)

_OUTCOME_ACTIONS = {
    DisputeOutcome.RELEASE: TransactionAction.RELEASE,
    DisputeOutcome.REFUND: TransactionAction.REFUND,
    DisputeOutcome.TERMINATE: TransactionAction.CLOSE,
}

_SENDER_TYPES = {
    ActorRole.BUYER: MessageSenderType.BUYER,
    ActorRole.SELLER: MessageSenderType.SELLER,
    ActorRole.ADMIN: MessageSenderType.ADMIN,
}


class DisputeService:
    """Disputes are opened by the lifecycle engine; this service reads and resolves them"""

    def __init__(self, db: AsyncSession, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway

    async def _get(self, dispute_id: int) -> Optional[Dispute]:
        result = await self.db.execute(
            select(Dispute).where(Dispute.id == dispute_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_disputes(
        self,
        user: User,
        status: Optional[DisputeStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Dispute]:
        query = select(Dispute)
        if not user.is_staff:
            query = query.join(Transaction, Transaction.id == Dispute.transaction_id).where(
                or_(Transaction.buyer_id == user.id, Transaction.seller_id == user.id)
            )
        if status:
            query = query.where(Dispute.status == status)
        result = await self.db.execute(query.order_by(Dispute.id.desc()).offset(skip).limit(limit))
        return list(result.scalars().all())

    async def _visible(self, dispute_id: int, user: User) -> Tuple[Dispute, Transaction]:
        dispute = await self._get(dispute_id)
        if dispute is None:
            raise NotFound("Dispute not found")
        # Same visibility as the owning transaction
        transaction = await TransactionService(self.db).get_for_user(dispute.transaction_id, user)
        return dispute, transaction

    async def get_dispute(self, dispute_id: int, user: User) -> Dispute:
        dispute, _ = await self._visible(dispute_id, user)
        return dispute

    # ============ Messages ============

    async def list_messages(self, dispute_id: int, user: User) -> List[DisputeMessage]:
        await self._visible(dispute_id, user)
        result = await self.db.execute(
            select(DisputeMessage)
            .where(DisputeMessage.dispute_id == dispute_id)
            .order_by(DisputeMessage.id)
        )
        return list(result.scalars().all())

    async def post_message(self, dispute_id: int, user: User, content: str, as_admin: bool = False) -> DisputeMessage:
        """
        Add a message to the dispute thread.

        Parties post as BUYER or SELLER; staff post through the admin routes
        as ADMIN. The thread is read-only once the dispute is settled.
        """
        dispute, transaction = await self._visible(dispute_id, user)
        role = TransactionService.actor_for(transaction, user, as_admin=as_admin).role
        if role == ActorRole.ADMIN and not as_admin:
            raise PermissionDenied("Staff post on disputes through the admin thread")
        if dispute.status != DisputeStatus.OPEN:
            raise InvalidState(f"Dispute is already {dispute.status.value.lower()}")

        message = DisputeMessage(
            dispute_id=dispute.id,
            sender_id=user.id,
            sender_type=_SENDER_TYPES[role],
            content=content,
        )
        self.db.add(message)
        await self.db.flush()
        AuditService.record(
            self.db, "dispute", dispute.id, "MESSAGE_POSTED", actor_user_id=user.id,
            diff={"message_id": message.id, "sender_type": message.sender_type.value},
        )
        await self.db.commit()
        logger.info(f"Message {message.id} posted on dispute {dispute.id} by {message.sender_type.value}")

        await EscrowNotifications.dispute_message(self.db, transaction, message)

        result = await self.db.execute(
            select(DisputeMessage)
            .where(DisputeMessage.id == message.id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    async def resolve(
        self,
        dispute_id: int,
        outcome: DisputeOutcome,
        notes: str,
        admin: User,
    ) -> Dispute:
        """
        Settle an open dispute by moving its transaction on: release to the
        seller, refund the buyer, or close administratively.
        """
        dispute = await self._get(dispute_id)
        if dispute is None:
            raise NotFound("Dispute not found")
        if dispute.status != DisputeStatus.OPEN:
            raise InvalidState(f"Dispute is already {dispute.status.value.lower()}")

        await TransactionService(self.db, self.gateway).apply_transition(
            dispute.transaction_id,
            admin,
            action=_OUTCOME_ACTIONS[outcome],
            reason=notes,
            as_admin=True,
        )
        logger.info(f"Dispute {dispute_id} resolved with {outcome.value} by user {admin.id}")
        return await self._get(dispute_id)
