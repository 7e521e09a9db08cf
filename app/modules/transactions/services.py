"""
Escrow lifecycle engine.

Every mutating operation has the same shape: lock the transaction row, check
the actor and then the current status, call the payment gateway when money
moves, mutate, apply the system post-conditions, audit, commit. Notifications
are sent only after the commit.
"""
from datetime import datetime, timezone
from decimal import Decimal, ROUND_DOWN
from typing import List, Optional, Tuple
import logging
import uuid

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from app.core.config import settings
from app.core.exceptions import (
    AlreadyApproved, ConcurrentModification, ExternalServiceFailure, IllegalTransition,
    InvalidRequest, InvalidState, NotFound, PermissionDenied
)
from app.modules.audit.services import AuditService
from app.modules.disputes.models import Dispute, DisputeStatus, DisputeOutcome
from app.modules.listings.models import Listing, ListingStatus
from app.modules.notifications.services import EscrowNotifications
from app.modules.payments.gateway import PaymentGateway
from app.modules.payments.models import Payment, PaymentStatus, PaymentType
from app.modules.transactions.lifecycle import (
    ActorContext, SYSTEM_ACTOR, action_for_status, assert_legal, resolve_transition
)
from app.modules.transactions.models import (
    ActorRole, EscrowMilestone, Transaction, TransactionAction, TransactionStatus, TERMINAL_STATUSES
)
from app.modules.transactions.schemas import MilestoneCreate, TransactionCreate, HighValueDecision
from app.modules.users.models import User

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

DEFAULT_MILESTONES = (
    ("Initial Deposit", "Buyer funds escrow for the agreed price"),
    ("Document Verification", "Buyer confirms the land title, site plan and search report"),
    ("Final Transfer", "Ownership transfer registered with the Lands Commission"),
)

# Status reached -> notification event
_STATUS_EVENTS = {
    TransactionStatus.FUNDED: "funded",
    TransactionStatus.DISPUTED: "disputed",
    TransactionStatus.READY_TO_RELEASE: "ready_to_release",
    TransactionStatus.RELEASED: "released",
    TransactionStatus.REFUNDED: "refunded",
    TransactionStatus.CLOSED: "closed",
}

_DISPUTE_OUTCOMES = {
    TransactionAction.RELEASE: DisputeOutcome.RELEASE,
    TransactionAction.REFUND: DisputeOutcome.REFUND,
    TransactionAction.CLOSE: DisputeOutcome.TERMINATE,
}


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def calculate_fee(agreed_price_ghs: Decimal, fee_bps: int) -> Tuple[Decimal, Decimal]:
    """Platform fee rounded down to the pesewa, and what the seller receives"""
    fee = (Decimal(agreed_price_ghs) * fee_bps / Decimal(10000)).quantize(CENT, rounding=ROUND_DOWN)
    return fee, Decimal(agreed_price_ghs) - fee


def is_high_value(transaction: Transaction) -> bool:
    return Decimal(transaction.agreed_price_ghs) >= Decimal(settings.HIGH_VALUE_THRESHOLD_GHS)


class TransactionService:
    def __init__(self, db: AsyncSession, gateway: Optional[PaymentGateway] = None):
        self.db = db
        self.gateway = gateway
        self._events: List[str] = []

    # ============ Queries ============

    async def get_transaction(self, transaction_id: int, lock: bool = False) -> Optional[Transaction]:
        query = (
            select(Transaction)
            .where(Transaction.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            query = query.with_for_update()
        result = await self.db.execute(query)
        return result.scalar_one_or_none()

    async def _get_or_404(self, transaction_id: int, lock: bool = False) -> Transaction:
        transaction = await self.get_transaction(transaction_id, lock=lock)
        if transaction is None:
            raise NotFound("Transaction not found")
        return transaction

    @staticmethod
    def actor_for(transaction: Transaction, user: User, as_admin: bool = False) -> ActorContext:
        """
        Role of ``user`` on this transaction. Users who are neither party nor
        staff cannot see it at all.
        """
        if as_admin:
            if not user.is_staff:
                raise PermissionDenied("Staff access required")
            return ActorContext(user_id=user.id, role=ActorRole.ADMIN)
        if user.id == transaction.buyer_id:
            return ActorContext(user_id=user.id, role=ActorRole.BUYER)
        if user.id == transaction.seller_id:
            return ActorContext(user_id=user.id, role=ActorRole.SELLER)
        if user.is_staff:
            return ActorContext(user_id=user.id, role=ActorRole.ADMIN)
        raise NotFound("Transaction not found")

    async def get_for_user(self, transaction_id: int, user: User) -> Transaction:
        transaction = await self._get_or_404(transaction_id)
        self.actor_for(transaction, user)
        return transaction

    async def list_user_transactions(
        self,
        user: User,
        role: Optional[ActorRole] = None,
        status: Optional[TransactionStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Transaction]:
        if role == ActorRole.BUYER:
            query = select(Transaction).where(Transaction.buyer_id == user.id)
        elif role == ActorRole.SELLER:
            query = select(Transaction).where(Transaction.seller_id == user.id)
        else:
            query = select(Transaction).where(
                or_(Transaction.buyer_id == user.id, Transaction.seller_id == user.id)
            )
        if status:
            query = query.where(Transaction.status == status)
        result = await self.db.execute(query.order_by(Transaction.id.desc()).offset(skip).limit(limit))
        return list(result.scalars().all())

    async def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> List[Transaction]:
        """All transactions, for staff"""
        query = select(Transaction)
        if status:
            query = query.where(Transaction.status == status)
        result = await self.db.execute(query.order_by(Transaction.id.desc()).offset(skip).limit(limit))
        return list(result.scalars().all())

    async def fee_breakdown(self, transaction_id: int, user: User) -> dict:
        transaction = await self.get_for_user(transaction_id, user)
        return {
            "transaction_id": transaction.id,
            "agreed_price_ghs": transaction.agreed_price_ghs,
            "platform_fee_bps": transaction.platform_fee_bps,
            "platform_fee_ghs": transaction.platform_fee_ghs,
            "seller_net_ghs": transaction.seller_net_ghs,
        }

    # ============ Creation ============

    async def create_transaction(self, data: TransactionCreate, user: User) -> Transaction:
        listing = await self.db.get(Listing, data.listing_id)
        if listing is None or listing.status == ListingStatus.SUSPENDED:
            raise NotFound("Listing not found")
        if listing.status == ListingStatus.SOLD:
            raise InvalidRequest("Listing has already been sold")

        seller_id = listing.seller_id
        buyer_id = data.buyer_id if data.buyer_id is not None else user.id
        if user.id not in (buyer_id, seller_id):
            raise PermissionDenied("Only the buyer or the seller can open escrow")
        if buyer_id == seller_id:
            raise InvalidRequest("Buyer and seller must be different users")

        buyer = await self.db.get(User, buyer_id)
        if buyer is None or not buyer.is_active:
            raise NotFound("Buyer not found")

        price = data.agreed_price_ghs.quantize(CENT)
        fee, net = calculate_fee(price, settings.PLATFORM_FEE_BPS)

        transaction = Transaction(
            listing_id=listing.id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            offer_reference=data.offer_reference,
            status=TransactionStatus.CREATED,
            agreed_price_ghs=price,
            platform_fee_bps=settings.PLATFORM_FEE_BPS,
            platform_fee_ghs=fee,
            seller_net_ghs=net,
            verification_days_min=settings.VERIFICATION_DAYS_MIN,
            milestones=self._build_milestones(data.milestones, price),
        )
        if is_high_value(transaction):
            transaction.milestones[-1].requires_admin_approval = True

        self.db.add(transaction)
        await self.db.flush()

        AuditService.record(
            self.db, "transaction", transaction.id, "CREATED",
            actor_user_id=user.id,
            diff={"status": TransactionStatus.CREATED.value, "agreed_price_ghs": str(price), "listing_id": listing.id},
        )
        await self.db.commit()

        logger.info(f"Transaction {transaction.id} created for listing {listing.id} at GHS {price}")
        return await self._get_or_404(transaction.id)

    @staticmethod
    def _build_milestones(
        requested: Optional[List[MilestoneCreate]],
        price: Decimal,
    ) -> List[EscrowMilestone]:
        if not requested:
            amounts = [price] + [Decimal("0.00")] * (len(DEFAULT_MILESTONES) - 1)
            return [
                EscrowMilestone(name=name, description=description, amount_ghs=amount, sort_order=order)
                for order, ((name, description), amount) in enumerate(zip(DEFAULT_MILESTONES, amounts), start=1)
            ]

        total = sum((m.amount_ghs for m in requested), Decimal("0"))
        if total > price:
            raise InvalidRequest(f"Milestone amounts (GHS {total}) exceed the agreed price (GHS {price})")

        return [
            EscrowMilestone(
                name=m.name,
                description=m.description,
                amount_ghs=m.amount_ghs.quantize(CENT),
                sort_order=order,
            )
            for order, m in enumerate(requested, start=1)
        ]

    # ============ Lifecycle ============

    async def apply_transition(
        self,
        transaction_id: int,
        user: User,
        action: Optional[TransactionAction] = None,
        target_status: Optional[TransactionStatus] = None,
        reason: Optional[str] = None,
        as_admin: bool = False,
    ) -> Transaction:
        """
        Apply one client-requested transition.

        ``target_status`` is the status-form of a request and is mapped to the
        action producing it. Gateway calls happen before any local change, so
        a gateway failure leaves the transaction untouched.
        """
        transaction = await self._get_or_404(transaction_id, lock=True)
        actor = self.actor_for(transaction, user, as_admin=as_admin)
        source = transaction.status
        if action is None:
            action = action_for_status(target_status, source)

        target = resolve_transition(action, actor, source)

        if action == TransactionAction.RELEASE and actor.role == ActorRole.SELLER:
            self._check_release_approval(transaction)

        if action == TransactionAction.FUND:
            await self._open_funding_payment(transaction)
        elif action == TransactionAction.RELEASE:
            await self._pay_out_seller(transaction)
        elif action == TransactionAction.REFUND:
            await self._refund_buyer(transaction)

        try:
            if action == TransactionAction.DISPUTE:
                transaction.disputes.append(Dispute(
                    raised_by_id=actor.user_id,
                    status=DisputeStatus.OPEN,
                    reason=reason,
                ))
            if source == TransactionStatus.DISPUTED:
                self._settle_disputes(transaction, action, actor, reason)

            self._set_status(transaction, target, actor, action.value, reason)
            await self._apply_post_conditions(transaction)
            await self.db.flush()
        except StaleDataError:
            await self._conflict(transaction_id)

        await self._commit(transaction_id)
        return await self._after_commit(transaction_id)

    async def retry_funding(self, transaction_id: int, user: User) -> Transaction:
        """New checkout for a buyer whose previous funding payment failed"""
        transaction = await self._get_or_404(transaction_id, lock=True)
        actor = self.actor_for(transaction, user)
        if actor.role != ActorRole.BUYER:
            raise PermissionDenied("Only the buyer can fund escrow")
        if transaction.status != TransactionStatus.ESCROW_REQUESTED:
            raise IllegalTransition(
                f"Cannot fund a transaction in status {transaction.status.value}",
                transaction.status.value,
            )

        payment = await self._open_funding_payment(transaction)
        await self.db.flush()
        AuditService.record(
            self.db, "transaction", transaction.id, "FUNDING_RETRIED",
            actor_user_id=actor.user_id, diff={"reference": payment.provider_ref},
        )
        await self._commit(transaction_id)
        return await self._get_or_404(transaction_id)

    async def confirm_funding(self, transaction_id: int, payment_reference: str) -> Transaction:
        """System transition once the gateway confirms the buyer's payment"""
        transaction = await self._get_or_404(transaction_id, lock=True)
        if transaction.status != TransactionStatus.ESCROW_REQUESTED:
            raise IllegalTransition(
                f"Cannot confirm funding for a transaction in status {transaction.status.value}",
                transaction.status.value,
            )
        try:
            self._set_status(
                transaction, TransactionStatus.FUNDED, SYSTEM_ACTOR,
                "funding_confirmed", f"payment {payment_reference}",
            )
            await self._apply_post_conditions(transaction)
            await self.db.flush()
        except StaleDataError:
            await self._conflict(transaction_id)

        await self._commit(transaction_id)
        return await self._after_commit(transaction_id)

    async def approve_milestone(self, transaction_id: int, milestone_id: int, user: User) -> EscrowMilestone:
        """
        Record the caller's approval of one milestone. The milestone completes
        once both parties have approved; completing the last one makes the
        transaction ready to release.
        """
        transaction = await self._get_or_404(transaction_id, lock=True)
        actor = self.actor_for(transaction, user)

        milestone = next((m for m in transaction.milestones if m.id == milestone_id), None)
        if milestone is None:
            raise NotFound("Milestone not found")
        if actor.role not in (ActorRole.BUYER, ActorRole.SELLER):
            raise PermissionDenied("Only the buyer or the seller can approve milestones")
        if transaction.status != TransactionStatus.VERIFICATION_PERIOD:
            raise InvalidState(
                "Milestones can only be approved during the verification period",
                transaction.status.value,
            )
        if milestone.completed_at is not None:
            raise AlreadyApproved("Milestone is already completed")

        field = "buyer_approved_at" if actor.role == ActorRole.BUYER else "seller_approved_at"
        if getattr(milestone, field) is not None:
            raise AlreadyApproved(f"Milestone already approved by the {actor.role.value}")

        try:
            now = utcnow()
            setattr(milestone, field, now)
            if milestone.buyer_approved_at is not None and milestone.seller_approved_at is not None:
                milestone.completed_at = now

            AuditService.record(
                self.db, "milestone", milestone.id, "APPROVED",
                actor_user_id=actor.user_id,
                diff={
                    "transaction_id": transaction.id,
                    "role": actor.role.value,
                    "completed": milestone.completed_at is not None,
                },
            )
            await self.db.flush()
            await self._apply_post_conditions(transaction)
            await self.db.flush()
        except StaleDataError:
            await self._conflict(transaction_id)

        await self._commit(transaction_id)
        await self._after_commit(transaction_id)

        result = await self.db.execute(
            select(EscrowMilestone)
            .where(EscrowMilestone.id == milestone_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()

    # ============ High-value approval ============

    def high_value_status(self, transaction: Transaction) -> dict:
        return {
            "transaction_id": transaction.id,
            "is_high_value": is_high_value(transaction),
            "threshold_ghs": Decimal(settings.HIGH_VALUE_THRESHOLD_GHS),
            "release_approved": transaction.release_approved_at is not None,
            "release_approved_at": transaction.release_approved_at,
            "release_approved_by": transaction.release_approved_by,
            "pending_milestone_ids": [
                m.id for m in transaction.milestones
                if m.requires_admin_approval and m.admin_approved_at is None
            ],
        }

    async def decide_high_value(self, transaction_id: int, decision: HighValueDecision, approver: User) -> dict:
        """Admin/finance sign-off required before a seller can release a high-value escrow"""
        transaction = await self._get_or_404(transaction_id, lock=True)
        if not is_high_value(transaction):
            raise InvalidRequest("Transaction is below the high-value threshold")
        if transaction.is_terminal:
            raise InvalidState("Transaction is already settled", transaction.status.value)

        approve = decision.action == "approve"
        now = utcnow()

        try:
            if decision.milestone_id is not None:
                milestone = next((m for m in transaction.milestones if m.id == decision.milestone_id), None)
                if milestone is None:
                    raise NotFound("Milestone not found")
                milestone.admin_approved_at = now if approve else None
            elif transaction.status != TransactionStatus.READY_TO_RELEASE:
                raise InvalidState(
                    f"Release can only be {'approved' if approve else 'rejected'} once the transaction is ready to release",
                    transaction.status.value,
                )
            elif approve:
                for milestone in transaction.milestones:
                    if milestone.requires_admin_approval and milestone.admin_approved_at is None:
                        milestone.admin_approved_at = now
                transaction.release_approved_at = now
                transaction.release_approved_by = approver.id
            else:
                # Funds stay in escrow under an open dispute until staff refund, release or reinstate
                transaction.release_approved_at = None
                transaction.release_approved_by = None
                reason = f"High-value release rejected: {decision.notes or 'No reason provided'}"
                transaction.disputes.append(Dispute(
                    raised_by_id=approver.id,
                    status=DisputeStatus.OPEN,
                    reason=reason,
                ))
                self._set_status(
                    transaction, TransactionStatus.DISPUTED,
                    ActorContext(user_id=approver.id, role=ActorRole.ADMIN),
                    "high_value_rejected", reason,
                )

            AuditService.record(
                self.db, "transaction", transaction.id,
                "HIGH_VALUE_APPROVED" if approve else "HIGH_VALUE_REJECTED",
                actor_user_id=approver.id,
                diff={"milestone_id": decision.milestone_id, "notes": decision.notes},
            )
            await self.db.flush()
        except StaleDataError:
            await self._conflict(transaction_id)

        await self._commit(transaction_id)
        logger.info(f"High-value {decision.action} on transaction {transaction_id} by user {approver.id}")
        return self.high_value_status(await self._after_commit(transaction_id))

    @staticmethod
    def _check_release_approval(transaction: Transaction) -> None:
        if is_high_value(transaction) and transaction.release_approved_at is None:
            raise PermissionDenied("High-value release requires admin or finance approval first")

    # ============ Internals ============

    def _set_status(
        self,
        transaction: Transaction,
        target: TransactionStatus,
        actor: ActorContext,
        action: str,
        reason: Optional[str] = None,
    ) -> None:
        source = transaction.status
        assert_legal(source, target)

        now = utcnow()
        transaction.status = target
        if target in TERMINAL_STATUSES:
            transaction.closed_at = now
        if target == TransactionStatus.VERIFICATION_PERIOD and transaction.verification_started_at is None:
            transaction.verification_started_at = now

        AuditService.record(
            self.db, "transaction", transaction.id, "STATUS_CHANGED",
            actor_user_id=actor.user_id,
            diff={"from": source.value, "to": target.value, "action": action, "reason": reason},
        )
        logger.info(
            f"Transaction {transaction.id}: {source.value} -> {target.value} "
            f"({action} by {actor.role.value} {actor.user_id or ''})".rstrip()
        )

        if source == TransactionStatus.DISPUTED and target == TransactionStatus.VERIFICATION_PERIOD:
            self._events.append("reinstated")
        elif target in _STATUS_EVENTS:
            self._events.append(_STATUS_EVENTS[target])

    async def _apply_post_conditions(self, transaction: Transaction) -> None:
        """System transitions, evaluated inside the same DB transaction"""
        if transaction.status == TransactionStatus.FUNDED:
            self._set_status(transaction, TransactionStatus.VERIFICATION_PERIOD, SYSTEM_ACTOR, "verification_started")

        if transaction.status == TransactionStatus.VERIFICATION_PERIOD:
            await self.db.flush()
            result = await self.db.execute(
                select(EscrowMilestone)
                .where(EscrowMilestone.transaction_id == transaction.id)
                .execution_options(populate_existing=True)
            )
            milestones = list(result.scalars().all())
            if all(m.completed_at is not None for m in milestones):
                self._set_status(
                    transaction, TransactionStatus.READY_TO_RELEASE, SYSTEM_ACTOR, "milestones_completed"
                )

    def _settle_disputes(
        self,
        transaction: Transaction,
        action: TransactionAction,
        actor: ActorContext,
        notes: Optional[str],
    ) -> None:
        outcome = _DISPUTE_OUTCOMES.get(action)
        now = utcnow()
        for dispute in transaction.disputes:
            if dispute.status != DisputeStatus.OPEN:
                continue
            dispute.status = DisputeStatus.RESOLVED if outcome else DisputeStatus.DISMISSED
            dispute.resolution_outcome = outcome
            dispute.resolution_notes = notes
            dispute.resolved_by_id = actor.user_id
            dispute.resolved_at = now
            AuditService.record(
                self.db, "dispute", dispute.id, dispute.status.value,
                actor_user_id=actor.user_id,
                diff={"transaction_id": transaction.id, "outcome": outcome.value if outcome else None},
            )

    def _require_gateway(self) -> PaymentGateway:
        if self.gateway is None:
            raise ExternalServiceFailure("Payment gateway not available")
        return self.gateway

    async def _open_funding_payment(self, transaction: Transaction) -> Payment:
        gateway = self._require_gateway()
        buyer = transaction.buyer
        if not buyer.email:
            raise InvalidRequest("An email address is required to fund escrow")

        reference = f"LE-{transaction.id}-{uuid.uuid4().hex[:10].upper()}"
        checkout = await gateway.initialize_payment(
            email=buyer.email,
            amount_ghs=transaction.agreed_price_ghs,
            reference=reference,
            metadata={"transaction_id": transaction.id, "type": PaymentType.TRANSACTION_FUNDING.value},
        )
        payment = Payment(
            payer_user_id=transaction.buyer_id,
            type=PaymentType.TRANSACTION_FUNDING,
            status=PaymentStatus.PENDING,
            amount_ghs=transaction.agreed_price_ghs,
            provider_ref=checkout.reference,
            authorization_url=checkout.authorization_url,
        )
        transaction.payments.append(payment)
        return payment

    async def _pay_out_seller(self, transaction: Transaction) -> Payment:
        gateway = self._require_gateway()
        seller = transaction.seller
        # Fixed reference so a retried release cannot pay twice
        reference = f"LE-PAYOUT-{transaction.id}"
        transfer_code = await gateway.payout(
            name=seller.full_name,
            phone=seller.phone,
            amount_ghs=transaction.seller_net_ghs,
            reference=reference,
            reason=f"Escrow release for transaction {transaction.id}",
        )
        logger.info(f"Payout {transfer_code} sent for transaction {transaction.id}")
        payment = Payment(
            payee_user_id=transaction.seller_id,
            type=PaymentType.SELLER_PAYOUT,
            status=PaymentStatus.SUCCESS,
            amount_ghs=transaction.seller_net_ghs,
            provider_ref=reference,
        )
        transaction.payments.append(payment)
        return payment

    async def _refund_buyer(self, transaction: Transaction) -> Payment:
        funding = next(
            (p for p in transaction.payments
             if p.type == PaymentType.TRANSACTION_FUNDING and p.status == PaymentStatus.SUCCESS),
            None,
        )
        if funding is None:
            raise InvalidState("No settled funding payment to refund", transaction.status.value)

        gateway = self._require_gateway()
        refund_id = await gateway.refund_payment(funding.provider_ref, transaction.agreed_price_ghs)
        logger.info(f"Refund {refund_id} issued for transaction {transaction.id}")
        payment = Payment(
            payee_user_id=transaction.buyer_id,
            type=PaymentType.REFUND,
            status=PaymentStatus.SUCCESS,
            amount_ghs=transaction.agreed_price_ghs,
            provider_ref=f"LE-REFUND-{transaction.id}",
        )
        transaction.payments.append(payment)
        return payment

    async def _conflict(self, transaction_id: int) -> None:
        await self.db.rollback()
        self._events.clear()
        logger.warning(f"Concurrent modification of transaction {transaction_id}")
        raise ConcurrentModification("Transaction was changed by another request; reload and retry")

    async def _commit(self, transaction_id: int) -> None:
        try:
            await self.db.commit()
        except StaleDataError:
            await self._conflict(transaction_id)

    async def _after_commit(self, transaction_id: int) -> Transaction:
        """Send queued notifications, then return a fresh copy of the transaction"""
        events, self._events = self._events, []
        if events:
            transaction = await self._get_or_404(transaction_id)
            for event in events:
                await EscrowNotifications.transaction_event(self.db, transaction, event)
        return await self._get_or_404(transaction_id)
