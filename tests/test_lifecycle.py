"""
Tests for the escrow state machine and the lifecycle engine
"""
import pytest
from decimal import Decimal

from app.core.exceptions import (
    ExternalServiceFailure, IllegalTransition, InvalidRequest, PermissionDenied
)
from app.modules.audit.services import AuditService
from app.modules.disputes.models import DisputeStatus, DisputeOutcome
from app.modules.payments.models import PaymentStatus, PaymentType
from app.modules.transactions.lifecycle import (
    ActorContext, LEGAL_TRANSITIONS, action_for_status, assert_legal, resolve_transition
)
from app.modules.transactions.models import (
    ActorRole, TransactionAction, TransactionStatus, TERMINAL_STATUSES
)
from app.modules.transactions.services import TransactionService, calculate_fee

BUYER = ActorContext(user_id=1, role=ActorRole.BUYER)
SELLER = ActorContext(user_id=2, role=ActorRole.SELLER)
ADMIN = ActorContext(user_id=3, role=ActorRole.ADMIN)


class TestTransitionRules:
    """Tests for the pure transition table"""

    @pytest.mark.unit
    def test_buyer_funds_created_transaction(self):
        target = resolve_transition(TransactionAction.FUND, BUYER, TransactionStatus.CREATED)
        assert target == TransactionStatus.ESCROW_REQUESTED

    @pytest.mark.unit
    def test_seller_cannot_fund(self):
        with pytest.raises(PermissionDenied):
            resolve_transition(TransactionAction.FUND, SELLER, TransactionStatus.CREATED)

    @pytest.mark.unit
    def test_permission_checked_before_status(self):
        """A seller asking to dispute is refused for who they are, not the status"""
        with pytest.raises(PermissionDenied):
            resolve_transition(TransactionAction.DISPUTE, SELLER, TransactionStatus.FUNDED)

    @pytest.mark.unit
    def test_dispute_outside_verification_period(self):
        with pytest.raises(IllegalTransition) as exc_info:
            resolve_transition(TransactionAction.DISPUTE, BUYER, TransactionStatus.READY_TO_RELEASE)
        assert exc_info.value.current_status == "READY_TO_RELEASE"

    @pytest.mark.unit
    def test_seller_release_only_when_ready(self):
        assert resolve_transition(
            TransactionAction.RELEASE, SELLER, TransactionStatus.READY_TO_RELEASE
        ) == TransactionStatus.RELEASED
        with pytest.raises(IllegalTransition):
            resolve_transition(TransactionAction.RELEASE, SELLER, TransactionStatus.FUNDED)

    @pytest.mark.unit
    def test_admin_release_and_refund_from_disputed(self):
        assert resolve_transition(
            TransactionAction.RELEASE, ADMIN, TransactionStatus.DISPUTED
        ) == TransactionStatus.RELEASED
        assert resolve_transition(
            TransactionAction.REFUND, ADMIN, TransactionStatus.DISPUTED
        ) == TransactionStatus.REFUNDED

    @pytest.mark.unit
    def test_admin_closes_any_open_transaction(self):
        for status in TransactionStatus:
            if status in TERMINAL_STATUSES:
                continue
            assert resolve_transition(TransactionAction.CLOSE, ADMIN, status) == TransactionStatus.CLOSED

    @pytest.mark.unit
    def test_terminal_statuses_reject_everything(self):
        for status in TERMINAL_STATUSES:
            for action in (TransactionAction.CLOSE, TransactionAction.REFUND, TransactionAction.DISPUTE):
                with pytest.raises(IllegalTransition):
                    resolve_transition(action, ADMIN, status)

    @pytest.mark.unit
    def test_milestone_approval_is_not_a_transition(self):
        with pytest.raises(InvalidRequest):
            resolve_transition(TransactionAction.APPROVE_MILESTONE, BUYER, TransactionStatus.VERIFICATION_PERIOD)

    @pytest.mark.unit
    def test_no_edge_leaves_a_terminal_status(self):
        assert not [edge for edge in LEGAL_TRANSITIONS if edge[0] in TERMINAL_STATUSES]

    @pytest.mark.unit
    def test_assert_legal_rejects_skipping_states(self):
        with pytest.raises(IllegalTransition):
            assert_legal(TransactionStatus.CREATED, TransactionStatus.RELEASED)

    @pytest.mark.unit
    def test_status_form_maps_to_actions(self):
        assert action_for_status(TransactionStatus.DISPUTED, TransactionStatus.VERIFICATION_PERIOD) == TransactionAction.DISPUTE
        assert action_for_status(TransactionStatus.FUNDED, TransactionStatus.CREATED) == TransactionAction.FUND
        with pytest.raises(IllegalTransition):
            action_for_status(TransactionStatus.READY_TO_RELEASE, TransactionStatus.VERIFICATION_PERIOD)

    @pytest.mark.unit
    def test_fee_rounds_down_to_pesewa(self):
        fee, net = calculate_fee(Decimal("1234.57"), 500)
        assert fee == Decimal("61.72")
        assert net == Decimal("1172.85")
        assert fee + net == Decimal("1234.57")


class TestLifecycleEngine:
    """Tests for TransactionService.apply_transition"""

    @pytest.mark.integration
    async def test_fund_opens_payment_and_requests_escrow(self, db_session, gateway, buyer, make_transaction):
        txn = await make_transaction("CREATED")
        service = TransactionService(db_session, gateway)

        result = await service.apply_transition(txn.id, buyer, action=TransactionAction.FUND)

        assert result.status == TransactionStatus.ESCROW_REQUESTED
        assert result.closed_at is None
        assert len(gateway.initialized) == 1
        assert gateway.initialized[0]["amount_ghs"] == Decimal("120000.00")
        funding = [p for p in result.payments if p.type == PaymentType.TRANSACTION_FUNDING]
        assert len(funding) == 1
        assert funding[0].status == PaymentStatus.PENDING
        assert funding[0].authorization_url.startswith("https://checkout.paystack.test/")

    @pytest.mark.integration
    async def test_confirm_funding_starts_verification(self, db_session, gateway, buyer, make_transaction):
        txn = await make_transaction("ESCROW_REQUESTED")
        service = TransactionService(db_session, gateway)

        result = await service.confirm_funding(txn.id, "LE-REF")

        assert result.status == TransactionStatus.VERIFICATION_PERIOD
        assert result.verification_started_at is not None

        entries = await AuditService.list_entries(db_session, entity_type="transaction", entity_id=txn.id)
        path = [(e.diff["from"], e.diff["to"]) for e in entries if e.action == "STATUS_CHANGED"]
        assert path == [
            ("ESCROW_REQUESTED", "FUNDED"),
            ("FUNDED", "VERIFICATION_PERIOD"),
        ]

    @pytest.mark.integration
    async def test_seller_cannot_dispute(self, db_session, gateway, seller, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD")
        service = TransactionService(db_session, gateway)

        with pytest.raises(PermissionDenied):
            await service.apply_transition(txn.id, seller, action=TransactionAction.DISPUTE)

        reloaded = await service.get_transaction(txn.id)
        assert reloaded.status == TransactionStatus.VERIFICATION_PERIOD

    @pytest.mark.integration
    async def test_buyer_dispute_opens_dispute(self, db_session, gateway, buyer, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD")
        service = TransactionService(db_session, gateway)

        result = await service.apply_transition(
            txn.id, buyer, action=TransactionAction.DISPUTE, reason="Boundary pillars missing"
        )

        assert result.status == TransactionStatus.DISPUTED
        assert len(result.disputes) == 1
        assert result.disputes[0].status == DisputeStatus.OPEN
        assert result.disputes[0].reason == "Boundary pillars missing"
        assert result.disputes[0].raised_by_id == buyer.id

    @pytest.mark.integration
    async def test_admin_close_disputed_is_final(self, db_session, gateway, buyer, admin_user, make_transaction):
        txn = await make_transaction("DISPUTED")
        service = TransactionService(db_session, gateway)

        result = await service.apply_transition(
            txn.id, admin_user, action=TransactionAction.CLOSE, reason="Parties withdrew", as_admin=True
        )

        assert result.status == TransactionStatus.CLOSED
        assert result.closed_at is not None
        assert result.disputes[0].status == DisputeStatus.RESOLVED
        assert result.disputes[0].resolution_outcome == DisputeOutcome.TERMINATE

        for user, action in (
            (buyer, TransactionAction.DISPUTE),
            (admin_user, TransactionAction.REFUND),
            (admin_user, TransactionAction.REINSTATE),
        ):
            with pytest.raises(IllegalTransition):
                await service.apply_transition(txn.id, user, action=action, as_admin=user is admin_user)

        assert (await service.get_transaction(txn.id)).status == TransactionStatus.CLOSED

    @pytest.mark.integration
    async def test_seller_release_pays_out_net(self, db_session, gateway, seller, make_transaction):
        txn = await make_transaction("READY_TO_RELEASE", milestones=1, completed=1)
        service = TransactionService(db_session, gateway)

        result = await service.apply_transition(txn.id, seller, action=TransactionAction.RELEASE)

        assert result.status == TransactionStatus.RELEASED
        assert result.closed_at is not None
        assert gateway.payouts == [{
            "phone": seller.phone,
            "amount_ghs": Decimal("114000.00"),
            "reference": f"LE-PAYOUT-{txn.id}",
        }]
        payout = [p for p in result.payments if p.type == PaymentType.SELLER_PAYOUT]
        assert payout[0].status == PaymentStatus.SUCCESS
        assert payout[0].amount_ghs == Decimal("114000.00")

    @pytest.mark.integration
    async def test_gateway_failure_leaves_status_unchanged(self, db_session, gateway, seller, make_transaction):
        txn = await make_transaction("READY_TO_RELEASE", milestones=1, completed=1)
        gateway.fail_with = "Payment gateway unavailable: timeout"
        service = TransactionService(db_session, gateway)

        with pytest.raises(ExternalServiceFailure) as exc_info:
            await service.apply_transition(txn.id, seller, action=TransactionAction.RELEASE)

        assert exc_info.value.to_dict()["retryable"] is True
        reloaded = await service.get_transaction(txn.id)
        assert reloaded.status == TransactionStatus.READY_TO_RELEASE
        assert reloaded.closed_at is None
        assert not [p for p in reloaded.payments if p.type == PaymentType.SELLER_PAYOUT]

    @pytest.mark.integration
    async def test_admin_refund_returns_full_price(self, db_session, gateway, admin_user, make_transaction):
        txn = await make_transaction("FUNDED")
        service = TransactionService(db_session, gateway)

        result = await service.apply_transition(
            txn.id, admin_user, action=TransactionAction.REFUND, as_admin=True
        )

        assert result.status == TransactionStatus.REFUNDED
        assert gateway.refunds[0]["amount_ghs"] == Decimal("120000.00")
        assert any(p.type == PaymentType.REFUND for p in result.payments)

    @pytest.mark.integration
    async def test_reinstate_dismisses_dispute(self, db_session, gateway, admin_user, make_transaction):
        txn = await make_transaction("DISPUTED")
        service = TransactionService(db_session, gateway)

        result = await service.apply_transition(
            txn.id, admin_user, action=TransactionAction.REINSTATE, reason="Claim unfounded", as_admin=True
        )

        assert result.status == TransactionStatus.VERIFICATION_PERIOD
        assert result.disputes[0].status == DisputeStatus.DISMISSED
        assert result.disputes[0].resolution_outcome is None

    @pytest.mark.integration
    async def test_reinstate_with_completed_milestones_goes_ready(self, db_session, gateway, admin_user, make_transaction):
        txn = await make_transaction("DISPUTED", milestones=2, completed=2)
        service = TransactionService(db_session, gateway)

        result = await service.apply_transition(
            txn.id, admin_user, action=TransactionAction.REINSTATE, as_admin=True
        )

        assert result.status == TransactionStatus.READY_TO_RELEASE

    @pytest.mark.integration
    async def test_status_form_request(self, db_session, gateway, buyer, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD")
        service = TransactionService(db_session, gateway)

        result = await service.apply_transition(txn.id, buyer, target_status=TransactionStatus.DISPUTED)

        assert result.status == TransactionStatus.DISPUTED

    @pytest.mark.integration
    async def test_closed_at_tracks_terminal_status(self, db_session, gateway, buyer, admin_user, make_transaction):
        txn = await make_transaction("CREATED")
        service = TransactionService(db_session, gateway)

        funded = await service.apply_transition(txn.id, buyer, action=TransactionAction.FUND)
        assert funded.closed_at is None

        closed = await service.apply_transition(txn.id, admin_user, action=TransactionAction.CLOSE, as_admin=True)
        assert closed.closed_at is not None


class TestHighValueRelease:
    """Tests for admin sign-off on high-value releases"""

    @pytest.mark.integration
    async def test_seller_release_blocked_until_approved(self, db_session, gateway, seller, admin_user, make_transaction):
        from app.modules.transactions.schemas import HighValueDecision

        txn = await make_transaction("READY_TO_RELEASE", price=Decimal("750000.00"), milestones=1, completed=1)
        service = TransactionService(db_session, gateway)

        with pytest.raises(PermissionDenied):
            await service.apply_transition(txn.id, seller, action=TransactionAction.RELEASE)
        assert gateway.payouts == []

        status = await service.decide_high_value(txn.id, HighValueDecision(action="approve"), admin_user)
        assert status["is_high_value"] is True
        assert status["release_approved"] is True
        assert status["release_approved_by"] == admin_user.id

        result = await service.apply_transition(txn.id, seller, action=TransactionAction.RELEASE)
        assert result.status == TransactionStatus.RELEASED

    @pytest.mark.integration
    async def test_reject_clears_approval(self, db_session, gateway, admin_user, make_transaction):
        from app.modules.transactions.schemas import HighValueDecision

        txn = await make_transaction("READY_TO_RELEASE", price=Decimal("750000.00"), milestones=1, completed=1)
        service = TransactionService(db_session, gateway)

        await service.decide_high_value(txn.id, HighValueDecision(action="approve"), admin_user)
        status = await service.decide_high_value(
            txn.id, HighValueDecision(action="reject", notes="Title search pending"), admin_user
        )

        assert status["release_approved"] is False
        assert status["release_approved_at"] is None

    @pytest.mark.integration
    async def test_reject_opens_dispute_and_allows_refund(
        self, db_session, gateway, seller, admin_user, make_transaction
    ):
        from app.modules.transactions.schemas import HighValueDecision

        txn = await make_transaction("READY_TO_RELEASE", price=Decimal("600000.00"), milestones=1, completed=1)
        service = TransactionService(db_session, gateway)

        await service.decide_high_value(
            txn.id, HighValueDecision(action="reject", notes="Indenture signatures do not match"), admin_user
        )

        disputed = await service.get_transaction(txn.id)
        assert disputed.status == TransactionStatus.DISPUTED
        assert [d.status for d in disputed.disputes] == [DisputeStatus.OPEN]
        assert "Indenture signatures do not match" in disputed.disputes[0].reason
        assert disputed.disputes[0].raised_by_id == admin_user.id

        # Seller can no longer release
        with pytest.raises(IllegalTransition):
            await service.apply_transition(txn.id, seller, action=TransactionAction.RELEASE)

        refunded = await service.apply_transition(
            txn.id, admin_user, action=TransactionAction.REFUND, reason="Title defect", as_admin=True
        )
        assert refunded.status == TransactionStatus.REFUNDED
        assert refunded.disputes[0].resolution_outcome == DisputeOutcome.REFUND
        assert gateway.refunds[0]["amount_ghs"] == Decimal("600000.00")

    @pytest.mark.integration
    async def test_reject_requires_ready_to_release(self, db_session, gateway, admin_user, make_transaction):
        from app.core.exceptions import InvalidState
        from app.modules.transactions.schemas import HighValueDecision

        txn = await make_transaction("VERIFICATION_PERIOD", price=Decimal("600000.00"), milestones=1)
        service = TransactionService(db_session, gateway)

        with pytest.raises(InvalidState) as exc_info:
            await service.decide_high_value(txn.id, HighValueDecision(action="reject"), admin_user)
        assert exc_info.value.current_status == "VERIFICATION_PERIOD"

    @pytest.mark.unit
    def test_reject_edge_is_system_only(self):
        assert (TransactionStatus.READY_TO_RELEASE, TransactionStatus.DISPUTED) in LEGAL_TRANSITIONS
        with pytest.raises(IllegalTransition):
            resolve_transition(TransactionAction.DISPUTE, BUYER, TransactionStatus.READY_TO_RELEASE)

    @pytest.mark.integration
    async def test_below_threshold_rejected(self, db_session, gateway, admin_user, make_transaction):
        from app.modules.transactions.schemas import HighValueDecision

        txn = await make_transaction("READY_TO_RELEASE", milestones=1, completed=1)
        service = TransactionService(db_session, gateway)

        with pytest.raises(InvalidRequest):
            await service.decide_high_value(txn.id, HighValueDecision(action="approve"), admin_user)
