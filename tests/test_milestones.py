"""
Tests for dual-party milestone approval
"""
import pytest
from decimal import Decimal

from app.core.exceptions import AlreadyApproved, InvalidState, NotFound, PermissionDenied
from app.modules.transactions.models import TransactionStatus
from app.modules.transactions.services import TransactionService


class TestMilestoneApproval:
    """Tests for TransactionService.approve_milestone"""

    @pytest.mark.integration
    async def test_both_parties_complete_milestone(self, db_session, buyer, seller, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD", milestones=2)
        first = txn.milestones[0]
        service = TransactionService(db_session)

        after_buyer = await service.approve_milestone(txn.id, first.id, buyer)
        assert after_buyer.buyer_approved_at is not None
        assert after_buyer.seller_approved_at is None
        assert after_buyer.completed_at is None

        after_seller = await service.approve_milestone(txn.id, first.id, seller)
        assert after_seller.completed_at is not None
        assert after_seller.completed_at >= after_seller.buyer_approved_at
        assert after_seller.completed_at >= after_seller.seller_approved_at

        # One milestone still open
        assert (await service.get_transaction(txn.id)).status == TransactionStatus.VERIFICATION_PERIOD

    @pytest.mark.integration
    async def test_last_milestone_makes_transaction_ready(self, db_session, buyer, seller, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD", milestones=2)
        service = TransactionService(db_session)

        for milestone_id in [m.id for m in txn.milestones]:
            await service.approve_milestone(txn.id, milestone_id, buyer)
            await service.approve_milestone(txn.id, milestone_id, seller)

        reloaded = await service.get_transaction(txn.id)
        assert reloaded.status == TransactionStatus.READY_TO_RELEASE
        assert all(m.completed_at is not None for m in reloaded.milestones)

    @pytest.mark.integration
    async def test_same_role_twice_rejected(self, db_session, buyer, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD")
        milestone_id = txn.milestones[0].id
        service = TransactionService(db_session)

        await service.approve_milestone(txn.id, milestone_id, buyer)
        with pytest.raises(AlreadyApproved):
            await service.approve_milestone(txn.id, milestone_id, buyer)

    @pytest.mark.integration
    async def test_completed_milestone_rejected(self, db_session, buyer, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD", milestones=2, completed=1)
        service = TransactionService(db_session)

        with pytest.raises(AlreadyApproved):
            await service.approve_milestone(txn.id, txn.milestones[0].id, buyer)

    @pytest.mark.integration
    async def test_only_during_verification(self, db_session, buyer, make_transaction):
        for status in ("FUNDED", "DISPUTED", "READY_TO_RELEASE"):
            txn = await make_transaction(status)
            with pytest.raises(InvalidState) as exc_info:
                await TransactionService(db_session).approve_milestone(txn.id, txn.milestones[0].id, buyer)
            assert exc_info.value.current_status == status

    @pytest.mark.integration
    async def test_milestone_of_other_transaction_not_found(self, db_session, buyer, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD")
        other = await make_transaction("VERIFICATION_PERIOD")

        with pytest.raises(NotFound):
            await TransactionService(db_session).approve_milestone(txn.id, other.milestones[0].id, buyer)

    @pytest.mark.integration
    async def test_outsider_cannot_see_transaction(self, db_session, outsider, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD")

        with pytest.raises(NotFound):
            await TransactionService(db_session).approve_milestone(txn.id, txn.milestones[0].id, outsider)

    @pytest.mark.integration
    async def test_staff_cannot_approve(self, db_session, admin_user, make_transaction):
        txn = await make_transaction("VERIFICATION_PERIOD")

        with pytest.raises(PermissionDenied):
            await TransactionService(db_session).approve_milestone(txn.id, txn.milestones[0].id, admin_user)


class TestMilestoneCreation:
    """Tests for the milestone plan set at creation"""

    @pytest.mark.integration
    async def test_default_plan(self, db_session, buyer, listing):
        from app.modules.transactions.schemas import TransactionCreate

        txn = await TransactionService(db_session).create_transaction(
            TransactionCreate(listing_id=listing.id, agreed_price_ghs=Decimal("120000.00")), buyer
        )

        assert [m.name for m in txn.milestones] == ["Initial Deposit", "Document Verification", "Final Transfer"]
        assert [m.amount_ghs for m in txn.milestones] == [Decimal("120000.00"), Decimal("0.00"), Decimal("0.00")]
        assert not any(m.requires_admin_approval for m in txn.milestones)

    @pytest.mark.integration
    async def test_custom_plan_over_price_rejected(self, db_session, buyer, listing):
        from app.core.exceptions import InvalidRequest
        from app.modules.transactions.schemas import TransactionCreate, MilestoneCreate

        data = TransactionCreate(
            listing_id=listing.id,
            agreed_price_ghs=Decimal("1000.00"),
            milestones=[
                MilestoneCreate(name="Deposit", amount_ghs=Decimal("600.00")),
                MilestoneCreate(name="Balance", amount_ghs=Decimal("500.00")),
            ],
        )
        with pytest.raises(InvalidRequest):
            await TransactionService(db_session).create_transaction(data, buyer)

    @pytest.mark.integration
    async def test_high_value_last_milestone_needs_admin(self, db_session, buyer, listing):
        from app.modules.transactions.schemas import TransactionCreate

        txn = await TransactionService(db_session).create_transaction(
            TransactionCreate(listing_id=listing.id, agreed_price_ghs=Decimal("650000.00")), buyer
        )

        assert [m.requires_admin_approval for m in txn.milestones] == [False, False, True]
