"""Tests for the dispute resolution engine."""

from datetime import timedelta
from decimal import Decimal

import pytest

from rentflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ExpiredHoldError,
    InvalidTransitionError,
    PaymentFailedError,
    ValidationError,
)
from rentflow.domain.booking_state import BookingStatus
from rentflow.domain.deposit_state import HoldStatus
from rentflow.domain.dispute_state import DisputePriority, DisputeStatus, DisputeType, ResolutionOutcome
from rentflow.domain.ledger_state import AccountType, TransactionType
from rentflow.gateways.base import OperationStatus
from rentflow.services.booking_service import booking_service
from rentflow.services.deposit_service import deposit_service
from rentflow.services.dispute_service import dispute_service
from rentflow.services.ledger_service import ledger_store

from tests.conftest import NOW

pytestmark = pytest.mark.integration


async def open_damage_dispute(db, booking, initiator_id, **kwargs):
    return await dispute_service.open_dispute(
        db,
        booking.id,
        initiator_id=initiator_id,
        dispute_type=kwargs.pop("dispute_type", DisputeType.PROPERTY_DAMAGE),
        title="Drill returned broken",
        description="Chuck no longer tightens.",
        now=kwargs.pop("now", booking.end_date),
        **kwargs,
    )


class TestOpenDispute:
    async def test_open_moves_booking_to_disputed(self, db, make_listing, returned_booking, renter_id):
        listing = await make_listing()
        booking = await returned_booking(listing)

        dispute = await open_damage_dispute(db, booking, renter_id)

        assert dispute.status == DisputeStatus.OPEN.value
        assert dispute.defendant_id == booking.owner_id
        assert dispute.priority == DisputePriority.MEDIUM.value
        assert dispute.sla_deadline == booking.end_date + timedelta(hours=72)
        assert booking.status == BookingStatus.DISPUTED.value
        assert booking.pre_dispute_status == BookingStatus.AWAITING_RETURN_INSPECTION.value

    async def test_only_one_active_dispute(self, db, make_listing, returned_booking, renter_id, owner_id):
        listing = await make_listing()
        booking = await returned_booking(listing)
        await open_damage_dispute(db, booking, renter_id)

        with pytest.raises(ConflictError):
            await open_damage_dispute(db, booking, owner_id)

    async def test_confirmed_booking_cannot_be_disputed(self, db, make_listing, confirmed_booking, renter_id):
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        with pytest.raises(InvalidTransitionError):
            await open_damage_dispute(db, booking, renter_id, now=NOW)
        assert booking.status == BookingStatus.CONFIRMED.value

    async def test_outsider_cannot_open(self, db, make_listing, returned_booking):
        import uuid

        listing = await make_listing()
        booking = await returned_booking(listing)

        with pytest.raises(AuthorizationError):
            await open_damage_dispute(db, booking, uuid.uuid4())

    async def test_inspection_issues_open_dispute(self, db, gateway, make_listing, returned_booking, owner_id):
        listing = await make_listing(deposit="50.00")
        booking = await returned_booking(listing)

        booking, dispute = await booking_service.complete_inspection(
            db,
            gateway,
            booking.id,
            owner_id,
            has_issues=True,
            notes="Dent on the housing",
            amount_claimed=Decimal("30.00"),
            now=booking.end_date,
        )

        assert dispute.dispute_type == DisputeType.CONDITION_MISMATCH.value
        assert dispute.priority == DisputePriority.HIGH.value
        assert dispute.initiator_id == owner_id
        assert booking.status == BookingStatus.DISPUTED.value

    async def test_inspection_issues_require_returned_item(
        self, db, gateway, make_listing, confirmed_booking, owner_id
    ):
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        with pytest.raises(InvalidTransitionError):
            await booking_service.complete_inspection(db, gateway, booking.id, owner_id, has_issues=True, now=NOW)


class TestResolve:
    async def test_refund_taken_from_owner_earnings(
        self, db, gateway, make_listing, returned_booking, renter_id, owner_id, no_fees
    ):
        listing = await make_listing()
        booking = await returned_booking(listing, days=3)
        dispute = await open_damage_dispute(db, booking, renter_id)

        await dispute_service.resolve(
            db,
            gateway,
            dispute.id,
            ResolutionOutcome.RESOLVED_INITIATOR_FAVOR,
            resolved_by=owner_id,
            refund_amount=Decimal("100.00"),
            notes="Partial refund agreed",
            now=booking.end_date + timedelta(hours=1),
        )

        assert dispute.status == DisputeStatus.RESOLVED.value
        assert booking.status == BookingStatus.REFUNDED.value
        assert booking.refund_amount == Decimal("100.00")

        refund = await ledger_store.entries_for_reference(db, TransactionType.DISPUTE_REFUND, str(dispute.id))
        assert {(e.account_type, e.side, e.amount) for e in refund} == {
            (AccountType.OWNER_RECEIVABLE.value, "debit", Decimal("100.00")),
            (AccountType.RENTER_RECEIVABLE.value, "credit", Decimal("100.00")),
        }
        earning = await ledger_store.entries_for_reference(
            db, TransactionType.OWNER_EARNING, booking.payment_reference
        )
        owner_credit = [e for e in earning if e.account_type == AccountType.OWNER_RECEIVABLE.value]
        assert [(e.amount, e.status) for e in owner_credit] == [(Decimal("300.00"), "settled")]
        assert await ledger_store.owner_balance(db, owner_id) == Decimal("200.00")

        resolution = await dispute_service.get_resolution(db, dispute.id)
        assert resolution.outcome == ResolutionOutcome.RESOLVED_INITIATOR_FAVOR.value
        assert resolution.refund_amount == Decimal("100.00")

    async def test_no_refund_returns_booking_to_prior_state(
        self, db, gateway, make_listing, returned_booking, renter_id, owner_id
    ):
        listing = await make_listing()
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)

        await dispute_service.resolve(
            db, gateway, dispute.id, ResolutionOutcome.RESOLVED_DEFENDANT_FAVOR, resolved_by=owner_id
        )

        assert booking.status == BookingStatus.AWAITING_RETURN_INSPECTION.value
        assert booking.pre_dispute_status is None

    async def test_resolving_twice_is_refused(self, db, gateway, make_listing, returned_booking, renter_id, owner_id):
        listing = await make_listing()
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)
        await dispute_service.resolve(db, gateway, dispute.id, ResolutionOutcome.NO_ACTION, resolved_by=owner_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await dispute_service.resolve(
                db, gateway, dispute.id, ResolutionOutcome.RESOLVED_INITIATOR_FAVOR, resolved_by=owner_id
            )
        assert exc_info.value.current_state == DisputeStatus.RESOLVED.value

    async def test_refund_cannot_exceed_rental(self, db, gateway, make_listing, returned_booking, renter_id, owner_id):
        listing = await make_listing()
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)

        with pytest.raises(ValidationError):
            await dispute_service.resolve(
                db,
                gateway,
                dispute.id,
                ResolutionOutcome.RESOLVED_INITIATOR_FAVOR,
                resolved_by=owner_id,
                refund_amount=booking.total_price + Decimal("1"),
            )
        assert dispute.status == DisputeStatus.OPEN.value

    async def test_no_action_cannot_move_money(self, db, gateway, make_listing, returned_booking, renter_id, owner_id):
        listing = await make_listing()
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)

        with pytest.raises(ValidationError):
            await dispute_service.resolve(
                db, gateway, dispute.id, ResolutionOutcome.NO_ACTION, resolved_by=owner_id, refund_amount=Decimal("5")
            )

    async def test_deposit_deduction_captures_hold(self, db, gateway, make_listing, returned_booking, owner_id):
        listing = await make_listing(deposit="50.00")
        booking = await returned_booking(listing)
        booking, dispute = await booking_service.complete_inspection(
            db,
            gateway,
            booking.id,
            owner_id,
            has_issues=True,
            amount_claimed=Decimal("30.00"),
            now=booking.end_date,
        )
        now = booking.end_date + timedelta(days=1)

        await dispute_service.resolve(
            db,
            gateway,
            dispute.id,
            ResolutionOutcome.RESOLVED_INITIATOR_FAVOR,
            resolved_by=owner_id,
            deposit_deduction=Decimal("30.00"),
            now=now,
        )

        holds = await deposit_service.holds_for_booking(db, booking.id)
        assert [(h.status, h.deducted_amount) for h in holds] == [(HoldStatus.CAPTURED.value, Decimal("30.00"))]
        assert booking.status == BookingStatus.AWAITING_RETURN_INSPECTION.value

        await booking_service.complete_inspection(db, gateway, booking.id, owner_id, has_issues=False, now=now)
        await booking_service.settle(db, booking.id, now=now)
        assert booking.status == BookingStatus.SETTLED.value

    async def test_payout_adjustment_posts_settled_entries(
        self, db, gateway, make_listing, returned_booking, renter_id, owner_id, no_fees
    ):
        listing = await make_listing()
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)

        await dispute_service.resolve(
            db,
            gateway,
            dispute.id,
            ResolutionOutcome.RESOLVED_SPLIT,
            resolved_by=owner_id,
            payout_adjustment=Decimal("-25.00"),
        )

        assert await ledger_store.owner_balance(db, owner_id) == Decimal("175.00")
        assert await ledger_store.unbalanced_groups(db, booking.id) == []

    async def test_expired_hold_aborts_before_refund(
        self, db, gateway, make_listing, returned_booking, renter_id, owner_id
    ):
        listing = await make_listing(deposit="50.00")
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)

        with pytest.raises(ExpiredHoldError) as exc_info:
            await dispute_service.resolve(
                db,
                gateway,
                dispute.id,
                ResolutionOutcome.RESOLVED_SPLIT,
                resolved_by=owner_id,
                refund_amount=Decimal("40.00"),
                deposit_deduction=Decimal("30.00"),
                now=booking.end_date + timedelta(days=30),
            )

        assert exc_info.value.persist_changes is False
        assert gateway.calls_for("refund") == []
        assert gateway.calls_for("capture") == []
        assert dispute.status == DisputeStatus.OPEN.value
        assert booking.status == BookingStatus.DISPUTED.value
        holds = await deposit_service.holds_for_booking(db, booking.id)
        assert [h.status for h in holds] == [HoldStatus.AUTHORIZED.value]
        entries = await ledger_store.entries_for_booking(db, booking.id)
        assert TransactionType.DISPUTE_REFUND.value not in {e.transaction_type for e in entries}

    async def test_deduction_without_active_hold_moves_no_money(
        self, db, gateway, make_listing, returned_booking, renter_id, owner_id
    ):
        listing = await make_listing(deposit="50.00")
        booking = await returned_booking(listing)
        await booking_service.complete_inspection(
            db, gateway, booking.id, owner_id, has_issues=False, now=booking.end_date
        )
        dispute = await open_damage_dispute(db, booking, renter_id)

        with pytest.raises(ValidationError):
            await dispute_service.resolve(
                db,
                gateway,
                dispute.id,
                ResolutionOutcome.RESOLVED_SPLIT,
                resolved_by=owner_id,
                refund_amount=Decimal("20.00"),
                deposit_deduction=Decimal("10.00"),
                now=booking.end_date + timedelta(hours=1),
            )

        assert gateway.calls_for("refund") == []
        assert gateway.calls_for("capture") == []
        assert dispute.status == DisputeStatus.OPEN.value

    async def test_declined_capture_skips_refund(
        self, db, gateway, make_listing, returned_booking, renter_id, owner_id
    ):
        listing = await make_listing(deposit="50.00")
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)
        gateway.statuses["capture"] = OperationStatus.FAILED

        with pytest.raises(PaymentFailedError):
            await dispute_service.resolve(
                db,
                gateway,
                dispute.id,
                ResolutionOutcome.RESOLVED_SPLIT,
                resolved_by=owner_id,
                refund_amount=Decimal("40.00"),
                deposit_deduction=Decimal("30.00"),
                now=booking.end_date + timedelta(hours=1),
            )

        assert len(gateway.calls_for("capture")) == 1
        assert gateway.calls_for("refund") == []
        assert dispute.status == DisputeStatus.OPEN.value


class TestLifecycle:
    async def test_timeline_records_each_step(self, db, gateway, make_listing, returned_booking, renter_id, owner_id):
        listing = await make_listing()
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)
        admin_id = owner_id

        await dispute_service.start_review(db, dispute.id, admin_id)
        await dispute_service.request_response(db, dispute.id, admin_id, "Photos please")
        await dispute_service.add_comment(db, dispute.id, owner_id, "Photos attached")
        await dispute_service.resolve(db, gateway, dispute.id, ResolutionOutcome.NO_ACTION, resolved_by=admin_id)
        await dispute_service.close(db, dispute.id, admin_id)

        timeline = await dispute_service.timeline(db, dispute.id)
        assert [t.event_type for t in timeline] == [
            "opened",
            "review_started",
            "response_requested",
            "comment",
            "resolved",
            "booking_updated",
            "closed",
        ]
        assert [t.sequence for t in timeline] == list(range(1, 8))
        assert dispute.status == DisputeStatus.CLOSED.value

    async def test_close_requires_resolution(self, db, make_listing, returned_booking, renter_id, owner_id):
        listing = await make_listing()
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)

        with pytest.raises(InvalidTransitionError):
            await dispute_service.close(db, dispute.id, owner_id)

    async def test_dismiss_restores_booking_without_resolution(
        self, db, make_listing, returned_booking, renter_id, owner_id
    ):
        listing = await make_listing()
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)

        await dispute_service.dismiss(db, dispute.id, owner_id, "Filed by mistake")

        assert dispute.status == DisputeStatus.CLOSED.value
        assert dispute.dismissal_reason == "Filed by mistake"
        assert booking.status == BookingStatus.AWAITING_RETURN_INSPECTION.value
        assert await dispute_service.get_resolution(db, dispute.id) is None

        # a new dispute may be opened once the first is closed
        second = await open_damage_dispute(db, booking, renter_id)
        assert second.status == DisputeStatus.OPEN.value

    async def test_overdue_disputes_escalate_once(self, db, make_listing, returned_booking, renter_id):
        listing = await make_listing()
        booking = await returned_booking(listing)
        dispute = await open_damage_dispute(db, booking, renter_id)

        assert await dispute_service.escalate_overdue(db, now=dispute.sla_deadline - timedelta(minutes=1)) == 0
        escalated = await dispute_service.escalate_overdue(db, now=dispute.sla_deadline + timedelta(hours=1))
        again = await dispute_service.escalate_overdue(db, now=dispute.sla_deadline + timedelta(hours=5))

        assert (escalated, again) == (1, 0)
        assert dispute.priority == DisputePriority.HIGH.value
        assert dispute.escalated_at is not None
        timeline = await dispute_service.timeline(db, dispute.id)
        assert timeline[-1].event_type == "escalated"
        assert timeline[-1].details == {"from_priority": "medium", "to_priority": "high"}
