"""Integration tests for the booking lifecycle and its ledger side effects."""

import asyncio
import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from rentflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    PaymentFailedError,
    TooEarlyError,
    ValidationError,
)
from rentflow.domain.booking_state import BookingStatus
from rentflow.domain.ledger_state import AccountType, EntryStatus, TransactionType
from rentflow.gateways.base import OperationStatus
from rentflow.models.listing import BookedDay
from rentflow.models.outbox import OutboxEvent
from rentflow.services.booking_service import booking_service, refund_reference
from rentflow.services.ledger_service import ledger_store

from tests.conftest import NOW

pytestmark = pytest.mark.integration


def lines_of(entries):
    return {(e.account_type, e.side, e.amount) for e in entries}


class TestRequestBooking:
    async def test_request_prices_and_claims_calendar(self, db, make_listing, renter_id, standard_fees):
        listing = await make_listing()
        start = NOW + timedelta(days=3)

        booking = await booking_service.request_booking(
            db, listing.id, renter_id, start, start + timedelta(days=2), now=NOW
        )

        assert booking.status == BookingStatus.DRAFT.value
        assert booking.booking_number.startswith("RF-")
        assert booking.total_price == Decimal("220.00")
        assert booking.owner_earnings == Decimal("180.00")
        assert booking.platform_fee == Decimal("40.00")

        days = (await db.execute(select(BookedDay.day).where(BookedDay.booking_id == booking.id))).scalars().all()
        assert sorted(days) == [start.date(), (start + timedelta(days=1)).date()]

    async def test_overlapping_request_conflicts(self, db, make_listing, renter_id):
        listing = await make_listing()
        start = NOW + timedelta(days=3)
        await booking_service.request_booking(db, listing.id, renter_id, start, start + timedelta(days=2), now=NOW)

        with pytest.raises(ConflictError):
            await booking_service.request_booking(
                db, listing.id, uuid.uuid4(), start + timedelta(days=1), start + timedelta(days=4), now=NOW
            )

    async def test_back_to_back_rentals_do_not_overlap(self, db, make_listing, renter_id):
        listing = await make_listing()
        start = NOW + timedelta(days=3)
        await booking_service.request_booking(db, listing.id, renter_id, start, start + timedelta(days=2), now=NOW)

        second = await booking_service.request_booking(
            db, listing.id, uuid.uuid4(), start + timedelta(days=2), start + timedelta(days=3), now=NOW
        )
        assert second.status == BookingStatus.DRAFT.value

    async def test_past_start_is_rejected(self, db, make_listing, renter_id):
        listing = await make_listing()
        with pytest.raises(ValidationError):
            await booking_service.request_booking(
                db, listing.id, renter_id, NOW - timedelta(hours=1), NOW + timedelta(days=1), now=NOW
            )

    async def test_owner_cannot_book_own_listing(self, db, make_listing, owner_id):
        listing = await make_listing()
        start = NOW + timedelta(days=3)
        with pytest.raises(ValidationError):
            await booking_service.request_booking(
                db, listing.id, owner_id, start, start + timedelta(days=1), now=NOW
            )

    async def test_guest_limit_is_enforced(self, db, make_listing, renter_id):
        listing = await make_listing()
        start = NOW + timedelta(days=3)
        with pytest.raises(ValidationError, match="Maximum 4 guests"):
            await booking_service.request_booking(
                db, listing.id, renter_id, start, start + timedelta(days=1), guest_count=5, now=NOW
            )

    async def test_category_details_are_validated(self, db, make_listing, renter_id):
        listing = await make_listing(category="vehicles")
        start = NOW + timedelta(days=3)

        with pytest.raises(ValidationError) as exc_info:
            await booking_service.request_booking(
                db,
                listing.id,
                renter_id,
                start,
                start + timedelta(days=1),
                category_data={"driver_age": 16},
                now=NOW,
            )
        assert exc_info.value.errors

        booking = await booking_service.request_booking(
            db,
            listing.id,
            renter_id,
            start,
            start + timedelta(days=1),
            category_data={"driver_license_number": "D1234567", "driver_age": 31},
            now=NOW,
        )
        assert booking.category_data["driver_age"] == 31

    async def test_concurrent_requests_admit_exactly_one(self, db, session_maker, make_listing, renter_id):
        listing = await make_listing()
        await db.commit()
        start = NOW + timedelta(days=3)

        async def attempt(renter):
            async with session_maker() as session:
                try:
                    booking = await booking_service.request_booking(
                        session, listing.id, renter, start, start + timedelta(days=2), now=NOW
                    )
                    await session.commit()
                    return booking.id
                except ConflictError:
                    await session.rollback()
                    return None

        results = await asyncio.gather(attempt(renter_id), attempt(uuid.uuid4()))

        assert len([r for r in results if r is not None]) == 1
        async with session_maker() as session:
            claimed = (await session.execute(select(BookedDay).where(BookedDay.listing_id == listing.id))).scalars()
            assert len(claimed.all()) == 2


class TestApprovalAndPayment:
    async def test_submit_routes_to_owner_approval(self, db, gateway, make_listing, renter_id):
        listing = await make_listing()
        start = NOW + timedelta(days=3)
        booking = await booking_service.request_booking(
            db, listing.id, renter_id, start, start + timedelta(days=1), now=NOW
        )

        await booking_service.submit(db, gateway, booking.id, renter_id, now=NOW)

        assert booking.status == BookingStatus.PENDING_OWNER_APPROVAL.value

    async def test_instant_book_skips_owner_approval(self, db, gateway, make_listing, renter_id):
        listing = await make_listing(instant_book=True, deposit="50.00")
        start = NOW + timedelta(days=3)
        booking = await booking_service.request_booking(
            db, listing.id, renter_id, start, start + timedelta(days=1), payment_method="pm_card_visa", now=NOW
        )

        await booking_service.submit(db, gateway, booking.id, renter_id, now=NOW)

        assert booking.status == BookingStatus.PENDING_PAYMENT.value
        assert len(gateway.calls_for("authorize")) == 1

    async def test_only_owner_can_approve(self, db, gateway, make_listing, renter_id):
        listing = await make_listing()
        start = NOW + timedelta(days=3)
        booking = await booking_service.request_booking(
            db, listing.id, renter_id, start, start + timedelta(days=1), now=NOW
        )
        with pytest.raises(AuthorizationError):
            await booking_service.approve(db, gateway, booking.id, renter_id, now=NOW)

    async def test_payment_posts_balanced_entries(self, db, make_listing, confirmed_booking, standard_fees):
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        assert booking.status == BookingStatus.CONFIRMED.value
        payment = await ledger_store.entries_for_reference(db, TransactionType.PAYMENT, booking.payment_reference)
        earning = await ledger_store.entries_for_reference(
            db, TransactionType.OWNER_EARNING, booking.payment_reference
        )
        assert lines_of(payment) == {
            (AccountType.RENTER_RECEIVABLE.value, "debit", Decimal("220.00")),
            (AccountType.PLATFORM_REVENUE.value, "credit", Decimal("220.00")),
        }
        assert lines_of(earning) == {
            (AccountType.PLATFORM_REVENUE.value, "debit", Decimal("220.00")),
            (AccountType.OWNER_RECEIVABLE.value, "credit", Decimal("180.00")),
            (AccountType.PLATFORM_REVENUE.value, "credit", Decimal("40.00")),
        }
        assert await ledger_store.unbalanced_groups(db, booking.id) == []

    async def test_deposit_split_matches_rental(self, db, make_listing, confirmed_booking, no_fees, monkeypatch):
        from rentflow.config import settings

        monkeypatch.setattr(settings, "platform_commission_percent", Decimal("10"))
        listing = await make_listing(base_price="125.00", deposit="50.00")
        booking = await confirmed_booking(listing)

        assert booking.total_price == Decimal("300.00")
        earning = await ledger_store.entries_for_reference(
            db, TransactionType.OWNER_EARNING, booking.payment_reference
        )
        credits = {e.account_type: e.amount for e in earning if e.side == "credit"}
        assert credits == {
            AccountType.OWNER_RECEIVABLE.value: Decimal("225.00"),
            AccountType.PLATFORM_REVENUE.value: Decimal("25.00"),
        }
        assert sum(credits.values()) == Decimal("250.00")

        hold_posting = await ledger_store.entries_for_booking(db, booking.id)
        liability = [e for e in hold_posting if e.account_type == AccountType.DEPOSIT_LIABILITY.value]
        assert [(e.side, e.amount) for e in liability] == [("credit", Decimal("50.00"))]

    async def test_confirm_payment_is_idempotent(self, db, make_listing, confirmed_booking):
        listing = await make_listing()
        booking = await confirmed_booking(listing)
        entries_before = len(await ledger_store.entries_for_booking(db, booking.id))

        again = await booking_service.confirm_payment(db, booking.id, booking.payment_reference, now=NOW)

        assert again.status == BookingStatus.CONFIRMED.value
        assert len(await ledger_store.entries_for_booking(db, booking.id)) == entries_before

    async def test_second_payment_reference_conflicts(self, db, make_listing, confirmed_booking):
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        with pytest.raises(ConflictError):
            await booking_service.confirm_payment(db, booking.id, "pi_other", now=NOW)

    async def test_declined_charge_leaves_booking_unpaid(self, db, gateway, make_listing, renter_id):
        listing = await make_listing()
        start = NOW + timedelta(days=3)
        booking = await booking_service.request_booking(
            db, listing.id, renter_id, start, start + timedelta(days=1), payment_method="pm_card_visa", now=NOW
        )
        await booking_service.approve(db, gateway, booking.id, listing.owner_id, now=NOW)
        gateway.statuses["charge"] = OperationStatus.FAILED

        with pytest.raises(PaymentFailedError):
            await booking_service.collect_payment(db, gateway, booking.id, now=NOW)

        assert booking.status == BookingStatus.PENDING_PAYMENT.value
        assert booking.payment_reference is None

    async def test_pending_charge_posts_pending_entries(self, db, gateway, make_listing, renter_id):
        listing = await make_listing()
        gateway.statuses["charge"] = OperationStatus.PENDING
        start = NOW + timedelta(days=3)
        booking = await booking_service.request_booking(
            db, listing.id, renter_id, start, start + timedelta(days=1), payment_method="pm_card_visa", now=NOW
        )
        await booking_service.approve(db, gateway, booking.id, listing.owner_id, now=NOW)
        await booking_service.collect_payment(db, gateway, booking.id, now=NOW)

        assert await ledger_store.has_pending_entries(db, booking.id)
        statuses = {e.status for e in await ledger_store.entries_for_booking(db, booking.id)}
        assert statuses == {EntryStatus.PENDING.value}

    async def test_failed_payment_fails_earnings_and_cancels(self, db, gateway, make_listing, renter_id, owner_id):
        from rentflow.services.deposit_service import deposit_service

        listing = await make_listing(deposit="50.00")
        gateway.statuses["charge"] = OperationStatus.PENDING
        start = NOW + timedelta(days=3)
        booking = await booking_service.request_booking(
            db, listing.id, renter_id, start, start + timedelta(days=1), payment_method="pm_card_visa", now=NOW
        )
        await booking_service.approve(db, gateway, booking.id, owner_id, now=NOW)
        await booking_service.collect_payment(db, gateway, booking.id, now=NOW)
        assert booking.status == BookingStatus.CONFIRMED.value

        await booking_service.payment_failed(db, gateway, booking.id, "Card charged back", now=NOW)

        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.refund_amount == Decimal("0.00")
        entries = await ledger_store.entries_for_booking(db, booking.id)
        originals = [e for e in entries if e.reference_id == booking.payment_reference]
        assert {e.transaction_type for e in originals} >= {
            TransactionType.PAYMENT.value,
            TransactionType.OWNER_EARNING.value,
        }
        assert {e.status for e in originals} == {EntryStatus.FAILED.value}
        assert await ledger_store.pending_owner_balance(db, owner_id) == Decimal("0")
        assert await ledger_store.owner_balance(db, owner_id) == Decimal("0")
        assert await ledger_store.unbalanced_groups(db, booking.id) == []
        holds = await deposit_service.holds_for_booking(db, booking.id)
        assert [h.status for h in holds] == ["released"]

        rebooked = await booking_service.request_booking(
            db, listing.id, uuid.uuid4(), booking.start_date, booking.end_date, now=NOW
        )
        assert rebooked.status == BookingStatus.DRAFT.value

    async def test_settled_payment_cannot_be_failed(self, db, gateway, make_listing, confirmed_booking, owner_id):
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        with pytest.raises(InvalidTransitionError):
            await booking_service.payment_failed(db, gateway, booking.id, "Late chargeback", now=NOW)

        assert booking.status == BookingStatus.CONFIRMED.value
        earning = await ledger_store.entries_for_reference(
            db, TransactionType.OWNER_EARNING, booking.payment_reference
        )
        assert {e.status for e in earning} == {EntryStatus.SETTLED.value}


class TestRentalPeriod:
    async def test_check_in_before_window_is_too_early(self, db, make_listing, confirmed_booking, renter_id):
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        with pytest.raises(TooEarlyError) as exc_info:
            await booking_service.check_in(db, booking.id, renter_id, now=booking.start_date - timedelta(hours=2))

        assert exc_info.value.earliest_at == booking.start_date
        assert booking.status == BookingStatus.CONFIRMED.value

    async def test_early_check_in_allowance(self, db, make_listing, confirmed_booking, renter_id, monkeypatch):
        from rentflow.config import settings

        monkeypatch.setattr(settings, "check_in_early_minutes", 120)
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        await booking_service.check_in(db, booking.id, renter_id, now=booking.start_date - timedelta(hours=1))

        assert booking.status == BookingStatus.IN_PROGRESS.value

    async def test_invalid_transition_leaves_status(self, db, make_listing, confirmed_booking, renter_id):
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await booking_service.check_out(db, booking.id, renter_id, now=booking.end_date)

        assert exc_info.value.current_state == BookingStatus.CONFIRMED.value
        assert exc_info.value.attempted_state == BookingStatus.AWAITING_RETURN_INSPECTION.value
        assert booking.status == BookingStatus.CONFIRMED.value

    async def test_full_lifecycle_to_settled(self, db, gateway, make_listing, returned_booking, owner_id):
        listing = await make_listing(deposit="50.00")
        booking = await returned_booking(listing)

        booking, dispute = await booking_service.complete_inspection(
            db, gateway, booking.id, owner_id, has_issues=False, now=booking.end_date + timedelta(hours=2)
        )
        assert dispute is None
        assert booking.status == BookingStatus.COMPLETED.value

        await booking_service.settle(db, booking.id, now=booking.end_date + timedelta(days=1))

        assert booking.status == BookingStatus.SETTLED.value
        history = await booking_service.history(db, booking.id)
        assert [h.to_status for h in history] == [
            "draft",
            "pending_payment",
            "confirmed",
            "in_progress",
            "awaiting_return_inspection",
            "completed",
            "settled",
        ]
        assert [h.sequence for h in history] == list(range(1, 8))
        assert history[0].from_status is None
        assert await ledger_store.unbalanced_groups(db, booking.id) == []

    async def test_settle_requires_settled_entries(self, db, gateway, make_listing, renter_id, owner_id):
        listing = await make_listing()
        gateway.statuses["charge"] = OperationStatus.PENDING
        start = NOW + timedelta(days=3)
        booking = await booking_service.request_booking(
            db, listing.id, renter_id, start, start + timedelta(days=1), payment_method="pm_card_visa", now=NOW
        )
        await booking_service.approve(db, gateway, booking.id, owner_id, now=NOW)
        await booking_service.collect_payment(db, gateway, booking.id, now=NOW)
        await booking_service.check_in(db, booking.id, renter_id, now=start)
        await booking_service.check_out(db, booking.id, renter_id, now=booking.end_date)
        await booking_service.complete_inspection(
            db, gateway, booking.id, owner_id, has_issues=False, now=booking.end_date
        )

        with pytest.raises(ValidationError):
            await booking_service.settle(db, booking.id)

        await ledger_store.settle(db, booking.payment_reference)
        await booking_service.settle(db, booking.id)
        assert booking.status == BookingStatus.SETTLED.value


class TestCancellation:
    async def test_flexible_cancel_early_refunds_in_full(
        self, db, gateway, make_listing, confirmed_booking, renter_id, standard_fees
    ):
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        await booking_service.cancel(db, gateway, booking.id, renter_id, "Plans changed", now=NOW)

        assert booking.status == BookingStatus.REFUNDED.value
        assert booking.refund_amount == Decimal("220.00")
        assert booking.cancelled_by == "renter"
        refund = await ledger_store.entries_for_reference(db, TransactionType.REFUND, refund_reference(booking.id))
        assert lines_of(refund) == {
            (AccountType.OWNER_RECEIVABLE.value, "debit", Decimal("180.00")),
            (AccountType.PLATFORM_REVENUE.value, "debit", Decimal("40.00")),
            (AccountType.RENTER_RECEIVABLE.value, "credit", Decimal("220.00")),
        }
        assert await ledger_store.owner_balance(db, booking.owner_id) == Decimal("0")
        assert gateway.calls_for("refund")[0]["amount"] == Decimal("220.00")

        history = [h.to_status for h in await booking_service.history(db, booking.id)]
        assert history[-2:] == ["cancelled", "refunded"]

    async def test_flexible_cancel_late_refunds_nothing(self, db, gateway, make_listing, confirmed_booking, renter_id):
        listing = await make_listing()
        booking = await confirmed_booking(listing)

        await booking_service.cancel(
            db, gateway, booking.id, renter_id, now=booking.start_date - timedelta(hours=10)
        )

        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.refund_amount == Decimal("0")
        assert gateway.calls_for("refund") == []
        with pytest.raises(NotFoundError):
            await ledger_store.entries_for_reference(db, TransactionType.REFUND, refund_reference(booking.id))

    async def test_moderate_partial_refund(self, db, gateway, make_listing, confirmed_booking, renter_id, no_fees):
        listing = await make_listing(policy="moderate")
        booking = await confirmed_booking(listing)

        await booking_service.cancel(db, gateway, booking.id, renter_id, now=booking.start_date - timedelta(hours=30))

        assert booking.status == BookingStatus.REFUNDED.value
        assert booking.refund_percentage == Decimal("0.5")
        assert booking.refund_amount == Decimal("100.00")
        assert await ledger_store.owner_balance(db, booking.owner_id) == Decimal("100.00")

    async def test_host_cancellation_is_full_refund(self, db, gateway, make_listing, confirmed_booking, owner_id):
        listing = await make_listing(policy="strict")
        booking = await confirmed_booking(listing)

        await booking_service.host_cancel(
            db, gateway, booking.id, owner_id, now=booking.start_date - timedelta(hours=1)
        )

        assert booking.cancelled_by == "owner"
        assert booking.refund_amount == booking.total_price

    async def test_cancel_releases_deposit_hold(self, db, gateway, make_listing, confirmed_booking, renter_id):
        from rentflow.services.deposit_service import deposit_service

        listing = await make_listing(deposit="50.00")
        booking = await confirmed_booking(listing)

        await booking_service.cancel(db, gateway, booking.id, renter_id, now=booking.start_date - timedelta(hours=1))

        holds = await deposit_service.holds_for_booking(db, booking.id)
        assert [h.status for h in holds] == ["released"]
        assert len(gateway.calls_for("void")) == 1

    async def test_cancel_frees_calendar(self, db, gateway, make_listing, confirmed_booking, renter_id):
        listing = await make_listing()
        booking = await confirmed_booking(listing)
        await booking_service.cancel(db, gateway, booking.id, renter_id, now=NOW)

        rebooked = await booking_service.request_booking(
            db, listing.id, uuid.uuid4(), booking.start_date, booking.end_date, now=NOW
        )
        assert rebooked.status == BookingStatus.DRAFT.value

    async def test_cancel_refused_after_completion(
        self, db, gateway, make_listing, returned_booking, owner_id, renter_id
    ):
        listing = await make_listing()
        booking = await returned_booking(listing)
        await booking_service.complete_inspection(
            db, gateway, booking.id, owner_id, has_issues=False, now=booking.end_date
        )

        with pytest.raises(InvalidTransitionError):
            await booking_service.cancel(db, gateway, booking.id, renter_id, now=booking.end_date)
        assert booking.status == BookingStatus.COMPLETED.value

    async def test_stale_requests_expire(self, db, gateway, make_listing, renter_id):
        from datetime import UTC, datetime

        listing = await make_listing()
        real_now = datetime.now(UTC)
        start = real_now + timedelta(days=10)
        booking = await booking_service.request_booking(
            db, listing.id, renter_id, start, start + timedelta(days=1), now=real_now
        )

        assert await booking_service.expire_stale_requests(db, gateway, now=real_now) == 0
        expired = await booking_service.expire_stale_requests(db, gateway, now=real_now + timedelta(hours=49))

        assert expired == 1
        assert booking.status == BookingStatus.CANCELLED.value
        assert booking.cancelled_by == "system"

    async def test_events_are_queued_in_outbox(self, db, make_listing, confirmed_booking):
        listing = await make_listing()
        booking = await confirmed_booking(listing)
        await db.flush()

        result = await db.execute(select(OutboxEvent.event_type).where(OutboxEvent.aggregate_id == booking.id))
        assert set(result.scalars().all()) >= {"BookingRequested", "BookingApproved", "BookingConfirmed"}
