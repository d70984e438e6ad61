"""Booking lifecycle orchestration.

Drives a booking through its state machine and performs the money side of
each transition: deposit holds on entry to payment, the payment and
owner-earning postings on confirmation, refunds on cancellation.
"""

import logging
from datetime import UTC, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.config import settings
from rentflow.core.exceptions import (
    AuthorizationError,
    AuthorizationFailedError,
    ConflictError,
    ExpiredHoldError,
    InvalidTransitionError,
    PaymentFailedError,
    TooEarlyError,
    ValidationError,
)
from rentflow.core.idempotency import generate_idempotency_key
from rentflow.domain.booking_state import (
    CANCELLABLE_STATUSES,
    UNPAID_STATUSES,
    BookingStatus,
    assert_booking_transition,
)
from rentflow.domain.cancellation_policy import refund_amount, refund_percentage
from rentflow.domain.dispute_state import DisputePriority, DisputeType
from rentflow.domain.ledger_state import AccountType, EntryStatus, TransactionType
from rentflow.gateways.base import PaymentGateway
from rentflow.models.booking import Booking, BookingStateHistory
from rentflow.models.dispute import Dispute
from rentflow.schemas.category_data import parse_category_data
from rentflow.services.booking_transitions import (
    booking_history,
    claim_calendar,
    get_booking,
    record_history,
    transition_booking,
)
from rentflow.services.catalog_service import catalog_service
from rentflow.services.deposit_service import deposit_service
from rentflow.services.dispute_service import dispute_service
from rentflow.services.ledger_service import credit, debit, ledger_store
from rentflow.services.notification_service import notification_service
from rentflow.services.pricing_service import assert_price_invariants, pricing_service
from rentflow.utils.booking_number import generate_booking_number

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def refund_reference(booking_id: UUID) -> str:
    return f"refund:{booking_id}"


def _require_aware(value: datetime, field: str) -> None:
    if value.tzinfo is None:
        raise ValidationError(f"{field} must include a timezone")


def _require_owner(booking: Booking, actor_id: UUID | None) -> None:
    if actor_id != booking.owner_id:
        raise AuthorizationError("Only the owner can perform this action")


def _require_party(booking: Booking, actor_id: UUID | None) -> None:
    if actor_id not in (booking.renter_id, booking.owner_id):
        raise AuthorizationError("Only the renter or the owner can perform this action")


def _cancelled_by(booking: Booking, actor_id: UUID | None) -> str:
    if actor_id is None:
        return "system"
    if actor_id == booking.owner_id:
        return "owner"
    return "renter"


def split_refund(booking: Booking, amount: Decimal) -> tuple[Decimal, Decimal]:
    """Split a rental refund between owner earnings and platform fee pro rata."""
    refundable = booking.total_price - booking.deposit_amount
    if refundable <= 0:
        return Decimal("0.00"), Decimal("0.00")
    owner_share = (amount * booking.owner_earnings / refundable).quantize(CENT, rounding=ROUND_HALF_UP)
    owner_share = min(owner_share, booking.owner_earnings, amount)
    return owner_share, amount - owner_share


class BookingService:
    """Commands over the booking state machine."""

    async def get(self, db: AsyncSession, booking_id: UUID) -> Booking:
        return await get_booking(db, booking_id)

    async def history(self, db: AsyncSession, booking_id: UUID) -> list[BookingStateHistory]:
        await get_booking(db, booking_id)
        return await booking_history(db, booking_id)

    async def request_booking(
        self,
        db: AsyncSession,
        listing_id: UUID,
        renter_id: UUID,
        start_date: datetime,
        end_date: datetime,
        guest_count: int = 1,
        payment_method: str | None = None,
        category_data: dict | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """Create a DRAFT booking and claim the listing calendar.

        Raises:
            ValidationError: If the window or guest count is not bookable
            ConflictError: If an active booking overlaps the window
        """
        now = now or datetime.now(UTC)
        _require_aware(start_date, "start_date")
        _require_aware(end_date, "end_date")
        if end_date <= start_date:
            raise ValidationError("Rental end must be after its start")
        if start_date < now:
            raise ValidationError("Rental cannot start in the past")
        if guest_count < 1:
            raise ValidationError("At least one guest is required")

        terms = await catalog_service.get_terms(db, listing_id, lock=True)
        if terms.owner_id == renter_id:
            raise ValidationError("Owners cannot book their own listing")
        terms.assert_bookable(start_date, end_date, guest_count)
        details = parse_category_data(terms.category, category_data)

        # Pin the policy version that applies to this booking.
        policy = await catalog_service.get_policy(db, terms.cancellation_policy_id)

        quote = pricing_service.quote(
            terms.base_price,
            start_date,
            end_date,
            deposit_amount=terms.deposit_amount,
            weekly_discount_percent=terms.weekly_discount_percent,
            monthly_discount_percent=terms.monthly_discount_percent,
            currency=terms.currency,
        )

        booking = Booking(
            booking_number=await generate_booking_number(db),
            listing_id=terms.listing_id,
            renter_id=renter_id,
            owner_id=terms.owner_id,
            cancellation_policy_id=policy.id,
            start_date=start_date,
            end_date=end_date,
            guest_count=guest_count,
            status=BookingStatus.DRAFT.value,
            rental_days=quote.rental_days,
            rental_amount=quote.rental_amount,
            base_price=quote.base_price,
            service_fee=quote.service_fee,
            tax=quote.tax,
            deposit_amount=quote.deposit_amount,
            discount_amount=quote.discount_amount,
            total_price=quote.total_price,
            owner_earnings=quote.owner_earnings,
            platform_fee=quote.platform_fee,
            currency=quote.currency,
            requires_deposit=terms.requires_deposit and quote.deposit_amount > 0,
            payment_method=payment_method,
            category_data=details.model_dump(mode="json") if details else None,
        )
        db.add(booking)
        await db.flush()

        await claim_calendar(db, booking)
        await record_history(db, booking, None, BookingStatus.DRAFT.value, renter_id, "Booking requested")
        await notification_service.emit(
            db,
            notification_service.BOOKING_REQUESTED,
            "booking",
            booking.id,
            {
                "booking_number": booking.booking_number,
                "listing_id": booking.listing_id,
                "renter_id": renter_id,
                "owner_id": booking.owner_id,
                "start_date": start_date,
                "end_date": end_date,
                "total_price": booking.total_price,
            },
        )
        await db.flush()

        logger.info(
            f"Booking {booking.booking_number} requested for listing {listing_id} by {renter_id}:"
            f" {start_date.isoformat()} - {end_date.isoformat()} total {booking.total_price}"
        )
        return booking

    async def submit(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        actor_id: UUID,
        now: datetime | None = None,
    ) -> Booking:
        """Send a draft to the owner, or straight to payment for instant-book listings."""
        booking = await get_booking(db, booking_id, for_update=True)
        if actor_id != booking.renter_id:
            raise AuthorizationError("Only the renter can submit this booking")

        terms = await catalog_service.get_terms(db, booking.listing_id)
        if terms.instant_book:
            await transition_booking(
                db, booking, BookingStatus.PENDING_PAYMENT, actor_id, "Instant booking submitted"
            )
            await self._on_pending_payment(db, gateway, booking, now)
        else:
            await transition_booking(
                db, booking, BookingStatus.PENDING_OWNER_APPROVAL, actor_id, "Submitted for owner approval"
            )
        return booking

    async def approve(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        actor_id: UUID,
        now: datetime | None = None,
    ) -> Booking:
        """Owner approval: DRAFT/PENDING_OWNER_APPROVAL -> PENDING_PAYMENT."""
        booking = await get_booking(db, booking_id, for_update=True)
        _require_owner(booking, actor_id)

        await transition_booking(db, booking, BookingStatus.PENDING_PAYMENT, actor_id, "Approved by owner")
        await notification_service.emit(
            db,
            notification_service.BOOKING_APPROVED,
            "booking",
            booking.id,
            {"booking_number": booking.booking_number, "renter_id": booking.renter_id},
        )
        await self._on_pending_payment(db, gateway, booking, now)
        return booking

    async def _on_pending_payment(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking: Booking,
        now: datetime | None,
    ) -> None:
        if not booking.requires_deposit or not booking.payment_method:
            return
        try:
            await deposit_service.authorize(db, gateway, booking, now=now)
        except AuthorizationFailedError as exc:
            # The booking stays in PENDING_PAYMENT; the renter retries with another method.
            logger.warning(f"Booking {booking.booking_number} awaiting deposit retry: {exc.detail}")

    async def authorize_deposit(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        payment_method: str | None = None,
        now: datetime | None = None,
    ):
        """Place (or replace) the deposit hold for a booking."""
        booking = await get_booking(db, booking_id, for_update=True)
        if not booking.requires_deposit:
            raise ValidationError("This booking does not require a deposit")
        if booking.status not in (
            BookingStatus.PENDING_PAYMENT.value,
            BookingStatus.CONFIRMED.value,
            BookingStatus.IN_PROGRESS.value,
        ):
            raise InvalidTransitionError("booking", booking.status, BookingStatus.PENDING_PAYMENT.value)

        if payment_method:
            booking.payment_method = payment_method
        if booking.payment_reference:
            return await deposit_service.reauthorize(db, gateway, booking, payment_method, now)
        return await deposit_service.authorize(db, gateway, booking, payment_method, now=now)

    async def collect_payment(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        payment_method: str | None = None,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """Charge the renter and confirm the booking.

        The deposit is held, not charged, so the charge excludes it.

        Raises:
            PaymentFailedError: If the gateway declines the charge
        """
        booking = await get_booking(db, booking_id, for_update=True)
        if booking.payment_reference:
            return booking
        assert_booking_transition(booking.status, BookingStatus.CONFIRMED.value)

        if payment_method:
            booking.payment_method = payment_method
        if not booking.payment_method:
            raise ValidationError("A payment method is required")

        hold = None
        if booking.requires_deposit:
            hold = await deposit_service.active_hold_for_booking(db, booking.id)
            if hold is None:
                hold = await deposit_service.authorize(db, gateway, booking, now=now)

        amount = booking.total_price - booking.deposit_amount if hold else booking.total_price
        result = await gateway.charge(
            amount=amount,
            currency=booking.currency,
            payment_method=booking.payment_method,
            idempotency_key=generate_idempotency_key("booking_charge", booking.id, {"amount": amount}),
            description=f"Rental {booking.booking_number}",
            metadata={"booking_id": str(booking.id)},
        )
        if not result.success or not result.reference:
            logger.warning(f"Charge declined for booking {booking.booking_number}: {result.error_message}")
            raise PaymentFailedError(f"Payment failed: {result.error_message}")

        return await self.confirm_payment(
            db, booking.id, result.reference, settled=result.settled, actor_id=actor_id, now=now
        )

    async def confirm_payment(
        self,
        db: AsyncSession,
        booking_id: UUID,
        payment_reference: str,
        settled: bool = False,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """PENDING_PAYMENT -> CONFIRMED with the payment and owner-earning postings.

        Replaying the same ``payment_reference`` returns the booking unchanged.
        """
        now = now or datetime.now(UTC)
        booking = await get_booking(db, booking_id, for_update=True)

        if booking.payment_reference == payment_reference:
            logger.info(f"Payment {payment_reference} already confirmed for booking {booking.booking_number}")
            return booking
        if booking.payment_reference:
            raise ConflictError(
                f"Booking {booking.booking_number} was already paid with reference {booking.payment_reference}"
            )
        existing = await ledger_store.get_posting(db, TransactionType.PAYMENT, payment_reference)
        if existing:
            raise ConflictError(f"Payment reference {payment_reference} belongs to another booking")

        assert_booking_transition(booking.status, BookingStatus.CONFIRMED.value)
        assert_price_invariants(
            booking.base_price,
            booking.service_fee,
            booking.tax,
            booking.discount_amount,
            booking.deposit_amount,
            booking.total_price,
            booking.owner_earnings,
            booking.platform_fee,
        )

        hold = None
        if booking.requires_deposit:
            hold = await deposit_service.active_hold_for_booking(db, booking.id, for_update=True)
            if hold is None:
                raise ValidationError("The deposit hold must be authorized before the booking is confirmed")

        status = EntryStatus.SETTLED if settled else EntryStatus.PENDING
        rental_total = booking.total_price - booking.deposit_amount

        await ledger_store.post(
            db,
            TransactionType.PAYMENT,
            payment_reference,
            [
                debit(AccountType.RENTER_RECEIVABLE, booking.total_price, booking.renter_id),
                credit(AccountType.PLATFORM_REVENUE, booking.total_price),
            ],
            booking_id=booking.id,
            status=status,
            description=f"Payment for booking {booking.booking_number}",
            created_by=actor_id,
            currency=booking.currency,
        )
        await ledger_store.post(
            db,
            TransactionType.OWNER_EARNING,
            payment_reference,
            [
                debit(AccountType.PLATFORM_REVENUE, rental_total),
                credit(AccountType.OWNER_RECEIVABLE, booking.owner_earnings, booking.owner_id),
                credit(AccountType.PLATFORM_REVENUE, booking.platform_fee),
            ],
            booking_id=booking.id,
            status=status,
            description=f"Owner earnings for booking {booking.booking_number}",
            created_by=actor_id,
            currency=booking.currency,
        )
        if hold:
            await deposit_service.post_liability(db, hold, booking)

        booking.payment_reference = payment_reference
        booking.confirmed_at = now
        await transition_booking(
            db,
            booking,
            BookingStatus.CONFIRMED,
            actor_id,
            "Payment confirmed",
            {"payment_reference": payment_reference, "settled": settled},
        )
        await notification_service.emit(
            db,
            notification_service.BOOKING_CONFIRMED,
            "booking",
            booking.id,
            {
                "booking_number": booking.booking_number,
                "renter_id": booking.renter_id,
                "owner_id": booking.owner_id,
                "total_price": booking.total_price,
            },
        )
        return booking

    async def check_in(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """CONFIRMED -> IN_PROGRESS once the check-in window is open.

        Raises:
            TooEarlyError: Before ``start_date`` minus the early check-in allowance
            ExpiredHoldError: If the required deposit hold is missing or lapsed
        """
        now = now or datetime.now(UTC)
        booking = await get_booking(db, booking_id, for_update=True)
        if actor_id is not None:
            _require_party(booking, actor_id)
        assert_booking_transition(booking.status, BookingStatus.IN_PROGRESS.value)

        earliest = booking.start_date - timedelta(minutes=settings.check_in_early_minutes)
        if now < earliest:
            raise TooEarlyError(f"Check-in opens at {earliest.isoformat()}", earliest)

        if booking.requires_deposit:
            hold = await deposit_service.active_hold_for_booking(db, booking.id, for_update=True)
            if hold is None:
                holds = await deposit_service.holds_for_booking(db, booking.id)
                lapsed = holds[-1] if holds else None
                raise ExpiredHoldError(str(lapsed.id) if lapsed else "none", lapsed.expired_at if lapsed else None)
            if now >= hold.expires_at:
                await deposit_service.expire(db, hold, now)
                raise ExpiredHoldError(str(hold.id), hold.expires_at)

        booking.checked_in_at = now
        await transition_booking(db, booking, BookingStatus.IN_PROGRESS, actor_id, "Checked in")
        return booking

    async def check_out(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """IN_PROGRESS -> AWAITING_RETURN_INSPECTION."""
        now = now or datetime.now(UTC)
        booking = await get_booking(db, booking_id, for_update=True)
        if actor_id is not None:
            _require_party(booking, actor_id)
        assert_booking_transition(booking.status, BookingStatus.AWAITING_RETURN_INSPECTION.value)

        booking.returned_at = now
        await transition_booking(
            db, booking, BookingStatus.AWAITING_RETURN_INSPECTION, actor_id, "Item returned"
        )
        return booking

    async def complete_inspection(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        actor_id: UUID,
        has_issues: bool,
        notes: str | None = None,
        amount_claimed: Decimal = Decimal("0"),
        condition_report_id: UUID | None = None,
        now: datetime | None = None,
    ) -> tuple[Booking, Dispute | None]:
        """Close the return inspection.

        A clean inspection completes the booking and releases the deposit;
        reported issues open a dispute on the owner's behalf.
        """
        now = now or datetime.now(UTC)
        booking = await get_booking(db, booking_id, for_update=True)
        _require_owner(booking, actor_id)

        if has_issues:
            if booking.status != BookingStatus.AWAITING_RETURN_INSPECTION.value:
                raise InvalidTransitionError("booking", booking.status, BookingStatus.DISPUTED.value)
            dispute = await dispute_service.open_dispute(
                db,
                booking.id,
                initiator_id=actor_id,
                dispute_type=DisputeType.CONDITION_MISMATCH,
                title="Issues found at return inspection",
                description=notes or "The owner reported issues when inspecting the returned item.",
                amount_claimed=amount_claimed,
                priority=DisputePriority.HIGH if amount_claimed else DisputePriority.MEDIUM,
                condition_report_id=condition_report_id,
                now=now,
            )
            return booking, dispute

        assert_booking_transition(booking.status, BookingStatus.COMPLETED.value)
        await deposit_service.release_if_active(db, gateway, booking.id, "Return inspection passed", now)
        booking.completed_at = now
        await transition_booking(
            db, booking, BookingStatus.COMPLETED, actor_id, "Return inspection passed", {"notes": notes}
        )
        return booking, None

    async def settle(
        self,
        db: AsyncSession,
        booking_id: UUID,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """COMPLETED -> SETTLED once the deposit and every ledger entry are final.

        From here the owner's earnings are payout-eligible.
        """
        now = now or datetime.now(UTC)
        booking = await get_booking(db, booking_id, for_update=True)
        assert_booking_transition(booking.status, BookingStatus.SETTLED.value)

        if await deposit_service.active_hold_for_booking(db, booking.id):
            raise ValidationError("The deposit hold must be released or captured before settlement")
        if await ledger_store.has_pending_entries(db, booking.id):
            raise ValidationError("All ledger entries must be settled before the booking can settle")

        booking.settled_at = now
        await transition_booking(db, booking, BookingStatus.SETTLED, actor_id, "Booking settled")
        await notification_service.emit(
            db,
            notification_service.BOOKING_SETTLED,
            "booking",
            booking.id,
            {
                "booking_number": booking.booking_number,
                "owner_id": booking.owner_id,
                "owner_earnings": booking.owner_earnings,
            },
        )
        return booking

    async def cancel(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        actor_id: UUID | None,
        reason: str | None = None,
        now: datetime | None = None,
        host_cancellation: bool = False,
    ) -> Booking:
        """Cancel a booking and refund per its cancellation policy.

        The refund applies to the rental portion (total minus deposit); the
        deposit goes back by releasing the hold. A paid booking with a
        non-zero refund ends in REFUNDED, otherwise in CANCELLED.

        Raises:
            InvalidTransitionError: If the booking is completed, disputed or closed
            PaymentFailedError: If the gateway declines the refund
        """
        now = now or datetime.now(UTC)
        booking = await get_booking(db, booking_id, for_update=True)
        if actor_id is not None:
            _require_party(booking, actor_id)
        if BookingStatus(booking.status) not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError("booking", booking.status, BookingStatus.CANCELLED.value)

        policy = await catalog_service.get_policy(db, booking.cancellation_policy_id)
        percentage = refund_percentage(policy.refund_rules(), now, booking.start_date, host_cancellation)

        amount = Decimal("0.00")
        if booking.payment_reference:
            amount = refund_amount(percentage, booking.total_price - booking.deposit_amount)

        if amount > 0:
            result = await gateway.refund(
                payment_ref=booking.payment_reference,
                amount=amount,
                currency=booking.currency,
                idempotency_key=generate_idempotency_key("booking_refund", booking.id, {"amount": amount}),
                reason=reason or "Booking cancelled",
            )
            if not result.success:
                logger.warning(f"Refund declined for booking {booking.booking_number}: {result.error_message}")
                raise PaymentFailedError(f"Refund failed: {result.error_message}")

            owner_share, platform_share = split_refund(booking, amount)
            await ledger_store.post(
                db,
                TransactionType.REFUND,
                refund_reference(booking.id),
                [
                    debit(AccountType.OWNER_RECEIVABLE, owner_share, booking.owner_id),
                    debit(AccountType.PLATFORM_REVENUE, platform_share),
                    credit(AccountType.RENTER_RECEIVABLE, amount, booking.renter_id),
                ],
                booking_id=booking.id,
                status=EntryStatus.SETTLED if result.settled else EntryStatus.PENDING,
                description=f"Cancellation refund ({percentage * 100:.0f}%) for booking {booking.booking_number}",
                created_by=actor_id,
                currency=booking.currency,
            )

        await deposit_service.release_if_active(db, gateway, booking.id, "Booking cancelled", now)

        booking.cancelled_by = _cancelled_by(booking, actor_id)
        booking.cancellation_reason = reason
        booking.cancelled_at = now
        booking.refund_percentage = percentage
        booking.refund_amount = amount

        details = {
            "refund_percentage": str(percentage),
            "refund_amount": str(amount),
            "host_cancellation": host_cancellation,
        }
        await transition_booking(db, booking, BookingStatus.CANCELLED, actor_id, reason or "Cancelled", details)
        await notification_service.emit(
            db,
            notification_service.BOOKING_CANCELLED,
            "booking",
            booking.id,
            {
                "booking_number": booking.booking_number,
                "cancelled_by": booking.cancelled_by,
                "refund_amount": amount,
                "reason": reason,
            },
        )

        if amount > 0:
            await transition_booking(
                db, booking, BookingStatus.REFUNDED, actor_id, "Cancellation refund issued", details
            )
            await notification_service.emit(
                db,
                notification_service.BOOKING_REFUNDED,
                "booking",
                booking.id,
                {"booking_number": booking.booking_number, "refund_amount": amount},
            )
        return booking

    async def host_cancel(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        actor_id: UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """Owner cancellation or no-show: always a full refund."""
        booking = await get_booking(db, booking_id)
        _require_owner(booking, actor_id)
        return await self.cancel(
            db, gateway, booking_id, actor_id, reason or "Cancelled by owner", now, host_cancellation=True
        )

    async def payment_failed(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        reason: str | None = None,
        actor_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Booking:
        """The payment rail reported a pending charge as failed.

        Fails the whole posting set of the payment reference (payment and owner
        earnings), returns the deposit and cancels the booking without refund.

        Raises:
            ValidationError: If the booking was never paid
            InvalidTransitionError: If the payment already settled or the booking
                can no longer be cancelled
        """
        now = now or datetime.now(UTC)
        booking = await get_booking(db, booking_id, for_update=True)
        if not booking.payment_reference:
            raise ValidationError(f"Booking {booking.booking_number} has no payment to fail")
        if BookingStatus(booking.status) not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError("booking", booking.status, BookingStatus.CANCELLED.value)

        reason = reason or "Payment failed"
        await ledger_store.fail(db, booking.payment_reference, reason)
        await deposit_service.release_if_active(db, gateway, booking.id, "Payment failed", now)

        booking.cancelled_by = _cancelled_by(booking, actor_id)
        booking.cancellation_reason = reason
        booking.cancelled_at = now
        booking.refund_percentage = Decimal("0")
        booking.refund_amount = Decimal("0.00")
        await transition_booking(
            db,
            booking,
            BookingStatus.CANCELLED,
            actor_id,
            reason,
            {"payment_reference": booking.payment_reference, "payment_failed": True},
        )
        await notification_service.emit(
            db,
            notification_service.BOOKING_CANCELLED,
            "booking",
            booking.id,
            {
                "booking_number": booking.booking_number,
                "cancelled_by": booking.cancelled_by,
                "refund_amount": booking.refund_amount,
                "reason": reason,
            },
        )
        logger.warning(f"Payment {booking.payment_reference} failed; booking {booking.booking_number} cancelled")
        return booking

    async def expire_stale_requests(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        now: datetime | None = None,
    ) -> int:
        """Sweep: cancel unpaid requests older than the request TTL."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(hours=settings.booking_request_ttl_hours)
        result = await db.execute(
            select(Booking.id).where(
                Booking.status.in_([s.value for s in UNPAID_STATUSES]),
                Booking.payment_reference.is_(None),
                Booking.created_at <= cutoff,
            )
        )
        booking_ids = list(result.scalars().all())
        for booking_id in booking_ids:
            await self.cancel(db, gateway, booking_id, None, "Booking request expired", now)

        if booking_ids:
            logger.info(f"Expired {len(booking_ids)} stale booking request(s)")
        return len(booking_ids)


booking_service = BookingService()
