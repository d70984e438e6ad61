"""Dispute resolution engine.

Disputes run a state machine parallel to the booking. Resolution may refund
the renter, adjust the owner's earnings and capture from the deposit hold,
then moves the booking to REFUNDED or back to where it was before the
dispute. Every change is appended to the dispute timeline.
"""

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.config import settings
from rentflow.core.exceptions import (
    AuthorizationError,
    ConflictError,
    ExpiredHoldError,
    InvalidTransitionError,
    NotFoundError,
    PaymentFailedError,
    ValidationError,
)
from rentflow.core.idempotency import generate_idempotency_key
from rentflow.database import flush_changes
from rentflow.domain.booking_state import BookingStatus, assert_booking_transition
from rentflow.domain.deposit_state import HoldStatus
from rentflow.domain.dispute_state import (
    ACTIVE_DISPUTE_STATUSES,
    ESCALATION_LADDER,
    DisputePriority,
    DisputeStatus,
    DisputeType,
    ResolutionOutcome,
    assert_dispute_transition,
    can_resolve_dispute,
)
from rentflow.domain.ledger_state import AccountType, EntryStatus, TransactionType
from rentflow.gateways.base import PaymentGateway
from rentflow.models.booking import Booking
from rentflow.models.deposit import DepositHold
from rentflow.models.dispute import Dispute, DisputeResolution, DisputeTimelineEntry
from rentflow.services.booking_transitions import get_booking, transition_booking
from rentflow.services.deposit_service import deposit_service
from rentflow.services.ledger_service import credit, debit, ledger_store
from rentflow.services.notification_service import notification_service

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
ACTIVE_STATUS_VALUES = [s.value for s in ACTIVE_DISPUTE_STATUSES]


def sla_hours(priority: DisputePriority) -> int:
    return {
        DisputePriority.URGENT: settings.dispute_sla_urgent_hours,
        DisputePriority.HIGH: settings.dispute_sla_high_hours,
        DisputePriority.MEDIUM: settings.dispute_sla_medium_hours,
        DisputePriority.LOW: settings.dispute_sla_low_hours,
    }[DisputePriority(priority)]


def adjustment_reference(dispute_id: UUID) -> str:
    return f"dispute-adjustment:{dispute_id}"


class DisputeService:
    """Service for dispute lifecycle."""

    async def get_dispute(self, db: AsyncSession, dispute_id: UUID, for_update: bool = False) -> Dispute:
        query = select(Dispute).where(Dispute.id == dispute_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        dispute = result.scalar_one_or_none()
        if not dispute:
            raise NotFoundError("Dispute", str(dispute_id))
        return dispute

    async def active_dispute_for_booking(self, db: AsyncSession, booking_id: UUID) -> Dispute | None:
        result = await db.execute(
            select(Dispute).where(
                Dispute.booking_id == booking_id,
                Dispute.status.in_(ACTIVE_STATUS_VALUES),
            )
        )
        return result.scalar_one_or_none()

    async def get_resolution(self, db: AsyncSession, dispute_id: UUID) -> DisputeResolution | None:
        result = await db.execute(
            select(DisputeResolution).where(DisputeResolution.dispute_id == dispute_id)
        )
        return result.scalar_one_or_none()

    async def timeline(self, db: AsyncSession, dispute_id: UUID) -> list[DisputeTimelineEntry]:
        await self.get_dispute(db, dispute_id)
        result = await db.execute(
            select(DisputeTimelineEntry)
            .where(DisputeTimelineEntry.dispute_id == dispute_id)
            .order_by(DisputeTimelineEntry.sequence)
        )
        return list(result.scalars().all())

    async def _append(
        self,
        db: AsyncSession,
        dispute: Dispute,
        event_type: str,
        actor_id: UUID | None = None,
        note: str | None = None,
        from_status: str | None = None,
        to_status: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> DisputeTimelineEntry:
        result = await db.execute(
            select(func.count(DisputeTimelineEntry.id)).where(DisputeTimelineEntry.dispute_id == dispute.id)
        )
        entry = DisputeTimelineEntry(
            dispute_id=dispute.id,
            sequence=(result.scalar() or 0) + 1,
            event_type=event_type,
            from_status=from_status,
            to_status=to_status,
            actor_id=actor_id,
            note=note,
            details=details,
        )
        db.add(entry)
        await db.flush()
        return entry

    async def _transition(
        self,
        db: AsyncSession,
        dispute: Dispute,
        target: DisputeStatus,
        actor_id: UUID | None,
        event_type: str,
        note: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> Dispute:
        current = dispute.status
        assert_dispute_transition(current, target.value)
        dispute.status = target.value
        await self._append(db, dispute, event_type, actor_id, note, current, target.value, details)
        await flush_changes(db)
        logger.info(f"Dispute {dispute.id}: {current} -> {target.value} by {actor_id or 'system'}")
        return dispute

    async def open_dispute(
        self,
        db: AsyncSession,
        booking_id: UUID,
        initiator_id: UUID,
        dispute_type: DisputeType,
        title: str,
        description: str,
        amount_claimed: Decimal = ZERO,
        priority: DisputePriority = DisputePriority.MEDIUM,
        evidence_urls: list[str] | None = None,
        condition_report_id: UUID | None = None,
        now: datetime | None = None,
    ) -> Dispute:
        """Open a dispute and move the booking to DISPUTED.

        Raises:
            AuthorizationError: If the initiator is not a party to the booking
            ConflictError: If the booking already has an active dispute
            InvalidTransitionError: If the booking cannot be disputed in its state
        """
        now = now or datetime.now(UTC)
        booking = await get_booking(db, booking_id, for_update=True)
        if initiator_id not in (booking.renter_id, booking.owner_id):
            raise AuthorizationError("Only the renter or the owner can open a dispute")
        if Decimal(amount_claimed) < 0:
            raise ValidationError("Claimed amount must not be negative")
        if await self.active_dispute_for_booking(db, booking.id):
            raise ConflictError(f"Booking {booking.booking_number} already has an active dispute")
        assert_booking_transition(booking.status, BookingStatus.DISPUTED.value)

        defendant_id = booking.owner_id if initiator_id == booking.renter_id else booking.renter_id
        priority = DisputePriority(priority)
        dispute = Dispute(
            booking_id=booking.id,
            condition_report_id=condition_report_id,
            initiator_id=initiator_id,
            defendant_id=defendant_id,
            dispute_type=DisputeType(dispute_type).value,
            title=title,
            description=description,
            amount_claimed=Decimal(amount_claimed),
            evidence_urls=evidence_urls,
            status=DisputeStatus.OPEN.value,
            priority=priority.value,
            sla_deadline=now + timedelta(hours=sla_hours(priority)),
        )
        db.add(dispute)
        await db.flush()

        booking.pre_dispute_status = booking.status
        await transition_booking(
            db,
            booking,
            BookingStatus.DISPUTED,
            initiator_id,
            f"Dispute opened: {title}",
            {"dispute_id": str(dispute.id)},
        )
        await self._append(
            db,
            dispute,
            "opened",
            initiator_id,
            description,
            to_status=DisputeStatus.OPEN.value,
            details={"dispute_type": dispute.dispute_type, "amount_claimed": str(dispute.amount_claimed)},
        )
        await notification_service.emit(
            db,
            notification_service.DISPUTE_OPENED,
            "dispute",
            dispute.id,
            {
                "booking_id": booking.id,
                "booking_number": booking.booking_number,
                "initiator_id": initiator_id,
                "defendant_id": defendant_id,
                "dispute_type": dispute.dispute_type,
                "priority": dispute.priority,
                "sla_deadline": dispute.sla_deadline,
            },
        )

        logger.info(f"Dispute {dispute.id} opened on booking {booking.booking_number} by {initiator_id}")
        return dispute

    async def start_review(
        self,
        db: AsyncSession,
        dispute_id: UUID,
        actor_id: UUID,
        assigned_to: UUID | None = None,
        note: str | None = None,
    ) -> Dispute:
        dispute = await self.get_dispute(db, dispute_id, for_update=True)
        dispute.assigned_to = assigned_to or actor_id
        return await self._transition(db, dispute, DisputeStatus.UNDER_REVIEW, actor_id, "review_started", note)

    async def investigate(
        self, db: AsyncSession, dispute_id: UUID, actor_id: UUID, note: str | None = None
    ) -> Dispute:
        dispute = await self.get_dispute(db, dispute_id, for_update=True)
        return await self._transition(
            db, dispute, DisputeStatus.INVESTIGATING, actor_id, "investigation_started", note
        )

    async def request_response(
        self, db: AsyncSession, dispute_id: UUID, actor_id: UUID, note: str | None = None
    ) -> Dispute:
        dispute = await self.get_dispute(db, dispute_id, for_update=True)
        return await self._transition(
            db,
            dispute,
            DisputeStatus.AWAITING_RESPONSE,
            actor_id,
            "response_requested",
            note,
            {"requested_from": str(dispute.defendant_id)},
        )

    async def start_mediation(
        self, db: AsyncSession, dispute_id: UUID, actor_id: UUID, note: str | None = None
    ) -> Dispute:
        dispute = await self.get_dispute(db, dispute_id, for_update=True)
        return await self._transition(db, dispute, DisputeStatus.IN_MEDIATION, actor_id, "mediation_started", note)

    async def add_comment(
        self, db: AsyncSession, dispute_id: UUID, actor_id: UUID, note: str
    ) -> DisputeTimelineEntry:
        dispute = await self.get_dispute(db, dispute_id, for_update=True)
        if dispute.status == DisputeStatus.CLOSED.value:
            raise ValidationError("Cannot comment on a closed dispute")
        return await self._append(db, dispute, "comment", actor_id, note)

    async def resolve(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        dispute_id: UUID,
        outcome: ResolutionOutcome,
        resolved_by: UUID,
        refund_amount: Decimal = ZERO,
        payout_adjustment: Decimal = ZERO,
        deposit_deduction: Decimal = ZERO,
        notes: str | None = None,
        now: datetime | None = None,
    ) -> Dispute:
        """Resolve a dispute and apply its financial outcome.

        Args:
            outcome: Resolution outcome
            refund_amount: Amount returned to the renter, taken from the owner's
                earnings first and the platform fee after that
            payout_adjustment: Signed correction of the owner's earnings
            deposit_deduction: Amount captured from the deposit hold for the owner

        Raises:
            InvalidTransitionError: If the dispute is already resolved or closed
            ValidationError: If the amounts do not fit the booking
            ExpiredHoldError: If the deposit hold lapsed; nothing is committed
            PaymentFailedError: If the gateway declines the capture or the refund

        Gateway calls carry keys derived from the dispute and the hold, so a
        retry after a rolled back attempt repeats none of them.
        """
        now = now or datetime.now(UTC)
        outcome = ResolutionOutcome(outcome)
        refund_amount = Decimal(refund_amount)
        payout_adjustment = Decimal(payout_adjustment)
        deposit_deduction = Decimal(deposit_deduction)

        dispute = await self.get_dispute(db, dispute_id, for_update=True)
        allowed, reason = can_resolve_dispute(dispute.status)
        if not allowed:
            logger.info(f"Dispute {dispute.id} not resolvable: {reason}")
            raise InvalidTransitionError("dispute", dispute.status, DisputeStatus.RESOLVED.value)
        assert_dispute_transition(dispute.status, DisputeStatus.RESOLVED.value)

        booking = await get_booking(db, dispute.booking_id, for_update=True)
        self._validate_amounts(booking, outcome, refund_amount, payout_adjustment, deposit_deduction)
        if booking.status != BookingStatus.DISPUTED.value:
            raise InvalidTransitionError("booking", booking.status, BookingStatus.REFUNDED.value)
        if deposit_deduction > 0:
            await self._check_deductible_hold(db, booking, deposit_deduction, now)

        actions: list[tuple[str, str, dict[str, Any]]] = []

        if deposit_deduction > 0:
            hold = await deposit_service.capture_for_booking(
                db, gateway, booking.id, deposit_deduction, f"Dispute {dispute.id}: {outcome.value}", now
            )
            actions.append(
                (
                    "deposit_captured",
                    f"Captured {deposit_deduction} from the deposit",
                    {"hold_id": str(hold.id), "amount": str(deposit_deduction)},
                )
            )

        if refund_amount > 0:
            await self._refund(db, gateway, dispute, booking, refund_amount, resolved_by)
            actions.append(
                ("refund_issued", f"Refunded {refund_amount} to the renter", {"amount": str(refund_amount)})
            )

        if payout_adjustment != 0:
            await self._adjust_payout(db, dispute, booking, payout_adjustment, resolved_by)
            actions.append(
                (
                    "payout_adjusted",
                    f"Owner earnings adjusted by {payout_adjustment}",
                    {"amount": str(payout_adjustment)},
                )
            )

        if refund_amount > 0:
            released = await deposit_service.release_if_active(
                db, gateway, booking.id, f"Dispute {dispute.id} refunded", now
            )
            if released:
                actions.append(("deposit_released", "Deposit hold released", {"hold_id": str(released.id)}))
            booking.refund_amount = (booking.refund_amount or ZERO) + refund_amount
            target = BookingStatus.REFUNDED
        else:
            target = BookingStatus(booking.pre_dispute_status or BookingStatus.COMPLETED.value)

        booking.pre_dispute_status = None
        await transition_booking(
            db, booking, target, resolved_by, f"Dispute resolved: {outcome.value}", {"dispute_id": str(dispute.id)}
        )
        actions.append(("booking_updated", f"Booking moved to {target.value}", {"status": target.value}))

        resolution = DisputeResolution(
            dispute_id=dispute.id,
            outcome=outcome.value,
            refund_amount=refund_amount,
            payout_adjustment=payout_adjustment,
            deposit_deduction=deposit_deduction,
            notes=notes,
            resolved_by=resolved_by,
        )
        db.add(resolution)

        dispute.resolved_at = now
        await self._transition(
            db,
            dispute,
            DisputeStatus.RESOLVED,
            resolved_by,
            "resolved",
            notes,
            {"outcome": outcome.value},
        )
        for event_type, note, details in actions:
            await self._append(db, dispute, event_type, resolved_by, note, details=details)

        await notification_service.emit(
            db,
            notification_service.DISPUTE_RESOLVED,
            "dispute",
            dispute.id,
            {
                "booking_id": booking.id,
                "outcome": outcome.value,
                "refund_amount": refund_amount,
                "payout_adjustment": payout_adjustment,
                "deposit_deduction": deposit_deduction,
                "booking_status": booking.status,
            },
        )
        logger.info(
            f"Dispute {dispute.id} resolved ({outcome.value}): refund={refund_amount}"
            f" adjustment={payout_adjustment} deposit={deposit_deduction}"
        )
        return dispute

    async def _check_deductible_hold(
        self, db: AsyncSession, booking: Booking, amount: Decimal, now: datetime
    ) -> DepositHold:
        """Ensure a funded, unexpired hold covers ``amount`` before any money moves."""
        hold = await deposit_service.active_hold_for_booking(db, booking.id, for_update=True)
        if hold is None:
            raise ValidationError(f"Booking {booking.booking_number} has no active deposit hold to deduct from")
        if amount > hold.amount:
            raise ValidationError(f"Deposit deduction {amount} exceeds the held {hold.amount}")
        if now >= hold.expires_at:
            # The expiry sweep records the lapse; this unit of work commits nothing.
            raise ExpiredHoldError(str(hold.id), hold.expires_at, persist_changes=False)
        if not hold.liability_posted:
            raise InvalidTransitionError("deposit hold", "authorized (unpaid booking)", HoldStatus.CAPTURED.value)
        return hold

    def _validate_amounts(
        self,
        booking: Booking,
        outcome: ResolutionOutcome,
        refund_amount: Decimal,
        payout_adjustment: Decimal,
        deposit_deduction: Decimal,
    ) -> None:
        if refund_amount < 0 or deposit_deduction < 0:
            raise ValidationError("Refund and deposit deduction must not be negative")
        if outcome == ResolutionOutcome.NO_ACTION and (refund_amount or payout_adjustment or deposit_deduction):
            raise ValidationError("A no-action resolution cannot move money")
        if refund_amount > 0 and not booking.payment_reference:
            raise ValidationError("Cannot refund a booking that was never paid")

        refundable = booking.total_price - booking.deposit_amount - (booking.refund_amount or ZERO)
        if refund_amount > refundable:
            raise ValidationError(f"Refund {refund_amount} exceeds the refundable {refundable}")
        if deposit_deduction > booking.deposit_amount:
            raise ValidationError(
                f"Deposit deduction {deposit_deduction} exceeds the deposit {booking.deposit_amount}"
            )

    async def _refund(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        dispute: Dispute,
        booking: Booking,
        amount: Decimal,
        actor_id: UUID,
    ) -> None:
        result = await gateway.refund(
            payment_ref=booking.payment_reference,
            amount=amount,
            currency=booking.currency,
            idempotency_key=generate_idempotency_key("dispute_refund", dispute.id, {"amount": amount}),
            reason=f"Dispute {dispute.id}",
        )
        if not result.success:
            logger.warning(f"Dispute refund declined for {dispute.id}: {result.error_message}")
            raise PaymentFailedError(f"Refund failed: {result.error_message}")

        owner_share = min(amount, booking.owner_earnings)
        await ledger_store.post(
            db,
            TransactionType.DISPUTE_REFUND,
            str(dispute.id),
            [
                debit(AccountType.OWNER_RECEIVABLE, owner_share, booking.owner_id),
                debit(AccountType.PLATFORM_REVENUE, amount - owner_share),
                credit(AccountType.RENTER_RECEIVABLE, amount, booking.renter_id),
            ],
            booking_id=booking.id,
            status=EntryStatus.SETTLED if result.settled else EntryStatus.PENDING,
            description=f"Dispute refund for booking {booking.booking_number}",
            created_by=actor_id,
            currency=booking.currency,
        )

    async def _adjust_payout(
        self,
        db: AsyncSession,
        dispute: Dispute,
        booking: Booking,
        amount: Decimal,
        actor_id: UUID,
    ) -> None:
        if amount > 0:
            lines = [
                debit(AccountType.PLATFORM_REVENUE, amount),
                credit(AccountType.OWNER_RECEIVABLE, amount, booking.owner_id),
            ]
        else:
            lines = [
                debit(AccountType.OWNER_RECEIVABLE, -amount, booking.owner_id),
                credit(AccountType.PLATFORM_REVENUE, -amount),
            ]
        await ledger_store.post(
            db,
            TransactionType.DISPUTE_ADJUSTMENT,
            adjustment_reference(dispute.id),
            lines,
            booking_id=booking.id,
            status=EntryStatus.SETTLED,
            description=f"Dispute adjustment for booking {booking.booking_number}",
            created_by=actor_id,
            currency=booking.currency,
        )

    async def close(
        self, db: AsyncSession, dispute_id: UUID, actor_id: UUID, note: str | None = None
    ) -> Dispute:
        """RESOLVED -> CLOSED."""
        dispute = await self.get_dispute(db, dispute_id, for_update=True)
        if dispute.status != DisputeStatus.RESOLVED.value:
            raise InvalidTransitionError("dispute", dispute.status, DisputeStatus.CLOSED.value)
        dispute.closed_at = datetime.now(UTC)
        return await self._transition(db, dispute, DisputeStatus.CLOSED, actor_id, "closed", note)

    async def dismiss(
        self,
        db: AsyncSession,
        dispute_id: UUID,
        actor_id: UUID,
        reason: str,
        now: datetime | None = None,
    ) -> Dispute:
        """Close an unresolved dispute without action; the booking returns to its prior state."""
        now = now or datetime.now(UTC)
        dispute = await self.get_dispute(db, dispute_id, for_update=True)
        if DisputeStatus(dispute.status) not in ACTIVE_DISPUTE_STATUSES:
            raise InvalidTransitionError("dispute", dispute.status, DisputeStatus.CLOSED.value)

        booking = await get_booking(db, dispute.booking_id, for_update=True)
        if booking.status == BookingStatus.DISPUTED.value:
            target = BookingStatus(booking.pre_dispute_status or BookingStatus.COMPLETED.value)
            booking.pre_dispute_status = None
            await transition_booking(
                db, booking, target, actor_id, f"Dispute dismissed: {reason}", {"dispute_id": str(dispute.id)}
            )

        dispute.dismissal_reason = reason
        dispute.closed_at = now
        return await self._transition(db, dispute, DisputeStatus.CLOSED, actor_id, "dismissed", reason)

    async def escalate_overdue(self, db: AsyncSession, now: datetime | None = None) -> int:
        """Sweep: bump the priority of active disputes past their SLA deadline, once each."""
        now = now or datetime.now(UTC)
        result = await db.execute(
            select(Dispute)
            .where(
                Dispute.status.in_(ACTIVE_STATUS_VALUES),
                Dispute.sla_deadline <= now,
                Dispute.escalated_at.is_(None),
            )
            .with_for_update(skip_locked=True)
        )
        disputes = result.scalars().all()

        for dispute in disputes:
            previous = dispute.priority
            dispute.priority = ESCALATION_LADDER[DisputePriority(previous)].value
            dispute.escalated_at = now
            await self._append(
                db,
                dispute,
                "escalated",
                note=f"SLA deadline {dispute.sla_deadline.isoformat()} passed",
                details={"from_priority": previous, "to_priority": dispute.priority},
            )
            await notification_service.emit(
                db,
                notification_service.DISPUTE_ESCALATED,
                "dispute",
                dispute.id,
                {
                    "booking_id": dispute.booking_id,
                    "priority": dispute.priority,
                    "sla_deadline": dispute.sla_deadline,
                    "assigned_to": dispute.assigned_to,
                },
            )
            logger.warning(f"Dispute {dispute.id} escalated {previous} -> {dispute.priority}")

        await flush_changes(db)
        return len(disputes)


dispute_service = DisputeService()
