"""Security deposit hold manager.

A hold is a pre-authorization on the renter's payment method. Once the
booking is paid the held amount is carried as a deposit liability in the
ledger; capture moves (part of) it to the owner and release returns it to
the renter.
"""

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.config import settings
from rentflow.core.exceptions import (
    AuthorizationFailedError,
    ExpiredHoldError,
    InvalidTransitionError,
    NotFoundError,
    PaymentFailedError,
    ValidationError,
)
from rentflow.core.idempotency import generate_idempotency_key
from rentflow.database import flush_changes
from rentflow.domain.deposit_state import HoldStatus, assert_hold_transition
from rentflow.domain.ledger_state import AccountType, EntryStatus, TransactionType
from rentflow.gateways.base import PaymentGateway
from rentflow.models.booking import Booking
from rentflow.models.deposit import DepositHold
from rentflow.services.ledger_service import credit, debit, ledger_store
from rentflow.services.notification_service import notification_service

logger = logging.getLogger(__name__)


def hold_expiry(booking: Booking) -> datetime:
    """Holds stay valid for a grace period past the rental end."""
    return booking.end_date + timedelta(days=settings.deposit_hold_grace_days)


def capture_reference(hold_id: UUID) -> str:
    return f"capture:{hold_id}"


def release_reference(hold_id: UUID) -> str:
    return f"release:{hold_id}"


class DepositService:
    """Deposit hold lifecycle: authorize, capture, release, expire."""

    async def get_hold(self, db: AsyncSession, hold_id: UUID, for_update: bool = False) -> DepositHold:
        query = select(DepositHold).where(DepositHold.id == hold_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        hold = result.scalar_one_or_none()
        if not hold:
            raise NotFoundError("Deposit hold", str(hold_id))
        return hold

    async def active_hold_for_booking(
        self, db: AsyncSession, booking_id: UUID, for_update: bool = False
    ) -> DepositHold | None:
        query = (
            select(DepositHold)
            .where(
                DepositHold.booking_id == booking_id,
                DepositHold.status == HoldStatus.AUTHORIZED.value,
            )
            .order_by(DepositHold.created_at.desc())
            .limit(1)
        )
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def holds_for_booking(self, db: AsyncSession, booking_id: UUID) -> list[DepositHold]:
        result = await db.execute(
            select(DepositHold).where(DepositHold.booking_id == booking_id).order_by(DepositHold.created_at)
        )
        return list(result.scalars().all())

    async def authorize(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking: Booking,
        payment_method: str | None = None,
        amount: Decimal | None = None,
        replaces_hold_id: UUID | None = None,
        now: datetime | None = None,
    ) -> DepositHold:
        """Place a hold for the booking deposit.

        Returns the existing hold when one is already authorized.

        Raises:
            AuthorizationFailedError: If the gateway declines; a FAILED hold
                row is kept for the record
        """
        existing = await self.active_hold_for_booking(db, booking.id)
        if existing:
            return existing

        now = now or datetime.now(UTC)
        amount = Decimal(amount if amount is not None else booking.deposit_amount)
        if amount <= 0:
            raise ValidationError("Deposit amount must be positive")
        payment_method = payment_method or booking.payment_method

        attempts = await db.execute(
            select(func.count(DepositHold.id)).where(DepositHold.booking_id == booking.id)
        )
        attempt = (attempts.scalar() or 0) + 1
        idempotency_key = generate_idempotency_key(
            "deposit_authorize", booking.id, {"amount": amount, "attempt": attempt}
        )

        result = await gateway.authorize(
            amount=amount,
            currency=booking.currency,
            payment_method=payment_method,
            idempotency_key=idempotency_key,
            metadata={"booking_id": str(booking.id), "booking_number": booking.booking_number},
        )

        hold = DepositHold(
            booking_id=booking.id,
            renter_id=booking.renter_id,
            replaces_hold_id=replaces_hold_id,
            amount=amount,
            currency=booking.currency,
            payment_method=payment_method,
            idempotency_key=idempotency_key,
            expires_at=max(hold_expiry(booking), now + timedelta(days=settings.deposit_hold_grace_days)),
        )

        if not result.success:
            hold.status = HoldStatus.FAILED.value
            hold.failure_reason = result.error_message
            db.add(hold)
            await notification_service.emit(
                db,
                notification_service.DEPOSIT_AUTHORIZATION_FAILED,
                "booking",
                booking.id,
                {"booking_number": booking.booking_number, "amount": amount, "reason": result.error_message},
            )
            await db.flush()
            logger.warning(
                f"Deposit authorization declined for booking {booking.booking_number}: {result.error_message}"
            )
            raise AuthorizationFailedError(f"Deposit authorization failed: {result.error_message}")

        hold.status = HoldStatus.AUTHORIZED.value
        hold.external_hold_ref = result.reference
        hold.authorized_at = now
        db.add(hold)
        await db.flush()

        logger.info(f"Deposit hold {hold.id} authorized for booking {booking.booking_number}: {amount}")
        return hold

    async def post_liability(
        self,
        db: AsyncSession,
        hold: DepositHold,
        booking: Booking,
        funded_from: AccountType = AccountType.PLATFORM_REVENUE,
    ) -> None:
        """Carry the held amount as a deposit liability."""
        if hold.liability_posted:
            return
        await ledger_store.post(
            db,
            TransactionType.DEPOSIT_HOLD,
            str(hold.id),
            [
                debit(funded_from, hold.amount, booking.renter_id),
                credit(AccountType.DEPOSIT_LIABILITY, hold.amount, booking.renter_id),
            ],
            booking_id=booking.id,
            status=EntryStatus.SETTLED,
            description=f"Deposit held for booking {booking.booking_number}",
            currency=hold.currency,
        )
        hold.liability_posted = True

    async def _post_release(self, db: AsyncSession, hold: DepositHold, amount: Decimal, reason: str) -> None:
        if not hold.liability_posted or amount <= 0:
            return
        await ledger_store.post(
            db,
            TransactionType.DEPOSIT_RELEASE,
            release_reference(hold.id),
            [
                debit(AccountType.DEPOSIT_LIABILITY, amount, hold.renter_id),
                credit(AccountType.RENTER_RECEIVABLE, amount, hold.renter_id),
            ],
            booking_id=hold.booking_id,
            status=EntryStatus.SETTLED,
            description=reason,
            currency=hold.currency,
        )

    async def expire(self, db: AsyncSession, hold: DepositHold, now: datetime) -> None:
        assert_hold_transition(hold.status, HoldStatus.EXPIRED.value)
        hold.status = HoldStatus.EXPIRED.value
        hold.expired_at = now
        await self._post_release(db, hold, hold.amount, "Deposit liability released on hold expiry")
        if hold.booking_id:
            await notification_service.emit(
                db,
                notification_service.DEPOSIT_HOLD_EXPIRED,
                "booking",
                hold.booking_id,
                {"hold_id": hold.id, "expires_at": hold.expires_at},
            )
        await flush_changes(db)
        logger.warning(f"Deposit hold {hold.id} expired at {hold.expires_at.isoformat()}")

    async def capture(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        hold_id: UUID,
        deducted_amount: Decimal,
        reason: str,
        now: datetime | None = None,
    ) -> DepositHold:
        """Capture ``deducted_amount`` of a hold for the owner and release the rest.

        Capturing again with the same amount is a no-op.

        Raises:
            ValidationError: If the amount is not in (0, hold amount]; hold unchanged
            ExpiredHoldError: If the hold lapsed; it is marked EXPIRED
            InvalidTransitionError: If the hold is released, failed, unfunded
                or was captured for another amount
            PaymentFailedError: If the gateway declines; hold unchanged
        """
        now = now or datetime.now(UTC)
        deducted_amount = Decimal(deducted_amount)
        hold = await self.get_hold(db, hold_id, for_update=True)

        if hold.status == HoldStatus.CAPTURED.value:
            if hold.deducted_amount == deducted_amount:
                return hold
            raise InvalidTransitionError("deposit hold", hold.status, HoldStatus.CAPTURED.value)

        if deducted_amount <= 0 or deducted_amount > hold.amount:
            raise ValidationError(
                f"Deducted amount must be greater than 0 and at most the held {hold.amount}, got {deducted_amount}"
            )

        if hold.status == HoldStatus.EXPIRED.value:
            raise ExpiredHoldError(str(hold.id), hold.expired_at)
        if hold.status == HoldStatus.AUTHORIZED.value and now >= hold.expires_at:
            await self.expire(db, hold, now)
            raise ExpiredHoldError(str(hold.id), hold.expires_at)

        assert_hold_transition(hold.status, HoldStatus.CAPTURED.value)
        if not hold.liability_posted:
            raise InvalidTransitionError("deposit hold", "authorized (unpaid booking)", HoldStatus.CAPTURED.value)

        result = await gateway.capture(
            hold_ref=hold.external_hold_ref,
            amount=deducted_amount,
            currency=hold.currency,
            idempotency_key=generate_idempotency_key("deposit_capture", hold.id, {"amount": deducted_amount}),
        )
        if not result.success:
            logger.warning(f"Deposit capture declined for hold {hold.id}: {result.error_message}")
            raise PaymentFailedError(f"Deposit capture failed: {result.error_message}")

        booking = await db.get(Booking, hold.booking_id) if hold.booking_id else None
        owner_id = booking.owner_id if booking else None

        hold.status = HoldStatus.CAPTURED.value
        hold.deducted_amount = deducted_amount
        hold.capture_reason = reason
        hold.captured_at = now

        await ledger_store.post(
            db,
            TransactionType.DEPOSIT_CAPTURE,
            capture_reference(hold.id),
            [
                debit(AccountType.DEPOSIT_LIABILITY, deducted_amount, hold.renter_id),
                credit(AccountType.OWNER_RECEIVABLE, deducted_amount, owner_id),
            ],
            booking_id=hold.booking_id,
            status=EntryStatus.SETTLED if result.settled else EntryStatus.PENDING,
            description=reason,
            currency=hold.currency,
        )
        await self._post_release(
            db, hold, hold.amount - deducted_amount, "Uncaptured deposit remainder returned to renter"
        )

        if hold.booking_id:
            await notification_service.emit(
                db,
                notification_service.DEPOSIT_CAPTURED,
                "booking",
                hold.booking_id,
                {"hold_id": hold.id, "deducted_amount": deducted_amount, "reason": reason},
            )
        await flush_changes(db)

        logger.info(f"Deposit hold {hold.id} captured {deducted_amount} of {hold.amount}: {reason}")
        return hold

    async def release(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        hold_id: UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> DepositHold:
        """Release a hold back to the renter; releasing twice is a no-op."""
        now = now or datetime.now(UTC)
        hold = await self.get_hold(db, hold_id, for_update=True)

        if hold.status in (HoldStatus.RELEASED.value, HoldStatus.EXPIRED.value):
            return hold
        assert_hold_transition(hold.status, HoldStatus.RELEASED.value)

        result = await gateway.void(
            hold_ref=hold.external_hold_ref,
            idempotency_key=generate_idempotency_key("deposit_void", hold.id),
        )
        if not result.success:
            # The gateway drops the authorization on its own once it lapses.
            logger.warning(f"Void of hold {hold.id} declined, relying on gateway expiry: {result.error_message}")
            hold.failure_reason = result.error_message

        hold.status = HoldStatus.RELEASED.value
        hold.released_at = now
        await self._post_release(db, hold, hold.amount, reason or "Deposit released")
        await flush_changes(db)

        logger.info(f"Deposit hold {hold.id} released: {reason or 'no reason given'}")
        return hold

    async def release_if_active(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> DepositHold | None:
        hold = await self.active_hold_for_booking(db, booking_id)
        if hold is None:
            return None
        return await self.release(db, gateway, hold.id, reason, now)

    async def capture_for_booking(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking_id: UUID,
        deducted_amount: Decimal,
        reason: str,
        now: datetime | None = None,
    ) -> DepositHold:
        hold = await self.active_hold_for_booking(db, booking_id)
        if hold is None:
            raise NotFoundError("Active deposit hold for booking", str(booking_id))
        return await self.capture(db, gateway, hold.id, deducted_amount, reason, now)

    async def reauthorize(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        booking: Booking,
        payment_method: str | None = None,
        now: datetime | None = None,
    ) -> DepositHold:
        """Place a fresh hold after the previous one expired or failed."""
        if not booking.requires_deposit:
            raise ValidationError("This booking does not require a deposit")

        existing = await self.active_hold_for_booking(db, booking.id)
        if existing:
            return existing

        holds = await self.holds_for_booking(db, booking.id)
        previous = holds[-1] if holds else None
        if previous and previous.status == HoldStatus.CAPTURED.value:
            raise InvalidTransitionError("deposit hold", previous.status, HoldStatus.AUTHORIZED.value)

        hold = await self.authorize(
            db,
            gateway,
            booking,
            payment_method=payment_method,
            replaces_hold_id=previous.id if previous else None,
            now=now,
        )
        if booking.payment_reference:
            await self.post_liability(db, hold, booking, funded_from=AccountType.RENTER_RECEIVABLE)
            await flush_changes(db)

        logger.info(
            f"Deposit re-authorized for booking {booking.booking_number}: hold {hold.id}"
            f" replaces {previous.id if previous else 'nothing'}"
        )
        return hold

    async def expire_stale_holds(self, db: AsyncSession, now: datetime | None = None) -> int:
        """Sweep: mark authorized holds past ``expires_at`` as EXPIRED."""
        now = now or datetime.now(UTC)
        result = await db.execute(
            select(DepositHold)
            .where(
                DepositHold.status == HoldStatus.AUTHORIZED.value,
                DepositHold.expires_at <= now,
            )
            .with_for_update(skip_locked=True)
        )
        holds = result.scalars().all()
        for hold in holds:
            await self.expire(db, hold, now)

        if holds:
            logger.info(f"Expired {len(holds)} deposit hold(s)")
        return len(holds)


deposit_service = DepositService()
