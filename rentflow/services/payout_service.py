"""Owner payout aggregation.

Settled, unclaimed owner-receivable entries are rolled into one payout per
owner. Claimed entries carry the payout id; a paid payout closes the
balance with a PAYOUT posting, a failed one hands the entries back.
"""

import logging
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.config import settings
from rentflow.core.exceptions import NotFoundError, ValidationError
from rentflow.core.idempotency import generate_idempotency_key
from rentflow.database import flush_changes
from rentflow.domain.ledger_state import AccountType, EntrySide, EntryStatus, TransactionType
from rentflow.domain.payout_state import RETRYABLE_PAYOUT_STATUSES, PayoutStatus, assert_payout_transition
from rentflow.gateways.base import PaymentGateway
from rentflow.models.ledger import LedgerEntry
from rentflow.models.payout import Payout
from rentflow.services.catalog_service import catalog_service
from rentflow.services.ledger_service import credit, debit, ledger_store
from rentflow.services.notification_service import notification_service
from rentflow.utils.booking_number import generate_payout_reference

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


def net_amount(entries: list[LedgerEntry]) -> Decimal:
    total = ZERO
    for entry in entries:
        total += entry.amount if entry.side == EntrySide.CREDIT.value else -entry.amount
    return total


class PayoutService:
    """Creates, executes and reconciles owner payouts."""

    async def get_payout(self, db: AsyncSession, payout_id: UUID, for_update: bool = False) -> Payout:
        query = select(Payout).where(Payout.id == payout_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        payout = result.scalar_one_or_none()
        if not payout:
            raise NotFoundError("Payout", str(payout_id))
        return payout

    async def list_payouts(self, db: AsyncSession, owner_id: UUID) -> list[Payout]:
        result = await db.execute(
            select(Payout).where(Payout.owner_id == owner_id).order_by(Payout.created_at.desc())
        )
        return list(result.scalars().all())

    async def create_payout(
        self,
        db: AsyncSession,
        owner_id: UUID,
        now: datetime | None = None,
    ) -> Payout | None:
        """Claim the owner's eligible entries into a PENDING payout.

        Returns None when the eligible balance is below the minimum payout.

        Raises:
            ValidationError: If the owner has no active payout account
        """
        now = now or datetime.now(UTC)
        account = await catalog_service.get_payout_account(db, owner_id)
        if account is None:
            raise ValidationError(f"Owner {owner_id} has no active payout account")

        entries = await ledger_store.payout_eligible_entries(db, owner_id, for_update=True)
        amount = net_amount(entries)
        if amount < settings.minimum_payout_amount:
            logger.info(
                f"Skipping payout for owner {owner_id}: {amount} below minimum {settings.minimum_payout_amount}"
            )
            return None

        reference = generate_payout_reference()
        claim_key = await self._claim_key(db, owner_id, entries)
        payout = Payout(
            reference=reference,
            owner_id=owner_id,
            amount=amount,
            currency=account.currency,
            status=PayoutStatus.PENDING.value,
            destination_account=account.external_account_id,
            idempotency_key=claim_key,
            entry_count=len(entries),
            period_start=min(entry.created_at for entry in entries),
            period_end=now,
        )
        db.add(payout)
        await db.flush()

        for entry in entries:
            entry.payout_id = payout.id
        await flush_changes(db)

        logger.info(f"Payout {reference} created for owner {owner_id}: {amount} from {len(entries)} entries")
        return payout

    async def _claim_key(self, db: AsyncSession, owner_id: UUID, entries: list[LedgerEntry]) -> str:
        """Transfer idempotency key for a claim.

        Derived from the claimed entries, so rebuilding a payout lost before
        commit presents the same key to the gateway. Each failed payout of the
        owner starts a new key, so a retry after a decline is a new transfer.
        """
        result = await db.execute(
            select(func.count(Payout.id)).where(
                Payout.owner_id == owner_id,
                Payout.status == PayoutStatus.FAILED.value,
            )
        )
        return generate_idempotency_key(
            "owner_payout",
            owner_id,
            {"entries": ",".join(sorted(str(entry.id) for entry in entries)), "failed_payouts": result.scalar() or 0},
        )

    async def execute_payout(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        payout_id: UUID,
        now: datetime | None = None,
    ) -> Payout:
        """Request the transfer; safe to repeat for a stalled payout."""
        now = now or datetime.now(UTC)
        payout = await self.get_payout(db, payout_id, for_update=True)
        if PayoutStatus(payout.status) not in RETRYABLE_PAYOUT_STATUSES:
            return payout

        if payout.status == PayoutStatus.PENDING.value:
            assert_payout_transition(payout.status, PayoutStatus.PROCESSING.value)
            payout.status = PayoutStatus.PROCESSING.value
            payout.processed_at = now
        payout.attempts = (payout.attempts or 0) + 1
        await flush_changes(db)

        result = await gateway.transfer(
            destination=payout.destination_account,
            amount=payout.amount,
            currency=payout.currency,
            idempotency_key=payout.idempotency_key,
            description=f"Payout {payout.reference}",
        )
        if not result.success:
            return await self._fail(db, payout, result.error_message or "Transfer declined", now)

        payout.external_transfer_ref = result.reference
        if result.settled:
            return await self._mark_paid(db, payout, now)

        assert_payout_transition(payout.status, PayoutStatus.IN_TRANSIT.value)
        payout.status = PayoutStatus.IN_TRANSIT.value
        await flush_changes(db)
        logger.info(f"Payout {payout.reference} in transit ({result.reference})")
        return payout

    async def confirm_transfer(
        self,
        db: AsyncSession,
        payout_id: UUID,
        external_ref: str | None = None,
        now: datetime | None = None,
    ) -> Payout:
        """Transfer confirmation callback."""
        now = now or datetime.now(UTC)
        payout = await self.get_payout(db, payout_id, for_update=True)
        if payout.status == PayoutStatus.PAID.value:
            return payout
        assert_payout_transition(payout.status, PayoutStatus.PAID.value)
        if external_ref:
            payout.external_transfer_ref = external_ref
        return await self._mark_paid(db, payout, now)

    async def fail_transfer(
        self,
        db: AsyncSession,
        payout_id: UUID,
        reason: str,
        now: datetime | None = None,
    ) -> Payout:
        """Transfer failure callback; the claimed entries become eligible again."""
        now = now or datetime.now(UTC)
        payout = await self.get_payout(db, payout_id, for_update=True)
        if payout.status == PayoutStatus.FAILED.value:
            return payout
        return await self._fail(db, payout, reason, now)

    async def _mark_paid(self, db: AsyncSession, payout: Payout, now: datetime) -> Payout:
        posting = await ledger_store.post(
            db,
            TransactionType.PAYOUT,
            payout.reference,
            [
                debit(AccountType.OWNER_RECEIVABLE, payout.amount, payout.owner_id),
                credit(AccountType.PLATFORM_CASH, payout.amount),
            ],
            status=EntryStatus.SETTLED,
            description=f"Payout {payout.reference} to {payout.destination_account}",
            currency=payout.currency,
        )
        for entry in await ledger_store.entries_for_posting(db, posting.id):
            if entry.account_type == AccountType.OWNER_RECEIVABLE.value:
                entry.payout_id = payout.id

        payout.status = PayoutStatus.PAID.value
        payout.paid_at = now
        await notification_service.emit(
            db,
            notification_service.PAYOUT_PROCESSED,
            "payout",
            payout.id,
            {"owner_id": payout.owner_id, "reference": payout.reference, "amount": payout.amount},
        )
        await flush_changes(db)

        logger.info(f"Payout {payout.reference} paid: {payout.amount} to owner {payout.owner_id}")
        return payout

    async def _fail(self, db: AsyncSession, payout: Payout, reason: str, now: datetime) -> Payout:
        assert_payout_transition(payout.status, PayoutStatus.FAILED.value)
        payout.status = PayoutStatus.FAILED.value
        payout.failure_reason = reason
        payout.failed_at = now

        await db.execute(
            update(LedgerEntry)
            .where(LedgerEntry.payout_id == payout.id)
            .values(payout_id=None)
            .execution_options(synchronize_session="fetch")
        )
        await notification_service.emit(
            db,
            notification_service.PAYOUT_FAILED,
            "payout",
            payout.id,
            {"owner_id": payout.owner_id, "reference": payout.reference, "amount": payout.amount, "reason": reason},
        )
        await flush_changes(db)

        logger.warning(f"Payout {payout.reference} failed: {reason}")
        return payout

    async def run_scheduled_payouts(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        now: datetime | None = None,
    ) -> list[Payout]:
        """Create and execute a payout for every owner with an eligible balance.

        Each owner is its own unit of work: the PENDING payout and its claimed
        entries are committed before the transfer is requested, and the
        outcome is committed before the next owner. A run lost after the
        transfer leaves a committed PENDING payout for ``retry_stalled_payouts``.
        """
        now = now or datetime.now(UTC)
        payouts = []
        for owner_id in await ledger_store.owners_with_eligible_balance(db):
            if await catalog_service.get_payout_account(db, owner_id) is None:
                logger.warning(f"Owner {owner_id} has earnings but no payout account")
                continue
            payout = await self.create_payout(db, owner_id, now)
            if payout is None:
                continue
            await db.commit()
            payouts.append(await self.execute_payout(db, gateway, payout.id, now))
            await db.commit()

        logger.info(f"Scheduled payout run created {len(payouts)} payout(s)")
        return payouts

    async def retry_stalled_payouts(
        self,
        db: AsyncSession,
        gateway: PaymentGateway,
        now: datetime | None = None,
    ) -> int:
        """Sweep: re-run transfers for payouts stuck in PENDING or PROCESSING."""
        now = now or datetime.now(UTC)
        cutoff = now - timedelta(minutes=settings.payout_stall_minutes)
        result = await db.execute(
            select(Payout.id).where(
                Payout.status.in_([s.value for s in RETRYABLE_PAYOUT_STATUSES]),
                Payout.updated_at <= cutoff,
            )
        )
        payout_ids = list(result.scalars().all())
        for payout_id in payout_ids:
            await self.execute_payout(db, gateway, payout_id, now)

        if payout_ids:
            logger.info(f"Retried {len(payout_ids)} stalled payout(s)")
        return len(payout_ids)


payout_service = PayoutService()
