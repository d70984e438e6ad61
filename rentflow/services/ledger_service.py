"""Double-entry ledger store.

Every money movement is a posting: a header unique on
(transaction_type, reference_id) plus a balanced set of entries. Entries are
never edited except to move their status forward or to be claimed by a
payout; corrections are new offsetting postings.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.config import settings
from rentflow.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    UnbalancedPostingError,
    ValidationError,
)
from rentflow.domain.booking_state import PAYOUT_ELIGIBLE_STATUSES
from rentflow.domain.ledger_state import (
    AccountType,
    EntrySide,
    EntryStatus,
    TransactionType,
    assert_entry_transition,
    reversal_reference,
)
from rentflow.models.booking import Booking
from rentflow.models.ledger import LedgerEntry, LedgerPosting

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class PostingLine:
    """One requested entry of a posting."""

    account_type: AccountType
    side: EntrySide
    amount: Decimal
    party_id: UUID | None = None

    def key(self) -> tuple:
        return (
            AccountType(self.account_type).value,
            EntrySide(self.side).value,
            Decimal(self.amount).quantize(CENT),
            self.party_id,
        )

    def swapped(self) -> "PostingLine":
        side = EntrySide.CREDIT if self.side == EntrySide.DEBIT else EntrySide.DEBIT
        return PostingLine(self.account_type, side, self.amount, self.party_id)


def debit(account_type: AccountType, amount: Decimal, party_id: UUID | None = None) -> PostingLine:
    return PostingLine(account_type, EntrySide.DEBIT, Decimal(amount), party_id)


def credit(account_type: AccountType, amount: Decimal, party_id: UUID | None = None) -> PostingLine:
    return PostingLine(account_type, EntrySide.CREDIT, Decimal(amount), party_id)


def assert_positive_amount(amount: Decimal, context: str) -> None:
    """Guard: Prevent negative or zero amounts."""
    if amount <= 0:
        raise ValidationError(f"{context}: amount must be positive, got {amount}")


def assert_balanced(transaction_type: str, reference_id: str, lines: list[PostingLine]) -> None:
    """Guard: debits must equal credits within one posting."""
    debits = sum((line.amount for line in lines if line.side == EntrySide.DEBIT), ZERO)
    credits = sum((line.amount for line in lines if line.side == EntrySide.CREDIT), ZERO)
    if debits != credits:
        logger.critical(
            f"UNBALANCED_POSTING: {transaction_type} {reference_id} debits={debits} credits={credits}"
        )
        raise UnbalancedPostingError(transaction_type, reference_id, debits, credits)


def _entry_key(entry: LedgerEntry) -> tuple:
    return (entry.account_type, entry.side, Decimal(entry.amount).quantize(CENT), entry.party_id)


class LedgerStore:
    """Posting, settlement and read models over the ledger tables."""

    async def get_posting(
        self,
        db: AsyncSession,
        transaction_type: TransactionType | str,
        reference_id: str,
    ) -> LedgerPosting | None:
        result = await db.execute(
            select(LedgerPosting).where(
                LedgerPosting.transaction_type == TransactionType(transaction_type).value,
                LedgerPosting.reference_id == reference_id,
            )
        )
        return result.scalar_one_or_none()

    async def entries_for_posting(self, db: AsyncSession, posting_id: UUID) -> list[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry).where(LedgerEntry.posting_id == posting_id).order_by(LedgerEntry.created_at)
        )
        return list(result.scalars().all())

    async def _require_posting(
        self, db: AsyncSession, transaction_type: TransactionType | str, reference_id: str
    ) -> LedgerPosting:
        posting = await self.get_posting(db, transaction_type, reference_id)
        if not posting:
            raise NotFoundError("Ledger posting", f"{TransactionType(transaction_type).value}:{reference_id}")
        return posting

    async def post(
        self,
        db: AsyncSession,
        transaction_type: TransactionType,
        reference_id: str,
        lines: list[PostingLine],
        booking_id: UUID | None = None,
        status: EntryStatus = EntryStatus.PENDING,
        description: str | None = None,
        created_by: UUID | None = None,
        currency: str | None = None,
        reversal_of_id: UUID | None = None,
    ) -> LedgerPosting | None:
        """Write a balanced set of entries atomically.

        Zero-amount lines are dropped; a posting with nothing left is skipped
        and returns None. Replaying the same (transaction_type, reference_id)
        with the same lines returns the existing posting.

        Raises:
            UnbalancedPostingError: If debits and credits differ
            ConflictError: If the reference was already posted with other lines
        """
        lines = [line for line in lines if line.amount != 0]
        for line in lines:
            assert_positive_amount(line.amount, f"{TransactionType(transaction_type).value} {reference_id}")
        if not lines:
            return None
        assert_balanced(transaction_type.value, reference_id, lines)

        existing = await self.get_posting(db, transaction_type, reference_id)
        if existing:
            entries = await self.entries_for_posting(db, existing.id)
            if sorted(map(_entry_key, entries), key=str) != sorted((line.key() for line in lines), key=str):
                raise ConflictError(
                    f"{transaction_type.value} posting {reference_id} already exists with different entries"
                )
            logger.debug(f"Ledger posting {transaction_type.value} {reference_id} already recorded")
            return existing

        posting = LedgerPosting(
            booking_id=booking_id,
            transaction_type=transaction_type.value,
            reference_id=reference_id,
            reversal_of_id=reversal_of_id,
            description=description,
            created_by=created_by,
        )
        db.add(posting)
        try:
            await db.flush()
        except IntegrityError as exc:
            raise ConflictError(f"{transaction_type.value} posting {reference_id} was written concurrently") from exc

        settled_at = datetime.now(UTC) if status == EntryStatus.SETTLED else None
        for line in lines:
            db.add(
                LedgerEntry(
                    posting_id=posting.id,
                    booking_id=booking_id,
                    transaction_type=transaction_type.value,
                    reference_id=reference_id,
                    account_type=AccountType(line.account_type).value,
                    party_id=line.party_id,
                    side=EntrySide(line.side).value,
                    amount=line.amount,
                    currency=currency or settings.currency,
                    status=status.value,
                    settled_at=settled_at,
                )
            )
        await db.flush()

        logger.info(
            f"Posted {transaction_type.value} {reference_id} ({len(lines)} entries, {status.value})"
            f" booking={booking_id}"
        )
        return posting

    async def reverse(
        self,
        db: AsyncSession,
        transaction_type: TransactionType,
        reference_id: str,
        reason: str | None = None,
        created_by: UUID | None = None,
    ) -> LedgerPosting:
        """Post the exact offsetting set of a prior posting.

        Pending originals are marked REVERSED together with their offsets;
        settled originals stay settled and the offsets are posted settled.
        Reversing twice returns the first reversal.
        """
        original = await self._require_posting(db, transaction_type, reference_id)
        reversal_ref = reversal_reference(reference_id)
        existing = await self.get_posting(db, transaction_type, reversal_ref)
        if existing:
            return existing

        entries = await self.entries_for_posting(db, original.id)
        statuses = {entry.status for entry in entries}
        if statuses & {EntryStatus.FAILED.value, EntryStatus.REVERSED.value}:
            current = next(iter(statuses & {EntryStatus.FAILED.value, EntryStatus.REVERSED.value}))
            raise InvalidTransitionError("ledger posting", current, EntryStatus.REVERSED.value)

        pending = EntryStatus.PENDING.value in statuses
        offset_status = EntryStatus.REVERSED if pending else EntryStatus.SETTLED
        if pending:
            for entry in entries:
                assert_entry_transition(entry.status, EntryStatus.REVERSED.value)
                entry.status = EntryStatus.REVERSED.value

        lines = [
            PostingLine(AccountType(e.account_type), EntrySide(e.side), Decimal(e.amount), e.party_id).swapped()
            for e in entries
        ]
        posting = await self.post(
            db,
            TransactionType(original.transaction_type),
            reversal_ref,
            lines,
            booking_id=original.booking_id,
            status=offset_status,
            description=reason or f"Reversal of {reference_id}",
            created_by=created_by,
            currency=entries[0].currency if entries else None,
            reversal_of_id=original.id,
        )
        logger.info(f"Reversed {original.transaction_type} {reference_id}: {reason or 'no reason given'}")
        return posting

    async def postings_for_reference(self, db: AsyncSession, reference_id: str) -> list[LedgerPosting]:
        """Every posting recorded under ``reference_id``, whatever its transaction type."""
        result = await db.execute(
            select(LedgerPosting)
            .where(LedgerPosting.reference_id == reference_id)
            .order_by(LedgerPosting.created_at, LedgerPosting.transaction_type)
        )
        postings = list(result.scalars().all())
        if not postings:
            raise NotFoundError("Ledger postings for reference", reference_id)
        return postings

    async def settle(
        self,
        db: AsyncSession,
        reference_id: str,
        now: datetime | None = None,
    ) -> list[LedgerEntry]:
        """Mark the pending set of a reference SETTLED once the upstream rail confirms it.

        A payment reference carries both the PAYMENT and the OWNER_EARNING
        posting; both settle together.
        """
        now = now or datetime.now(UTC)
        entries: list[LedgerEntry] = []
        for posting in await self.postings_for_reference(db, reference_id):
            entries.extend(await self.entries_for_posting(db, posting.id))

        pending = [entry for entry in entries if entry.status != EntryStatus.SETTLED.value]
        for entry in pending:
            assert_entry_transition(entry.status, EntryStatus.SETTLED.value)
        for entry in pending:
            entry.status = EntryStatus.SETTLED.value
            entry.settled_at = now
        await db.flush()

        if pending:
            logger.info(f"Settled {len(pending)} ledger entries under {reference_id}")
        return entries

    async def fail(
        self,
        db: AsyncSession,
        reference_id: str,
        reason: str | None = None,
    ) -> list[LedgerEntry]:
        """Mark the pending set of a reference FAILED and record compensating offsets.

        Every posting under the reference fails together, so earnings derived
        from a payment never outlive the payment.

        Raises:
            InvalidTransitionError: If any entry of the set is already settled
        """
        postings = await self.postings_for_reference(db, reference_id)
        entries_by_posting = [(posting, await self.entries_for_posting(db, posting.id)) for posting in postings]

        to_fail = []
        for posting, entries in entries_by_posting:
            if all(entry.status == EntryStatus.FAILED.value for entry in entries):
                continue
            for entry in entries:
                assert_entry_transition(entry.status, EntryStatus.FAILED.value)
            to_fail.append((posting, entries))

        for posting, entries in to_fail:
            for entry in entries:
                entry.status = EntryStatus.FAILED.value
            lines = [
                PostingLine(AccountType(e.account_type), EntrySide(e.side), Decimal(e.amount), e.party_id).swapped()
                for e in entries
            ]
            await self.post(
                db,
                TransactionType(posting.transaction_type),
                reversal_reference(reference_id),
                lines,
                booking_id=posting.booking_id,
                status=EntryStatus.REVERSED,
                description=reason or f"Compensation for failed {reference_id}",
                currency=entries[0].currency if entries else None,
                reversal_of_id=posting.id,
            )
            logger.warning(f"Ledger posting {posting.transaction_type} {reference_id} failed: {reason}")

        return [entry for _, entries in entries_by_posting for entry in entries]

    # Read models

    async def entries_for_booking(self, db: AsyncSession, booking_id: UUID) -> list[LedgerEntry]:
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.booking_id == booking_id)
            .order_by(LedgerEntry.created_at, LedgerEntry.transaction_type)
        )
        return list(result.scalars().all())

    async def entries_for_reference(
        self, db: AsyncSession, transaction_type: TransactionType, reference_id: str
    ) -> list[LedgerEntry]:
        posting = await self._require_posting(db, transaction_type, reference_id)
        return await self.entries_for_posting(db, posting.id)

    async def _owner_receivable_sum(self, db: AsyncSession, owner_id: UUID, status: EntryStatus) -> Decimal:
        result = await db.execute(
            select(LedgerEntry.side, LedgerEntry.amount).where(
                LedgerEntry.account_type == AccountType.OWNER_RECEIVABLE.value,
                LedgerEntry.party_id == owner_id,
                LedgerEntry.status == status.value,
            )
        )
        balance = ZERO
        for side, amount in result.all():
            balance += amount if side == EntrySide.CREDIT.value else -amount
        return balance

    async def owner_balance(self, db: AsyncSession, owner_id: UUID) -> Decimal:
        """Settled credits minus settled debits on the owner's receivable account."""
        return await self._owner_receivable_sum(db, owner_id, EntryStatus.SETTLED)

    async def pending_owner_balance(self, db: AsyncSession, owner_id: UUID) -> Decimal:
        return await self._owner_receivable_sum(db, owner_id, EntryStatus.PENDING)

    async def unbalanced_groups(self, db: AsyncSession, booking_id: UUID | None = None) -> list[dict]:
        """Reconciliation check: (transaction_type, reference_id) groups whose sides differ."""
        query = select(LedgerEntry)
        if booking_id:
            query = query.where(LedgerEntry.booking_id == booking_id)
        result = await db.execute(query)

        totals: dict[tuple, dict[str, Decimal]] = defaultdict(lambda: {"debit": ZERO, "credit": ZERO})
        for entry in result.scalars().all():
            totals[(entry.booking_id, entry.transaction_type, entry.reference_id)][entry.side] += entry.amount

        problems = []
        for (group_booking, transaction_type, reference_id), sides in totals.items():
            if sides["debit"] != sides["credit"]:
                problems.append(
                    {
                        "booking_id": group_booking,
                        "transaction_type": transaction_type,
                        "reference_id": reference_id,
                        "debits": sides["debit"],
                        "credits": sides["credit"],
                    }
                )
        if problems:
            logger.error(f"Ledger reconciliation found {len(problems)} unbalanced group(s)")
        return problems

    async def has_pending_entries(self, db: AsyncSession, booking_id: UUID) -> bool:
        result = await db.execute(
            select(LedgerEntry.id)
            .where(
                LedgerEntry.booking_id == booking_id,
                LedgerEntry.status == EntryStatus.PENDING.value,
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def payout_eligible_entries(
        self,
        db: AsyncSession,
        owner_id: UUID,
        before: datetime | None = None,
        for_update: bool = False,
    ) -> list[LedgerEntry]:
        """Settled, unclaimed owner-receivable entries whose booking is financially closed."""
        query = (
            select(LedgerEntry)
            .outerjoin(Booking, Booking.id == LedgerEntry.booking_id)
            .where(
                LedgerEntry.account_type == AccountType.OWNER_RECEIVABLE.value,
                LedgerEntry.party_id == owner_id,
                LedgerEntry.status == EntryStatus.SETTLED.value,
                LedgerEntry.payout_id.is_(None),
                (LedgerEntry.booking_id.is_(None))
                | (Booking.status.in_([s.value for s in PAYOUT_ELIGIBLE_STATUSES])),
            )
            .order_by(LedgerEntry.created_at)
        )
        if before:
            query = query.where(LedgerEntry.settled_at <= before)
        if for_update:
            query = query.with_for_update(of=LedgerEntry)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def owners_with_eligible_balance(self, db: AsyncSession) -> list[UUID]:
        result = await db.execute(
            select(LedgerEntry.party_id)
            .where(
                LedgerEntry.account_type == AccountType.OWNER_RECEIVABLE.value,
                LedgerEntry.status == EntryStatus.SETTLED.value,
                LedgerEntry.payout_id.is_(None),
                LedgerEntry.party_id.is_not(None),
            )
            .distinct()
        )
        return list(result.scalars().all())


ledger_store = LedgerStore()
