"""Double-entry ledger models.

Postings are immutable. An entry may only move its ``status`` forward,
record ``settled_at`` and be claimed by (or released from) a payout.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rentflow.database import Base
from rentflow.domain.ledger_state import EntryStatus
from rentflow.models.types import Money, UTCDateTime, utcnow


class LedgerPosting(Base):
    """Header of one balanced set of entries.

    Unique on (transaction_type, reference_id): replaying an operation with
    the same reference can never write a second posting.
    """

    __tablename__ = "ledger_postings"
    __table_args__ = (
        UniqueConstraint("transaction_type", "reference_id", name="uq_ledger_posting_reference"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bookings.id"), index=True
    )
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    reversal_of_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("ledger_postings.id")
    )
    description: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)


class LedgerEntry(Base):
    """One side of a double-entry posting."""

    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    posting_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledger_postings.id"), nullable=False, index=True
    )

    # Denormalized from the posting for grouping and read models
    booking_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)
    transaction_type: Mapped[str] = mapped_column(String(30), nullable=False)
    reference_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)

    account_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    party_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, index=True)  # renter or owner
    side: Mapped[str] = mapped_column(String(10), nullable=False)  # debit, credit
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)  # always positive
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=EntryStatus.PENDING.value, index=True
    )
    settled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    payout_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("payouts.id"), index=True
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
