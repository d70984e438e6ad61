"""Security deposit hold model."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from rentflow.database import Base
from rentflow.domain.deposit_state import HoldStatus
from rentflow.models.types import ZERO, Money, UTCDateTime, utcnow


class DepositHold(Base):
    """Pre-authorization against the renter's payment method.

    Owned by the hold side: the booking is found through ``booking_id``.
    A booking has at most one AUTHORIZED hold at a time; a re-authorized hold
    points at the lapsed one through ``replaces_hold_id``.
    """

    __tablename__ = "deposit_holds"
    __table_args__ = (
        Index(
            "uq_deposit_holds_one_authorized",
            "booking_id",
            unique=True,
            postgresql_where=text("status = 'authorized'"),
            sqlite_where=text("status = 'authorized'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("bookings.id"), index=True
    )
    renter_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    replaces_hold_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("deposit_holds.id")
    )

    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    deducted_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=HoldStatus.AUTHORIZED.value, index=True
    )

    payment_method: Mapped[str | None] = mapped_column(String(100))
    external_hold_ref: Mapped[str | None] = mapped_column(String(100))
    idempotency_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    capture_reason: Mapped[str | None] = mapped_column(Text)

    # Set once the DEPOSIT_HOLD liability posting exists
    liability_posted: Mapped[bool] = mapped_column(Boolean, default=False)

    expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    authorized_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    captured_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    released_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    expired_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}
