"""Booking-related database models."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rentflow.database import Base
from rentflow.domain.booking_state import BookingStatus
from rentflow.models.types import ZERO, Fraction, JSONType, Money, UTCDateTime, utcnow


class Booking(Base):
    """Rental of one listing by a renter over [start_date, end_date)."""

    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number: Mapped[str] = mapped_column(
        String(20), unique=True, nullable=False, index=True
    )  # RF-XXXXXX
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("listings.id"), nullable=False, index=True
    )
    renter_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    cancellation_policy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cancellation_policies.id"), nullable=False
    )

    # Rental window
    start_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    end_date: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    guest_count: Mapped[int] = mapped_column(Integer, default=1)

    # Status
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=BookingStatus.DRAFT.value, index=True
    )
    pre_dispute_status: Mapped[str | None] = mapped_column(String(30))

    # Pricing; base_price = rental_amount + deposit_amount
    rental_days: Mapped[int] = mapped_column(Integer, nullable=False)
    rental_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    base_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    service_fee: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    tax: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    deposit_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    discount_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    total_price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    owner_earnings: Mapped[Decimal] = mapped_column(Money, nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Money, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="USD")
    requires_deposit: Mapped[bool] = mapped_column(Boolean, default=False)

    # Payment
    payment_method: Mapped[str | None] = mapped_column(String(100))
    payment_reference: Mapped[str | None] = mapped_column(String(100), unique=True)

    # Cancellation
    cancelled_by: Mapped[str | None] = mapped_column(String(10))  # renter, owner, system
    cancellation_reason: Mapped[str | None] = mapped_column(Text)
    refund_percentage: Mapped[Decimal | None] = mapped_column(Fraction)
    refund_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)

    # Typed per-category extension, validated at the API boundary
    category_data: Mapped[dict | None] = mapped_column(JSONType)

    # Milestones
    confirmed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    checked_in_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    returned_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    settled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


class BookingStateHistory(Base):
    """Append-only audit trail of booking transitions."""

    __tablename__ = "booking_state_history"
    __table_args__ = (UniqueConstraint("booking_id", "sequence", name="uq_booking_history_sequence"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30))
    to_status: Mapped[str] = mapped_column(String(30), nullable=False)
    reason: Mapped[str | None] = mapped_column(Text)
    changed_by: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    details: Mapped[dict | None] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
