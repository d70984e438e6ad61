"""Catalog reference data consumed by the engine.

Listings and payout accounts are owned by the catalog; the engine only reads
them. ``BookedDay`` is the engine's calendar claim table.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import Boolean, Date, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rentflow.database import Base
from rentflow.models.types import JSONType, Money, UTCDateTime, utcnow


class Listing(Base):
    """Rentable item offered by an owner."""

    __tablename__ = "listings"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str] = mapped_column(String(30), nullable=False, default="other")
    category_data: Mapped[dict | None] = mapped_column(JSONType)

    # Pricing
    base_price: Mapped[Decimal] = mapped_column(Money, nullable=False)  # per rental day
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    weekly_discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    monthly_discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))

    # Terms
    cancellation_policy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cancellation_policies.id"), nullable=False
    )
    requires_deposit: Mapped[bool] = mapped_column(Boolean, default=False)
    deposit_amount: Mapped[Decimal] = mapped_column(Money, default=Decimal("0"))
    instant_book: Mapped[bool] = mapped_column(Boolean, default=False)
    max_guests: Mapped[int] = mapped_column(Integer, default=1)

    # Availability window
    available_from: Mapped[datetime | None] = mapped_column(UTCDateTime)
    available_until: Mapped[datetime | None] = mapped_column(UTCDateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)


class BookedDay(Base):
    """Calendar claim: one row per listing per occupied day.

    The unique constraint is what makes two overlapping booking requests
    unable to both commit.
    """

    __tablename__ = "booked_days"
    __table_args__ = (UniqueConstraint("listing_id", "day", name="uq_booked_days_listing_day"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    listing_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("listings.id"), nullable=False, index=True
    )
    day: Mapped[date] = mapped_column(Date, nullable=False)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False, index=True
    )


class PayoutAccount(Base):
    """Owner payout destination."""

    __tablename__ = "payout_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, unique=True)
    provider: Mapped[str] = mapped_column(String(30), nullable=False, default="manual")
    external_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
