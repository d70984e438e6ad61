"""Dispute models."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from rentflow.database import Base
from rentflow.domain.dispute_state import DisputePriority, DisputeStatus
from rentflow.models.types import ZERO, JSONType, Money, UTCDateTime, utcnow


class Dispute(Base):
    """Dispute opened against exactly one booking."""

    __tablename__ = "disputes"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("bookings.id"), nullable=False, index=True
    )
    condition_report_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    initiator_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    defendant_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    dispute_type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount_claimed: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    evidence_urls: Mapped[list | None] = mapped_column(JSONType)

    status: Mapped[str] = mapped_column(
        String(30), nullable=False, default=DisputeStatus.OPEN.value, index=True
    )
    priority: Mapped[str] = mapped_column(
        String(10), nullable=False, default=DisputePriority.MEDIUM.value
    )
    sla_deadline: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, index=True)
    escalated_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    assigned_to: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    dismissal_reason: Mapped[str | None] = mapped_column(Text)

    resolved_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    closed_at: Mapped[datetime | None] = mapped_column(UTCDateTime)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


class DisputeResolution(Base):
    """Terminal artifact of a resolved dispute."""

    __tablename__ = "dispute_resolutions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("disputes.id"), nullable=False, unique=True
    )
    outcome: Mapped[str] = mapped_column(String(30), nullable=False)
    refund_amount: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    payout_adjustment: Mapped[Decimal] = mapped_column(Money, default=ZERO)  # signed, owner side
    deposit_deduction: Mapped[Decimal] = mapped_column(Money, default=ZERO)
    notes: Mapped[str | None] = mapped_column(Text)
    resolved_by: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)


class DisputeTimelineEntry(Base):
    """Append-only record of every dispute state change and action."""

    __tablename__ = "dispute_timeline"
    __table_args__ = (UniqueConstraint("dispute_id", "sequence", name="uq_dispute_timeline_sequence"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    dispute_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("disputes.id"), nullable=False, index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    event_type: Mapped[str] = mapped_column(String(40), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(30))
    to_status: Mapped[str | None] = mapped_column(String(30))
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid)
    note: Mapped[str | None] = mapped_column(Text)
    details: Mapped[dict | None] = mapped_column(JSONType)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
