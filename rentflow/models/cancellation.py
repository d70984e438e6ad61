"""Versioned cancellation policy reference data (immutable once written)."""

from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentflow.database import Base
from rentflow.domain.cancellation_policy import RefundRule
from rentflow.models.types import Fraction, UTCDateTime, utcnow


class CancellationPolicy(Base):
    """Named, versioned refund rule set.

    Edits create a new version; bookings keep pointing at the version that
    applied when they were requested.
    """

    __tablename__ = "cancellation_policies"
    __table_args__ = (UniqueConstraint("name", "version", name="uq_cancellation_policy_version"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    description: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow)

    rules: Mapped[list["CancellationRule"]] = relationship(
        "CancellationRule",
        lazy="selectin",
        order_by="CancellationRule.hours_before_start.desc()",
    )

    def refund_rules(self) -> list[RefundRule]:
        return [RefundRule(r.hours_before_start, r.refund_percentage) for r in self.rules]


class CancellationRule(Base):
    __tablename__ = "cancellation_rules"
    __table_args__ = (
        UniqueConstraint("policy_id", "hours_before_start", name="uq_cancellation_rule_threshold"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    policy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("cancellation_policies.id"), nullable=False, index=True
    )
    hours_before_start: Mapped[int] = mapped_column(Integer, nullable=False)
    refund_percentage: Mapped[Decimal] = mapped_column(Fraction, nullable=False)
