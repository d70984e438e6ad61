"""Dispute schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rentflow.domain.dispute_state import DisputePriority, DisputeType, ResolutionOutcome


class DisputeCreate(BaseModel):
    """Schema for opening a dispute."""

    booking_id: UUID
    dispute_type: DisputeType
    title: str = Field(..., min_length=3, max_length=200)
    description: str = Field(..., min_length=10, max_length=5000)
    amount_claimed: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    priority: DisputePriority = DisputePriority.MEDIUM
    evidence_urls: list[str] | None = Field(None, max_length=20)
    condition_report_id: UUID | None = None


class DisputeNote(BaseModel):
    note: str | None = Field(None, max_length=5000)


class DisputeReviewRequest(DisputeNote):
    assigned_to: UUID | None = None


class DisputeComment(BaseModel):
    note: str = Field(..., min_length=1, max_length=5000)


class DisputeResolve(BaseModel):
    """Schema for resolving a dispute."""

    outcome: ResolutionOutcome
    refund_amount: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    payout_adjustment: Decimal = Field(default=Decimal("0"), decimal_places=2)
    deposit_deduction: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    notes: str | None = Field(None, max_length=5000)


class DisputeDismiss(BaseModel):
    reason: str = Field(..., min_length=3, max_length=2000)


class DisputeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID
    condition_report_id: UUID | None
    initiator_id: UUID
    defendant_id: UUID
    dispute_type: str
    title: str
    description: str
    amount_claimed: Decimal
    evidence_urls: list[str] | None
    status: str
    priority: str
    sla_deadline: datetime
    escalated_at: datetime | None
    assigned_to: UUID | None
    dismissal_reason: str | None
    resolved_at: datetime | None
    closed_at: datetime | None
    created_at: datetime


class DisputeResolutionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    outcome: str
    refund_amount: Decimal
    payout_adjustment: Decimal
    deposit_deduction: Decimal
    notes: str | None
    resolved_by: UUID
    created_at: datetime


class TimelineEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    event_type: str
    from_status: str | None
    to_status: str | None
    actor_id: UUID | None
    note: str | None
    details: dict | None
    created_at: datetime
