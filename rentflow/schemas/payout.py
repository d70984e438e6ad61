"""Payout schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class PayoutResponse(BaseModel):
    """Schema for owner payout response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reference: str
    owner_id: UUID
    amount: Decimal
    currency: str
    status: str
    destination_account: str
    external_transfer_ref: str | None
    failure_reason: str | None
    attempts: int
    entry_count: int
    period_start: datetime | None
    period_end: datetime | None
    processed_at: datetime | None
    paid_at: datetime | None
    failed_at: datetime | None
    created_at: datetime


class PayoutConfirm(BaseModel):
    external_ref: str | None = Field(None, max_length=100)


class PayoutFail(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)
