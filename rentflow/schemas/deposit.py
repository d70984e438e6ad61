"""Deposit hold schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CaptureRequest(BaseModel):
    deducted_amount: Decimal = Field(..., gt=0, decimal_places=2)
    reason: str = Field(..., min_length=1, max_length=1000)


class ReleaseRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class DepositHoldResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_id: UUID | None
    renter_id: UUID
    replaces_hold_id: UUID | None
    amount: Decimal
    deducted_amount: Decimal
    currency: str
    status: str
    failure_reason: str | None
    capture_reason: str | None
    expires_at: datetime
    authorized_at: datetime | None
    captured_at: datetime | None
    released_at: datetime | None
    expired_at: datetime | None
    created_at: datetime
