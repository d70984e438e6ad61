"""Booking-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BookingCreate(BaseModel):
    """Schema for requesting a booking."""

    listing_id: UUID
    start_date: datetime
    end_date: datetime
    guest_count: int = Field(default=1, ge=1, le=50)
    payment_method: str | None = Field(None, max_length=100)
    category_data: dict | None = None

    @field_validator("start_date", "end_date")
    @classmethod
    def validate_timezone(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            raise ValueError("datetime must include a timezone offset")
        return v

    @field_validator("end_date")
    @classmethod
    def validate_end(cls, v: datetime, info) -> datetime:
        start = info.data.get("start_date")
        if start and v <= start:
            raise ValueError("end_date must be after start_date")
        return v


class PaymentMethodRequest(BaseModel):
    payment_method: str | None = Field(None, max_length=100)


class ConfirmPaymentRequest(BaseModel):
    """Payment confirmation from the payment collaborator."""

    payment_reference: str = Field(..., min_length=1, max_length=100)
    settled: bool = False


class InspectionRequest(BaseModel):
    has_issues: bool
    notes: str | None = Field(None, max_length=2000)
    amount_claimed: Decimal = Field(default=Decimal("0"), ge=0, decimal_places=2)
    condition_report_id: UUID | None = None


class CancelRequest(BaseModel):
    reason: str | None = Field(None, max_length=1000)


class BookingResponse(BaseModel):
    """Schema for booking response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    booking_number: str
    listing_id: UUID
    renter_id: UUID
    owner_id: UUID
    cancellation_policy_id: UUID

    # Dates
    start_date: datetime
    end_date: datetime
    rental_days: int
    guest_count: int

    # Status
    status: str
    pre_dispute_status: str | None

    # Pricing
    rental_amount: Decimal
    base_price: Decimal
    service_fee: Decimal
    tax: Decimal
    deposit_amount: Decimal
    discount_amount: Decimal
    total_price: Decimal
    owner_earnings: Decimal
    platform_fee: Decimal
    currency: str
    requires_deposit: bool

    # Payment
    payment_reference: str | None

    # Cancellation
    cancelled_by: str | None
    cancellation_reason: str | None
    refund_percentage: Decimal | None
    refund_amount: Decimal

    category_data: dict | None

    # Timestamps
    confirmed_at: datetime | None
    checked_in_at: datetime | None
    returned_at: datetime | None
    completed_at: datetime | None
    settled_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime
    updated_at: datetime


class BookingHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    sequence: int
    from_status: str | None
    to_status: str
    reason: str | None
    changed_by: UUID | None
    details: dict | None
    created_at: datetime


class InspectionResponse(BaseModel):
    booking: BookingResponse
    dispute_id: UUID | None = None
