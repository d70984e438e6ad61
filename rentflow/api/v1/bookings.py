"""Booking command and query endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.api.deps import ActorId, Gateway, get_db
from rentflow.models.booking import Booking
from rentflow.schemas.booking import (
    BookingCreate,
    BookingHistoryResponse,
    BookingResponse,
    CancelRequest,
    ConfirmPaymentRequest,
    InspectionRequest,
    InspectionResponse,
    PaymentMethodRequest,
)
from rentflow.schemas.deposit import DepositHoldResponse
from rentflow.services.booking_service import booking_service

router = APIRouter()

DB = Annotated[AsyncSession, Depends(get_db)]


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def request_booking(data: BookingCreate, actor_id: ActorId, db: DB) -> Booking:
    """Request a booking; the listing calendar is claimed immediately."""
    return await booking_service.request_booking(
        db,
        listing_id=data.listing_id,
        renter_id=actor_id,
        start_date=data.start_date,
        end_date=data.end_date,
        guest_count=data.guest_count,
        payment_method=data.payment_method,
        category_data=data.category_data,
    )


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(booking_id: UUID, db: DB) -> Booking:
    return await booking_service.get(db, booking_id)


@router.get("/{booking_id}/history", response_model=list[BookingHistoryResponse])
async def get_booking_history(booking_id: UUID, db: DB):
    return await booking_service.history(db, booking_id)


@router.post("/{booking_id}/submit", response_model=BookingResponse)
async def submit_booking(booking_id: UUID, actor_id: ActorId, gateway: Gateway, db: DB) -> Booking:
    return await booking_service.submit(db, gateway, booking_id, actor_id)


@router.post("/{booking_id}/approve", response_model=BookingResponse)
async def approve_booking(booking_id: UUID, actor_id: ActorId, gateway: Gateway, db: DB) -> Booking:
    """Owner approval."""
    return await booking_service.approve(db, gateway, booking_id, actor_id)


@router.post("/{booking_id}/deposit", response_model=DepositHoldResponse)
async def authorize_deposit(
    booking_id: UUID,
    data: PaymentMethodRequest,
    actor_id: ActorId,
    gateway: Gateway,
    db: DB,
):
    """Place or replace the deposit hold."""
    return await booking_service.authorize_deposit(db, gateway, booking_id, data.payment_method)


@router.post("/{booking_id}/payment", response_model=BookingResponse)
async def collect_payment(
    booking_id: UUID,
    data: PaymentMethodRequest,
    actor_id: ActorId,
    gateway: Gateway,
    db: DB,
) -> Booking:
    """Charge the renter and confirm the booking."""
    return await booking_service.collect_payment(db, gateway, booking_id, data.payment_method, actor_id)


@router.post("/{booking_id}/confirm-payment", response_model=BookingResponse)
async def confirm_payment(booking_id: UUID, data: ConfirmPaymentRequest, db: DB) -> Booking:
    """Payment confirmation callback; idempotent on the payment reference."""
    return await booking_service.confirm_payment(
        db, booking_id, data.payment_reference, settled=data.settled
    )


@router.post("/{booking_id}/check-in", response_model=BookingResponse)
async def check_in(booking_id: UUID, actor_id: ActorId, db: DB) -> Booking:
    return await booking_service.check_in(db, booking_id, actor_id)


@router.post("/{booking_id}/check-out", response_model=BookingResponse)
async def check_out(booking_id: UUID, actor_id: ActorId, db: DB) -> Booking:
    return await booking_service.check_out(db, booking_id, actor_id)


@router.post("/{booking_id}/inspection", response_model=InspectionResponse)
async def complete_inspection(
    booking_id: UUID,
    data: InspectionRequest,
    actor_id: ActorId,
    gateway: Gateway,
    db: DB,
) -> InspectionResponse:
    """Record the return inspection; issues open a dispute."""
    booking, dispute = await booking_service.complete_inspection(
        db,
        gateway,
        booking_id,
        actor_id,
        has_issues=data.has_issues,
        notes=data.notes,
        amount_claimed=data.amount_claimed,
        condition_report_id=data.condition_report_id,
    )
    return InspectionResponse(
        booking=BookingResponse.model_validate(booking),
        dispute_id=dispute.id if dispute else None,
    )


@router.post("/{booking_id}/settle", response_model=BookingResponse)
async def settle_booking(booking_id: UUID, actor_id: ActorId, db: DB) -> Booking:
    return await booking_service.settle(db, booking_id, actor_id)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: UUID,
    data: CancelRequest,
    actor_id: ActorId,
    gateway: Gateway,
    db: DB,
) -> Booking:
    """Cancel with a refund per the booking's cancellation policy."""
    return await booking_service.cancel(db, gateway, booking_id, actor_id, data.reason)


@router.post("/{booking_id}/host-cancel", response_model=BookingResponse)
async def host_cancel_booking(
    booking_id: UUID,
    data: CancelRequest,
    actor_id: ActorId,
    gateway: Gateway,
    db: DB,
) -> Booking:
    """Owner cancellation: full refund."""
    return await booking_service.host_cancel(db, gateway, booking_id, actor_id, data.reason)


@router.post("/{booking_id}/payment-failed", response_model=BookingResponse)
async def payment_failed(
    booking_id: UUID,
    data: CancelRequest,
    gateway: Gateway,
    db: DB,
) -> Booking:
    """Failure callback from the payment rail for a pending charge."""
    return await booking_service.payment_failed(db, gateway, booking_id, data.reason)
