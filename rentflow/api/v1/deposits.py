"""Deposit hold endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.api.deps import ActorId, Gateway, get_db
from rentflow.core.exceptions import AuthorizationError
from rentflow.models.deposit import DepositHold
from rentflow.schemas.booking import PaymentMethodRequest
from rentflow.schemas.deposit import CaptureRequest, DepositHoldResponse, ReleaseRequest
from rentflow.services.booking_transitions import get_booking
from rentflow.services.deposit_service import deposit_service

router = APIRouter()

DB = Annotated[AsyncSession, Depends(get_db)]


async def _owner_hold(db: AsyncSession, hold_id: UUID, actor_id: UUID) -> DepositHold:
    hold = await deposit_service.get_hold(db, hold_id)
    booking = await get_booking(db, hold.booking_id)
    if actor_id != booking.owner_id:
        raise AuthorizationError("Only the owner can act on this deposit")
    return hold


@router.get("/{hold_id}", response_model=DepositHoldResponse)
async def get_hold(hold_id: UUID, db: DB) -> DepositHold:
    return await deposit_service.get_hold(db, hold_id)


@router.post("/{hold_id}/capture", response_model=DepositHoldResponse)
async def capture_hold(
    hold_id: UUID,
    data: CaptureRequest,
    actor_id: ActorId,
    gateway: Gateway,
    db: DB,
) -> DepositHold:
    """Capture part or all of a deposit for the owner."""
    await _owner_hold(db, hold_id, actor_id)
    return await deposit_service.capture(db, gateway, hold_id, data.deducted_amount, data.reason)


@router.post("/{hold_id}/release", response_model=DepositHoldResponse)
async def release_hold(
    hold_id: UUID,
    data: ReleaseRequest,
    actor_id: ActorId,
    gateway: Gateway,
    db: DB,
) -> DepositHold:
    """Release a deposit; repeating the call is harmless."""
    await _owner_hold(db, hold_id, actor_id)
    return await deposit_service.release(db, gateway, hold_id, data.reason)


@router.post("/bookings/{booking_id}/reauthorize", response_model=DepositHoldResponse)
async def reauthorize_hold(
    booking_id: UUID,
    data: PaymentMethodRequest,
    actor_id: ActorId,
    gateway: Gateway,
    db: DB,
) -> DepositHold:
    """Replace a lapsed or declined hold."""
    booking = await get_booking(db, booking_id, for_update=True)
    if actor_id != booking.renter_id:
        raise AuthorizationError("Only the renter can re-authorize the deposit")
    return await deposit_service.reauthorize(db, gateway, booking, data.payment_method)
