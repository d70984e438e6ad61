"""Owner payout endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.api.deps import Gateway, get_db
from rentflow.models.payout import Payout
from rentflow.schemas.payout import PayoutConfirm, PayoutFail, PayoutResponse
from rentflow.services.payout_service import payout_service

router = APIRouter()

DB = Annotated[AsyncSession, Depends(get_db)]


@router.post("/run", response_model=list[PayoutResponse])
async def run_payouts(gateway: Gateway, db: DB) -> list[Payout]:
    """Run the payout aggregation for every owner now."""
    return await payout_service.run_scheduled_payouts(db, gateway)


@router.post("/owners/{owner_id}", response_model=PayoutResponse | None, status_code=status.HTTP_201_CREATED)
async def create_owner_payout(owner_id: UUID, gateway: Gateway, db: DB) -> Payout | None:
    """On-demand payout for one owner; null when below the minimum."""
    payout = await payout_service.create_payout(db, owner_id)
    if payout is None:
        return None
    return await payout_service.execute_payout(db, gateway, payout.id)


@router.get("/owners/{owner_id}", response_model=list[PayoutResponse])
async def list_owner_payouts(owner_id: UUID, db: DB) -> list[Payout]:
    return await payout_service.list_payouts(db, owner_id)


@router.post("/{payout_id}/execute", response_model=PayoutResponse)
async def execute_payout(payout_id: UUID, gateway: Gateway, db: DB) -> Payout:
    return await payout_service.execute_payout(db, gateway, payout_id)


@router.post("/{payout_id}/confirm", response_model=PayoutResponse)
async def confirm_payout(payout_id: UUID, data: PayoutConfirm, db: DB) -> Payout:
    """Transfer confirmation callback."""
    return await payout_service.confirm_transfer(db, payout_id, data.external_ref)


@router.post("/{payout_id}/fail", response_model=PayoutResponse)
async def fail_payout(payout_id: UUID, data: PayoutFail, db: DB) -> Payout:
    """Transfer failure callback; the owner's entries become eligible again."""
    return await payout_service.fail_transfer(db, payout_id, data.reason)
