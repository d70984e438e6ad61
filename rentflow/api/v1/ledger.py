"""Ledger read models and posting operations."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.api.deps import get_db
from rentflow.config import settings
from rentflow.models.ledger import LedgerEntry
from rentflow.schemas.ledger import (
    LedgerEntryResponse,
    LedgerReferenceAction,
    LedgerReversalRequest,
    OwnerBalanceResponse,
    UnbalancedGroupResponse,
)
from rentflow.services.booking_transitions import get_booking
from rentflow.services.ledger_service import ledger_store

router = APIRouter()

DB = Annotated[AsyncSession, Depends(get_db)]


@router.get("/owners/{owner_id}/balance", response_model=OwnerBalanceResponse)
async def owner_balance(owner_id: UUID, db: DB) -> OwnerBalanceResponse:
    return OwnerBalanceResponse(
        owner_id=owner_id,
        balance=await ledger_store.owner_balance(db, owner_id),
        pending_balance=await ledger_store.pending_owner_balance(db, owner_id),
        currency=settings.currency,
    )


@router.get("/bookings/{booking_id}/entries", response_model=list[LedgerEntryResponse])
async def booking_entries(booking_id: UUID, db: DB) -> list[LedgerEntry]:
    await get_booking(db, booking_id)
    return await ledger_store.entries_for_booking(db, booking_id)


@router.get("/reconciliation", response_model=list[UnbalancedGroupResponse])
async def reconciliation(db: DB, booking_id: UUID | None = None):
    """Groups whose debits and credits differ; empty when the ledger is consistent."""
    return await ledger_store.unbalanced_groups(db, booking_id)


@router.post("/settle", response_model=list[LedgerEntryResponse])
async def settle_reference(data: LedgerReferenceAction, db: DB) -> list[LedgerEntry]:
    """Settlement callback from the payment rail."""
    return await ledger_store.settle(db, data.reference_id)


@router.post("/fail", response_model=list[LedgerEntryResponse])
async def fail_reference(data: LedgerReferenceAction, db: DB) -> list[LedgerEntry]:
    return await ledger_store.fail(db, data.reference_id, data.reason)


@router.post("/reverse", response_model=list[LedgerEntryResponse])
async def reverse_reference(data: LedgerReversalRequest, db: DB) -> list[LedgerEntry]:
    posting = await ledger_store.reverse(db, data.transaction_type, data.reference_id, data.reason)
    return await ledger_store.entries_for_posting(db, posting.id)
