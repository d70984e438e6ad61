"""Ledger read-model schemas."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from rentflow.domain.ledger_state import TransactionType


class LedgerEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    posting_id: UUID
    booking_id: UUID | None
    transaction_type: str
    reference_id: str
    account_type: str
    party_id: UUID | None
    side: str
    amount: Decimal
    currency: str
    status: str
    settled_at: datetime | None
    payout_id: UUID | None
    created_at: datetime


class OwnerBalanceResponse(BaseModel):
    owner_id: UUID
    balance: Decimal
    pending_balance: Decimal
    currency: str


class LedgerReferenceAction(BaseModel):
    """Settle or fail every posting recorded under a reference."""

    reference_id: str = Field(..., min_length=1, max_length=120)
    reason: str | None = Field(None, max_length=1000)


class LedgerReversalRequest(LedgerReferenceAction):
    """Reverse one posting."""

    transaction_type: TransactionType


class UnbalancedGroupResponse(BaseModel):
    booking_id: UUID | None
    transaction_type: str
    reference_id: str
    debits: Decimal
    credits: Decimal
