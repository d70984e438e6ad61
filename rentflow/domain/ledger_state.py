"""Ledger vocabulary and entry status machine."""

from enum import Enum

from rentflow.core.exceptions import InvalidTransitionError


class AccountType(str, Enum):
    """Ledger accounts. Party-scoped accounts carry a party id on the entry."""

    RENTER_RECEIVABLE = "renter_receivable"
    OWNER_RECEIVABLE = "owner_receivable"
    PLATFORM_REVENUE = "platform_revenue"
    DEPOSIT_LIABILITY = "deposit_liability"
    PLATFORM_CASH = "platform_cash"


class EntrySide(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionType(str, Enum):
    PAYMENT = "payment"
    OWNER_EARNING = "owner_earning"
    DEPOSIT_HOLD = "deposit_hold"
    DEPOSIT_CAPTURE = "deposit_capture"
    DEPOSIT_RELEASE = "deposit_release"
    REFUND = "refund"
    DISPUTE_REFUND = "dispute_refund"
    DISPUTE_ADJUSTMENT = "dispute_adjustment"
    PAYOUT = "payout"


class EntryStatus(str, Enum):
    PENDING = "pending"
    SETTLED = "settled"
    FAILED = "failed"
    REVERSED = "reversed"


ENTRY_TRANSITIONS: dict[EntryStatus, set[EntryStatus]] = {
    EntryStatus.PENDING: {EntryStatus.SETTLED, EntryStatus.FAILED, EntryStatus.REVERSED},
    EntryStatus.SETTLED: set(),
    EntryStatus.FAILED: set(),
    EntryStatus.REVERSED: set(),
}

REVERSAL_PREFIX = "reversal:"


def reversal_reference(reference_id: str) -> str:
    return f"{REVERSAL_PREFIX}{reference_id}"


def assert_entry_transition(current: str, target: str) -> None:
    if EntryStatus(target) not in ENTRY_TRANSITIONS.get(EntryStatus(current), set()):
        raise InvalidTransitionError("ledger entry", EntryStatus(current).value, EntryStatus(target).value)
