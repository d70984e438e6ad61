"""Database models."""

from rentflow.models.booking import Booking, BookingStateHistory
from rentflow.models.cancellation import CancellationPolicy, CancellationRule
from rentflow.models.deposit import DepositHold
from rentflow.models.dispute import Dispute, DisputeResolution, DisputeTimelineEntry
from rentflow.models.ledger import LedgerEntry, LedgerPosting
from rentflow.models.listing import BookedDay, Listing, PayoutAccount
from rentflow.models.outbox import OutboxEvent
from rentflow.models.payout import Payout

from rentflow.core.immutability import register_immutability_enforcement

register_immutability_enforcement()

__all__ = [
    # Catalog
    "Listing",
    "BookedDay",
    "PayoutAccount",
    "CancellationPolicy",
    "CancellationRule",
    # Booking
    "Booking",
    "BookingStateHistory",
    # Deposit
    "DepositHold",
    # Ledger
    "LedgerPosting",
    "LedgerEntry",
    # Dispute
    "Dispute",
    "DisputeResolution",
    "DisputeTimelineEntry",
    # Payout
    "Payout",
    # Outbox
    "OutboxEvent",
]
