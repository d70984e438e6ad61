"""Owner payout state machine.

States:
- pending: Payout created, eligible ledger credits claimed
- processing: Transfer requested from the gateway
- in_transit: Gateway accepted the transfer, funds not yet delivered
- paid: Transfer confirmed, owner-receivable balance closed
- failed: Transfer declined; claimed credits are eligible again
"""

from enum import Enum

from rentflow.core.exceptions import InvalidTransitionError


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    IN_TRANSIT = "in_transit"
    PAID = "paid"
    FAILED = "failed"


PAYOUT_TRANSITIONS: dict[PayoutStatus, set[PayoutStatus]] = {
    PayoutStatus.PENDING: {PayoutStatus.PROCESSING, PayoutStatus.FAILED},
    PayoutStatus.PROCESSING: {PayoutStatus.PAID, PayoutStatus.IN_TRANSIT, PayoutStatus.FAILED},
    PayoutStatus.IN_TRANSIT: {PayoutStatus.PAID, PayoutStatus.FAILED},
    PayoutStatus.PAID: set(),
    PayoutStatus.FAILED: set(),
}

# Payouts a retry sweep may pick up again.
RETRYABLE_PAYOUT_STATUSES = frozenset({PayoutStatus.PENDING, PayoutStatus.PROCESSING})


def assert_payout_transition(current: str, target: str) -> None:
    """Validate payout state transition.

    Args:
        current: Current payout status
        target: Target payout status

    Raises:
        InvalidTransitionError: If transition is not allowed
    """
    allowed = PAYOUT_TRANSITIONS.get(PayoutStatus(current), set())
    if PayoutStatus(target) not in allowed:
        raise InvalidTransitionError("payout", PayoutStatus(current).value, PayoutStatus(target).value)
