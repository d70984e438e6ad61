"""Dispute state machine.

States: open → under_review/investigating → awaiting_response/in_mediation
→ resolved → closed. Any non-terminal dispute may be closed directly
(dismissed).
"""

from enum import Enum

from rentflow.core.exceptions import InvalidTransitionError


class DisputeStatus(str, Enum):
    OPEN = "open"
    UNDER_REVIEW = "under_review"
    INVESTIGATING = "investigating"
    AWAITING_RESPONSE = "awaiting_response"
    IN_MEDIATION = "in_mediation"
    RESOLVED = "resolved"
    CLOSED = "closed"


class DisputePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class DisputeType(str, Enum):
    PROPERTY_DAMAGE = "property_damage"
    PAYMENT_ISSUE = "payment_issue"
    CANCELLATION = "cancellation"
    CLEANING_FEE = "cleaning_fee"
    RULES_VIOLATION = "rules_violation"
    MISSING_ITEMS = "missing_items"
    CONDITION_MISMATCH = "condition_mismatch"
    REFUND_REQUEST = "refund_request"
    OTHER = "other"


class ResolutionOutcome(str, Enum):
    RESOLVED_INITIATOR_FAVOR = "resolved_initiator_favor"
    RESOLVED_DEFENDANT_FAVOR = "resolved_defendant_favor"
    RESOLVED_SPLIT = "resolved_split"
    NO_ACTION = "no_action"


D = DisputeStatus

DISPUTE_TRANSITIONS: dict[DisputeStatus, set[DisputeStatus]] = {
    D.OPEN: {D.UNDER_REVIEW, D.INVESTIGATING, D.RESOLVED, D.CLOSED},
    D.UNDER_REVIEW: {D.INVESTIGATING, D.AWAITING_RESPONSE, D.IN_MEDIATION, D.RESOLVED, D.CLOSED},
    D.INVESTIGATING: {D.AWAITING_RESPONSE, D.IN_MEDIATION, D.RESOLVED, D.CLOSED},
    D.AWAITING_RESPONSE: {D.UNDER_REVIEW, D.INVESTIGATING, D.IN_MEDIATION, D.RESOLVED, D.CLOSED},
    D.IN_MEDIATION: {D.AWAITING_RESPONSE, D.RESOLVED, D.CLOSED},
    D.RESOLVED: {D.CLOSED},
    D.CLOSED: set(),
}

ACTIVE_DISPUTE_STATUSES = frozenset(
    {D.OPEN, D.UNDER_REVIEW, D.INVESTIGATING, D.AWAITING_RESPONSE, D.IN_MEDIATION}
)

ESCALATION_LADDER: dict[DisputePriority, DisputePriority] = {
    DisputePriority.LOW: DisputePriority.MEDIUM,
    DisputePriority.MEDIUM: DisputePriority.HIGH,
    DisputePriority.HIGH: DisputePriority.URGENT,
    DisputePriority.URGENT: DisputePriority.URGENT,
}


def assert_dispute_transition(current_status: str, new_status: str) -> None:
    """Validate dispute state transition."""
    allowed = DISPUTE_TRANSITIONS.get(DisputeStatus(current_status), set())
    if DisputeStatus(new_status) not in allowed:
        raise InvalidTransitionError(
            "dispute", DisputeStatus(current_status).value, DisputeStatus(new_status).value
        )


def can_resolve_dispute(status: str) -> tuple[bool, str | None]:
    """Check if dispute can be resolved."""
    if status == D.RESOLVED:
        return False, "Dispute is already resolved"
    if status == D.CLOSED:
        return False, "Dispute is closed"
    return True, None
