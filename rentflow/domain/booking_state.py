"""Booking state machine."""

from enum import Enum

from rentflow.core.exceptions import InvalidTransitionError


class BookingStatus(str, Enum):
    """Booking lifecycle states."""

    DRAFT = "draft"
    PENDING_OWNER_APPROVAL = "pending_owner_approval"
    PENDING_PAYMENT = "pending_payment"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    AWAITING_RETURN_INSPECTION = "awaiting_return_inspection"
    COMPLETED = "completed"
    SETTLED = "settled"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


S = BookingStatus

BOOKING_TRANSITIONS: dict[BookingStatus, set[BookingStatus]] = {
    S.DRAFT: {S.PENDING_OWNER_APPROVAL, S.PENDING_PAYMENT, S.CANCELLED},
    S.PENDING_OWNER_APPROVAL: {S.PENDING_PAYMENT, S.CANCELLED},
    S.PENDING_PAYMENT: {S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.IN_PROGRESS, S.CANCELLED},
    S.IN_PROGRESS: {S.AWAITING_RETURN_INSPECTION, S.DISPUTED, S.CANCELLED},
    S.AWAITING_RETURN_INSPECTION: {S.COMPLETED, S.DISPUTED, S.CANCELLED},
    S.COMPLETED: {S.SETTLED, S.DISPUTED},
    S.DISPUTED: {
        S.IN_PROGRESS,
        S.AWAITING_RETURN_INSPECTION,
        S.COMPLETED,
        S.REFUNDED,
        S.CANCELLED,
    },
    S.CANCELLED: {S.REFUNDED},
    S.SETTLED: set(),
    S.REFUNDED: set(),
}

# Cancellation is allowed before completion, but never while disputed.
CANCELLABLE_STATUSES = frozenset(
    {
        S.DRAFT,
        S.PENDING_OWNER_APPROVAL,
        S.PENDING_PAYMENT,
        S.CONFIRMED,
        S.IN_PROGRESS,
        S.AWAITING_RETURN_INSPECTION,
    }
)

DISPUTABLE_STATUSES = frozenset({S.IN_PROGRESS, S.AWAITING_RETURN_INSPECTION, S.COMPLETED})

# Requests that never got paid and can be expired by the sweep.
UNPAID_STATUSES = frozenset({S.DRAFT, S.PENDING_OWNER_APPROVAL, S.PENDING_PAYMENT})

# States whose owner-receivable credits may be paid out.
PAYOUT_ELIGIBLE_STATUSES = frozenset({S.SETTLED, S.REFUNDED, S.CANCELLED})

# States that release the listing calendar.
RELEASED_STATUSES = frozenset({S.CANCELLED, S.REFUNDED})

TERMINAL_STATUSES = frozenset(
    status for status, targets in BOOKING_TRANSITIONS.items() if not targets
)


def can_transition(current: str, target: str) -> bool:
    return BookingStatus(target) in BOOKING_TRANSITIONS.get(BookingStatus(current), set())


def assert_booking_transition(current: str, target: str) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError("booking", BookingStatus(current).value, BookingStatus(target).value)
