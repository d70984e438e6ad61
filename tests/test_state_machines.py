"""Unit tests for the booking, deposit, dispute, payout and ledger entry state machines."""

import pytest

from rentflow.core.exceptions import InvalidTransitionError
from rentflow.domain.booking_state import (
    BOOKING_TRANSITIONS,
    CANCELLABLE_STATUSES,
    TERMINAL_STATUSES,
    BookingStatus,
    assert_booking_transition,
    can_transition,
)
from rentflow.domain.deposit_state import HoldStatus, assert_hold_transition
from rentflow.domain.dispute_state import (
    ACTIVE_DISPUTE_STATUSES,
    ESCALATION_LADDER,
    DisputePriority,
    DisputeStatus,
    assert_dispute_transition,
    can_resolve_dispute,
)
from rentflow.domain.ledger_state import EntryStatus, assert_entry_transition
from rentflow.domain.payout_state import PayoutStatus, assert_payout_transition

S = BookingStatus


@pytest.mark.unit
@pytest.mark.parametrize(
    "current, target",
    [
        (S.DRAFT, S.PENDING_OWNER_APPROVAL),
        (S.DRAFT, S.PENDING_PAYMENT),
        (S.PENDING_OWNER_APPROVAL, S.PENDING_PAYMENT),
        (S.PENDING_PAYMENT, S.CONFIRMED),
        (S.CONFIRMED, S.IN_PROGRESS),
        (S.IN_PROGRESS, S.AWAITING_RETURN_INSPECTION),
        (S.AWAITING_RETURN_INSPECTION, S.COMPLETED),
        (S.COMPLETED, S.SETTLED),
        (S.COMPLETED, S.DISPUTED),
        (S.DISPUTED, S.REFUNDED),
        (S.CANCELLED, S.REFUNDED),
    ],
)
def test_allowed_booking_transitions(current, target):
    assert can_transition(current.value, target.value)
    assert_booking_transition(current.value, target.value)


@pytest.mark.unit
@pytest.mark.parametrize(
    "current, target",
    [
        (S.DRAFT, S.CONFIRMED),
        (S.CONFIRMED, S.COMPLETED),
        (S.CONFIRMED, S.DISPUTED),
        (S.COMPLETED, S.CANCELLED),
        (S.SETTLED, S.DISPUTED),
        (S.REFUNDED, S.CANCELLED),
        (S.DISPUTED, S.SETTLED),
    ],
)
def test_rejected_booking_transitions(current, target):
    with pytest.raises(InvalidTransitionError) as exc_info:
        assert_booking_transition(current.value, target.value)
    assert exc_info.value.status_code == 409
    assert exc_info.value.context == {
        "entity": "booking",
        "current_state": current.value,
        "attempted_state": target.value,
    }


@pytest.mark.unit
def test_every_status_has_a_transition_entry():
    assert set(BOOKING_TRANSITIONS) == set(BookingStatus)


@pytest.mark.unit
def test_terminal_booking_statuses():
    assert TERMINAL_STATUSES == {S.SETTLED, S.REFUNDED}


@pytest.mark.unit
def test_disputed_and_completed_bookings_are_not_cancellable():
    assert S.DISPUTED not in CANCELLABLE_STATUSES
    assert S.COMPLETED not in CANCELLABLE_STATUSES
    assert S.IN_PROGRESS in CANCELLABLE_STATUSES


@pytest.mark.unit
def test_hold_leaves_authorized_once():
    for target in (HoldStatus.CAPTURED, HoldStatus.RELEASED, HoldStatus.EXPIRED, HoldStatus.FAILED):
        assert_hold_transition(HoldStatus.AUTHORIZED.value, target.value)
    for terminal in (HoldStatus.CAPTURED, HoldStatus.RELEASED, HoldStatus.EXPIRED, HoldStatus.FAILED):
        with pytest.raises(InvalidTransitionError):
            assert_hold_transition(terminal.value, HoldStatus.CAPTURED.value)


@pytest.mark.unit
def test_dispute_transitions():
    assert_dispute_transition(DisputeStatus.OPEN.value, DisputeStatus.UNDER_REVIEW.value)
    assert_dispute_transition(DisputeStatus.IN_MEDIATION.value, DisputeStatus.RESOLVED.value)
    assert_dispute_transition(DisputeStatus.RESOLVED.value, DisputeStatus.CLOSED.value)
    with pytest.raises(InvalidTransitionError):
        assert_dispute_transition(DisputeStatus.CLOSED.value, DisputeStatus.OPEN.value)
    with pytest.raises(InvalidTransitionError):
        assert_dispute_transition(DisputeStatus.RESOLVED.value, DisputeStatus.IN_MEDIATION.value)


@pytest.mark.unit
def test_resolved_and_closed_disputes_cannot_be_resolved_again():
    assert can_resolve_dispute(DisputeStatus.RESOLVED.value) == (False, "Dispute is already resolved")
    assert can_resolve_dispute(DisputeStatus.CLOSED.value)[0] is False
    assert can_resolve_dispute(DisputeStatus.UNDER_REVIEW.value) == (True, None)
    assert DisputeStatus.RESOLVED not in ACTIVE_DISPUTE_STATUSES


@pytest.mark.unit
def test_escalation_ladder_tops_out_at_urgent():
    assert ESCALATION_LADDER[DisputePriority.MEDIUM] == DisputePriority.HIGH
    assert ESCALATION_LADDER[DisputePriority.URGENT] == DisputePriority.URGENT


@pytest.mark.unit
def test_payout_transitions():
    assert_payout_transition(PayoutStatus.PENDING.value, PayoutStatus.PROCESSING.value)
    assert_payout_transition(PayoutStatus.IN_TRANSIT.value, PayoutStatus.PAID.value)
    with pytest.raises(InvalidTransitionError):
        assert_payout_transition(PayoutStatus.PAID.value, PayoutStatus.FAILED.value)
    with pytest.raises(InvalidTransitionError):
        assert_payout_transition(PayoutStatus.PENDING.value, PayoutStatus.PAID.value)


@pytest.mark.unit
def test_ledger_entries_only_leave_pending():
    assert_entry_transition(EntryStatus.PENDING.value, EntryStatus.SETTLED.value)
    with pytest.raises(InvalidTransitionError):
        assert_entry_transition(EntryStatus.SETTLED.value, EntryStatus.FAILED.value)
    with pytest.raises(InvalidTransitionError):
        assert_entry_transition(EntryStatus.SETTLED.value, EntryStatus.PENDING.value)
