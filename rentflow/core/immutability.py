"""Immutability enforcement for financial and audit records using SQLAlchemy events."""

import logging
from datetime import UTC, datetime

from sqlalchemy import event, inspect

from rentflow.core.exceptions import ValidationError
from rentflow.domain.ledger_state import assert_entry_transition

logger = logging.getLogger(__name__)

# Ledger entry columns that may change after insert.
MUTABLE_LEDGER_ENTRY_FIELDS = frozenset({"status", "settled_at", "payout_id"})

_registered = False


class ImmutabilityViolationError(ValidationError):
    """Raised when attempting to modify immutable financial records."""

    def __init__(self, model_name: str, operation: str, record_id: str):
        self.model_name = model_name
        self.operation = operation
        self.record_id = record_id
        super().__init__(
            f"Immutability violation: Cannot {operation} {model_name} record {record_id}. "
            "Financial and audit records are immutable after creation."
        )


def _log_immutability_violation(model_name: str, operation: str, record_id: str) -> None:
    """Log immutability violation for audit purposes."""
    logger.error(
        f"IMMUTABILITY_VIOLATION: Attempted to {operation} {model_name} "
        f"record_id={record_id} at {datetime.now(UTC).isoformat()}"
    )


def _block(model, operation: str) -> None:
    name = model.__name__
    sql_event = "before_update" if operation == "UPDATE" else "before_delete"

    @event.listens_for(model, sql_event)
    def prevent(mapper, connection, target):
        _log_immutability_violation(name, operation, str(target.id))
        raise ImmutabilityViolationError(name, operation, str(target.id))


def _changed_fields(target) -> set[str]:
    state = inspect(target)
    return {attr.key for attr in state.attrs if attr.history.has_changes()}


def register_immutability_enforcement() -> None:
    """Register SQLAlchemy event listeners for immutability enforcement.

    Safe to call more than once; listeners are attached a single time.
    """
    global _registered
    if _registered:
        return

    from rentflow.models.booking import Booking, BookingStateHistory
    from rentflow.models.cancellation import CancellationPolicy, CancellationRule
    from rentflow.models.dispute import DisputeResolution, DisputeTimelineEntry
    from rentflow.models.ledger import LedgerEntry, LedgerPosting

    # Append-only: no UPDATE, no DELETE
    for model in (
        BookingStateHistory,
        DisputeTimelineEntry,
        DisputeResolution,
        LedgerPosting,
        CancellationPolicy,
        CancellationRule,
    ):
        _block(model, "UPDATE")
        _block(model, "DELETE")

    # Bookings are historical: never deleted
    _block(Booking, "DELETE")
    _block(LedgerEntry, "DELETE")

    @event.listens_for(LedgerEntry, "before_update")
    def guard_ledger_entry_update(mapper, connection, target):
        """Allow only status progression, settlement time and payout claims."""
        changed = _changed_fields(target)
        illegal = changed - MUTABLE_LEDGER_ENTRY_FIELDS
        if illegal:
            _log_immutability_violation("LedgerEntry", f"UPDATE {sorted(illegal)}", str(target.id))
            raise ImmutabilityViolationError("LedgerEntry", "UPDATE", str(target.id))

        if "status" in changed:
            history = inspect(target).attrs.status.history
            previous = history.deleted[0] if history.deleted else None
            if previous is not None:
                assert_entry_transition(previous, target.status)

    _registered = True
    logger.info("Immutability enforcement registered for financial records")
