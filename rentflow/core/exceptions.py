"""Custom application exceptions."""

from datetime import datetime
from typing import Any

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base application exception.

    ``context`` is rendered next to ``detail`` by the API exception handler.
    When ``persist_changes`` is set the unit of work is committed before the
    error propagates, so records describing the failure are kept.
    """

    persist_changes: bool = False

    def __init__(
        self,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail: str = "An unexpected error occurred",
        headers: dict[str, str] | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        self.context = context or {}
        super().__init__(status_code=status_code, detail=detail, headers=headers)


class ValidationError(AppException):
    """Validation error exception."""

    def __init__(self, detail: str = "Validation failed", errors: list[dict[str, Any]] | None = None) -> None:
        self.errors = errors
        super().__init__(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=detail)


class NotFoundError(AppException):
    """Resource not found exception."""

    def __init__(self, resource: str = "Resource", identifier: str | None = None) -> None:
        detail = f"{resource} not found"
        if identifier:
            detail = f"{resource} with ID '{identifier}' not found"
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class AuthorizationError(AppException):
    """Actor is not allowed to perform the command."""

    def __init__(self, detail: str = "You don't have permission to perform this action") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class InvalidTransitionError(AppException):
    """State change not permitted from the current state."""

    def __init__(self, entity: str, current_state: str, attempted_state: str) -> None:
        self.entity = entity
        self.current_state = current_state
        self.attempted_state = attempted_state
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Invalid {entity} transition: {current_state} → {attempted_state}",
            context={
                "entity": entity,
                "current_state": current_state,
                "attempted_state": attempted_state,
            },
        )


class ConflictError(AppException):
    """Overlapping booking or concurrent modification; re-fetch and retry."""

    def __init__(self, detail: str = "The resource was modified concurrently") -> None:
        super().__init__(status_code=status.HTTP_409_CONFLICT, detail=detail)


class TooEarlyError(AppException):
    """Operation attempted before its allowed window opens."""

    def __init__(self, detail: str, earliest_at: datetime) -> None:
        self.earliest_at = earliest_at
        super().__init__(
            status_code=status.HTTP_425_TOO_EARLY,
            detail=detail,
            context={"earliest_at": earliest_at.isoformat()},
        )


class PaymentFailedError(AppException):
    """External gateway declined a charge, capture, refund or transfer."""

    def __init__(self, detail: str = "Payment processing failed") -> None:
        super().__init__(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail=detail)


class AuthorizationFailedError(PaymentFailedError):
    """Deposit pre-authorization declined by the gateway."""

    persist_changes = True

    def __init__(self, detail: str = "Deposit authorization failed") -> None:
        super().__init__(detail=detail)


class ExpiredHoldError(AppException):
    """Deposit hold lapsed before it could be used; re-authorize.

    The EXPIRED marking is committed with the error unless the caller passes
    ``persist_changes=False`` because other writes of its unit of work must
    not survive.
    """

    persist_changes = True

    def __init__(
        self, hold_id: str, expired_at: datetime | None = None, persist_changes: bool = True
    ) -> None:
        self.hold_id = hold_id
        self.persist_changes = persist_changes
        context: dict[str, Any] = {"hold_id": hold_id, "current_state": "expired"}
        if expired_at:
            context["expired_at"] = expired_at.isoformat()
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Deposit hold {hold_id} has expired and must be re-authorized",
            context=context,
        )


class UnbalancedPostingError(AppException):
    """Ledger refused a posting whose debits and credits differ."""

    def __init__(self, transaction_type: str, reference_id: str, debits: Any, credits: Any) -> None:
        self.transaction_type = transaction_type
        self.reference_id = reference_id
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=(
                f"Unbalanced {transaction_type} posting for reference {reference_id}: "
                f"debits={debits} credits={credits}"
            ),
        )


class ExternalServiceError(AppException):
    """External service error."""

    def __init__(self, service: str, detail: str | None = None) -> None:
        message = f"External service '{service}' is unavailable"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=message)
