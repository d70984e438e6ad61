"""Core utilities: errors, immutability guards, idempotency keys, middleware."""

from rentflow.core.exceptions import (
    AppException,
    AuthorizationError,
    AuthorizationFailedError,
    ConflictError,
    ExpiredHoldError,
    InvalidTransitionError,
    NotFoundError,
    PaymentFailedError,
    TooEarlyError,
    UnbalancedPostingError,
    ValidationError,
)

__all__ = [
    "AppException",
    "AuthorizationError",
    "AuthorizationFailedError",
    "ConflictError",
    "ExpiredHoldError",
    "InvalidTransitionError",
    "NotFoundError",
    "PaymentFailedError",
    "TooEarlyError",
    "UnbalancedPostingError",
    "ValidationError",
]
