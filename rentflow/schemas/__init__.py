"""Pydantic schemas for API validation."""

from rentflow.schemas.booking import (
    BookingCreate,
    BookingHistoryResponse,
    BookingResponse,
    CancelRequest,
    ConfirmPaymentRequest,
    InspectionRequest,
    InspectionResponse,
    PaymentMethodRequest,
)
from rentflow.schemas.category_data import CATEGORY_DATA_MODELS, parse_category_data
from rentflow.schemas.deposit import CaptureRequest, DepositHoldResponse, ReleaseRequest
from rentflow.schemas.dispute import (
    DisputeComment,
    DisputeCreate,
    DisputeDismiss,
    DisputeNote,
    DisputeResolutionResponse,
    DisputeResolve,
    DisputeResponse,
    DisputeReviewRequest,
    TimelineEntryResponse,
)
from rentflow.schemas.ledger import (
    LedgerEntryResponse,
    LedgerReferenceAction,
    LedgerReversalRequest,
    OwnerBalanceResponse,
    UnbalancedGroupResponse,
)
from rentflow.schemas.payout import PayoutConfirm, PayoutFail, PayoutResponse

__all__ = [
    # Booking
    "BookingCreate",
    "BookingHistoryResponse",
    "BookingResponse",
    "CancelRequest",
    "ConfirmPaymentRequest",
    "InspectionRequest",
    "InspectionResponse",
    "PaymentMethodRequest",
    "CATEGORY_DATA_MODELS",
    "parse_category_data",
    # Deposit
    "CaptureRequest",
    "DepositHoldResponse",
    "ReleaseRequest",
    # Dispute
    "DisputeComment",
    "DisputeCreate",
    "DisputeDismiss",
    "DisputeNote",
    "DisputeResolutionResponse",
    "DisputeResolve",
    "DisputeResponse",
    "DisputeReviewRequest",
    "TimelineEntryResponse",
    # Ledger
    "LedgerEntryResponse",
    "LedgerReferenceAction",
    "LedgerReversalRequest",
    "OwnerBalanceResponse",
    "UnbalancedGroupResponse",
    # Payout
    "PayoutConfirm",
    "PayoutFail",
    "PayoutResponse",
]
