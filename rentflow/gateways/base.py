"""Base payment gateway interface.

All gateway adapters must implement this interface.
Business logic should NOT live in adapters - only gateway communication.
Every call takes a caller-supplied idempotency key so the engine can retry
safely after timeouts.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum


class GatewayType(str, Enum):
    """Supported payment gateways."""

    STRIPE = "stripe"
    MANUAL = "manual"


class OperationStatus(str, Enum):
    """Outcome of a gateway call.

    ``pending`` means the gateway accepted the request but the money has not
    moved yet; a later callback settles or fails it.
    """

    SUCCEEDED = "succeeded"
    PENDING = "pending"
    FAILED = "failed"


@dataclass
class GatewayResult:
    """Result of a gateway operation."""

    status: OperationStatus
    reference: str | None = None
    error_message: str | None = None
    raw_response: dict | None = None

    @property
    def success(self) -> bool:
        return self.status != OperationStatus.FAILED

    @property
    def settled(self) -> bool:
        return self.status == OperationStatus.SUCCEEDED


def to_minor_units(amount: Decimal) -> int:
    """Convert a decimal amount to the smallest currency unit."""
    return int((amount * 100).quantize(Decimal("1")))


class PaymentGateway(ABC):
    """Abstract base class for payment gateways."""

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type."""

    @abstractmethod
    async def authorize(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str | None,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> GatewayResult:
        """Place a hold on the payment method; ``reference`` is the hold ref."""

    @abstractmethod
    async def capture(
        self,
        hold_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
    ) -> GatewayResult:
        """Capture part or all of a hold; the rest is released by the gateway."""

    @abstractmethod
    async def void(self, hold_ref: str, idempotency_key: str) -> GatewayResult:
        """Release a hold without capturing."""

    @abstractmethod
    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str | None,
        idempotency_key: str,
        description: str,
        metadata: dict | None = None,
    ) -> GatewayResult:
        """Charge the payment method; ``reference`` is the payment ref."""

    @abstractmethod
    async def refund(
        self,
        payment_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        reason: str,
    ) -> GatewayResult:
        """Refund part of a previous charge."""

    @abstractmethod
    async def transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        description: str,
    ) -> GatewayResult:
        """Send funds to an owner's external account."""
