"""Manual payment gateway adapter for offline / bank-transfer operation."""

from decimal import Decimal

from rentflow.gateways.base import (
    GatewayResult,
    GatewayType,
    OperationStatus,
    PaymentGateway,
)


class ManualGateway(PaymentGateway):
    """Manual gateway.

    Holds are recorded without contacting a processor. Charges, refunds and
    transfers are accepted as pending and must be confirmed by an operator
    (settling the ledger reference) once the bank transfer is verified.
    """

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.MANUAL

    async def authorize(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str | None,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> GatewayResult:
        return GatewayResult(
            status=OperationStatus.SUCCEEDED,
            reference=f"manual_hold_{idempotency_key[:16]}",
            raw_response={"type": "manual_hold", "amount": str(amount)},
        )

    async def capture(
        self,
        hold_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
    ) -> GatewayResult:
        return GatewayResult(
            status=OperationStatus.SUCCEEDED,
            reference=f"{hold_ref}_capture",
            raw_response={"type": "manual_capture", "amount": str(amount)},
        )

    async def void(self, hold_ref: str, idempotency_key: str) -> GatewayResult:
        return GatewayResult(status=OperationStatus.SUCCEEDED, reference=hold_ref)

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str | None,
        idempotency_key: str,
        description: str,
        metadata: dict | None = None,
    ) -> GatewayResult:
        """Create manual payment request (settled once an operator verifies it)."""
        return GatewayResult(
            status=OperationStatus.PENDING,
            reference=f"manual_{idempotency_key[:16]}",
            raw_response={
                "type": "bank_transfer",
                "status": "pending_verification",
                "instructions": "Transfer the amount and upload the receipt",
            },
        )

    async def refund(
        self,
        payment_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        reason: str,
    ) -> GatewayResult:
        """Process manual refund (requires operator action)."""
        return GatewayResult(
            status=OperationStatus.PENDING,
            reference=f"refund_{payment_ref}",
            raw_response={
                "type": "manual_refund",
                "note": "Operator must send the refund by bank transfer",
                "amount": str(amount),
                "reason": reason,
            },
        )

    async def transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        description: str,
    ) -> GatewayResult:
        return GatewayResult(
            status=OperationStatus.PENDING,
            reference=f"manual_transfer_{idempotency_key[:16]}",
            raw_response={"destination": destination, "amount": str(amount)},
        )
