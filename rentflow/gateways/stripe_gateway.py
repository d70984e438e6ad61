"""Stripe payment gateway adapter."""

import logging
from decimal import Decimal

from rentflow.config import settings
from rentflow.gateways.base import (
    GatewayResult,
    GatewayType,
    OperationStatus,
    PaymentGateway,
    to_minor_units,
)

logger = logging.getLogger(__name__)

NOT_CONFIGURED = GatewayResult(status=OperationStatus.FAILED, error_message="Stripe not configured")


class StripeGateway(PaymentGateway):
    """Stripe implementation: holds are manual-capture PaymentIntents."""

    def __init__(self, secret_key: str | None = None):
        self.secret_key = secret_key or settings.stripe_secret_key

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.STRIPE

    def _client(self):
        import stripe

        stripe.api_key = self.secret_key
        return stripe

    def _failed(self, operation: str, exc: Exception) -> GatewayResult:
        logger.warning(f"Stripe {operation} failed: {exc}")
        return GatewayResult(status=OperationStatus.FAILED, error_message=str(exc))

    async def authorize(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str | None,
        idempotency_key: str,
        metadata: dict | None = None,
    ) -> GatewayResult:
        """Create a manual-capture PaymentIntent."""
        if not self.secret_key:
            return NOT_CONFIGURED

        try:
            stripe = self._client()
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                payment_method=payment_method,
                capture_method="manual",
                confirm=True,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
        except Exception as e:
            return self._failed("authorize", e)

        if intent.status != "requires_capture":
            return GatewayResult(
                status=OperationStatus.FAILED,
                reference=intent.id,
                error_message=f"Hold not placed, intent status {intent.status}",
                raw_response={"status": intent.status},
            )
        return GatewayResult(
            status=OperationStatus.SUCCEEDED,
            reference=intent.id,
            raw_response={"status": intent.status},
        )

    async def capture(
        self,
        hold_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
    ) -> GatewayResult:
        if not self.secret_key:
            return NOT_CONFIGURED

        try:
            stripe = self._client()
            intent = stripe.PaymentIntent.capture(
                hold_ref,
                amount_to_capture=to_minor_units(amount),
                idempotency_key=idempotency_key,
            )
        except Exception as e:
            return self._failed("capture", e)

        return GatewayResult(
            status=OperationStatus.SUCCEEDED if intent.status == "succeeded" else OperationStatus.PENDING,
            reference=intent.id,
            raw_response={"status": intent.status},
        )

    async def void(self, hold_ref: str, idempotency_key: str) -> GatewayResult:
        if not self.secret_key:
            return NOT_CONFIGURED

        try:
            stripe = self._client()
            intent = stripe.PaymentIntent.cancel(hold_ref, idempotency_key=idempotency_key)
        except Exception as e:
            return self._failed("void", e)

        return GatewayResult(
            status=OperationStatus.SUCCEEDED,
            reference=intent.id,
            raw_response={"status": intent.status},
        )

    async def charge(
        self,
        amount: Decimal,
        currency: str,
        payment_method: str | None,
        idempotency_key: str,
        description: str,
        metadata: dict | None = None,
    ) -> GatewayResult:
        """Create and confirm an automatic-capture PaymentIntent."""
        if not self.secret_key:
            return NOT_CONFIGURED

        try:
            stripe = self._client()
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                payment_method=payment_method,
                confirm=True,
                description=description,
                metadata=metadata or {},
                idempotency_key=idempotency_key,
            )
        except Exception as e:
            return self._failed("charge", e)

        statuses = {
            "succeeded": OperationStatus.SUCCEEDED,
            "processing": OperationStatus.PENDING,
        }
        status = statuses.get(intent.status, OperationStatus.FAILED)
        return GatewayResult(
            status=status,
            reference=intent.id,
            error_message=None if status != OperationStatus.FAILED else f"Intent status {intent.status}",
            raw_response={"status": intent.status},
        )

    async def refund(
        self,
        payment_ref: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        reason: str,
    ) -> GatewayResult:
        """Process Stripe refund."""
        if not self.secret_key:
            return NOT_CONFIGURED

        try:
            stripe = self._client()
            refund = stripe.Refund.create(
                payment_intent=payment_ref,
                amount=to_minor_units(amount),
                reason="requested_by_customer",
                metadata={"reason": reason[:500]},
                idempotency_key=idempotency_key,
            )
        except Exception as e:
            return self._failed("refund", e)

        statuses = {
            "succeeded": OperationStatus.SUCCEEDED,
            "pending": OperationStatus.PENDING,
        }
        return GatewayResult(
            status=statuses.get(refund.status, OperationStatus.FAILED),
            reference=refund.id,
            raw_response={"status": refund.status, "id": refund.id},
        )

    async def transfer(
        self,
        destination: str,
        amount: Decimal,
        currency: str,
        idempotency_key: str,
        description: str,
    ) -> GatewayResult:
        """Transfer to a connected account."""
        if not self.secret_key:
            return NOT_CONFIGURED

        try:
            stripe = self._client()
            transfer = stripe.Transfer.create(
                amount=to_minor_units(amount),
                currency=currency.lower(),
                destination=destination,
                description=description,
                idempotency_key=idempotency_key,
            )
        except Exception as e:
            return self._failed("transfer", e)

        return GatewayResult(
            status=OperationStatus.SUCCEEDED,
            reference=transfer.id,
            raw_response={"id": transfer.id},
        )
