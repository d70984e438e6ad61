"""Payment gateway adapters and selection.

Routes gateway operations to the configured adapter.
No business logic here - only adapter selection.
"""

from rentflow.config import settings
from rentflow.gateways.base import GatewayResult, GatewayType, OperationStatus, PaymentGateway
from rentflow.gateways.manual import ManualGateway
from rentflow.gateways.stripe_gateway import StripeGateway

_gateways: dict[GatewayType, PaymentGateway] = {}


def _assert_live_gateway_allowed(gateway_type: GatewayType) -> None:
    """Block live-mode Stripe keys outside production.

    Raises:
        RuntimeError: If a live key is configured in a non-production environment
    """
    if gateway_type != GatewayType.STRIPE or settings.environment == "production":
        return
    if (settings.stripe_secret_key or "").startswith("sk_live_"):
        raise RuntimeError(
            f"Cannot use a live Stripe key in {settings.environment} environment. "
            "Set ENVIRONMENT=production or use a test key."
        )


def get_gateway(gateway_type: str | GatewayType | None = None) -> PaymentGateway:
    """Get or create the gateway adapter (defaults to the configured one)."""
    gateway_type = gateway_type or settings.payment_gateway
    if isinstance(gateway_type, str):
        try:
            gateway_type = GatewayType(gateway_type)
        except ValueError:
            gateway_type = GatewayType.MANUAL

    _assert_live_gateway_allowed(gateway_type)

    if gateway_type not in _gateways:
        if gateway_type == GatewayType.STRIPE:
            _gateways[gateway_type] = StripeGateway()
        else:
            _gateways[gateway_type] = ManualGateway()
    return _gateways[gateway_type]


__all__ = [
    "GatewayResult",
    "GatewayType",
    "OperationStatus",
    "PaymentGateway",
    "ManualGateway",
    "StripeGateway",
    "get_gateway",
]
