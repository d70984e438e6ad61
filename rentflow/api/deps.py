"""API dependencies for the acting principal and collaborators."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header

from rentflow.core.exceptions import AuthorizationError
from rentflow.database import get_db
from rentflow.gateways import PaymentGateway, get_gateway

__all__ = ["get_db", "get_actor_id", "get_optional_actor_id", "get_payment_gateway", "ActorId", "Gateway"]


async def get_optional_actor_id(
    x_actor_id: Annotated[str | None, Header()] = None,
) -> UUID | None:
    if x_actor_id is None:
        return None
    try:
        return UUID(x_actor_id)
    except ValueError as exc:
        raise AuthorizationError("X-Actor-ID must be a UUID") from exc


async def get_actor_id(
    actor_id: Annotated[UUID | None, Depends(get_optional_actor_id)],
) -> UUID:
    """Acting principal, resolved upstream by the authentication gateway."""
    if actor_id is None:
        raise AuthorizationError("X-Actor-ID header is required")
    return actor_id


def get_payment_gateway() -> PaymentGateway:
    return get_gateway()


ActorId = Annotated[UUID, Depends(get_actor_id)]
Gateway = Annotated[PaymentGateway, Depends(get_payment_gateway)]
