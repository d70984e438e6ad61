"""Notification events via a transactional outbox.

The engine never blocks on delivery: events are rows written in the same
transaction as the state change, and a background dispatcher posts them to
the notification service webhook.
"""

import logging
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.config import settings
from rentflow.models.outbox import OutboxEvent

logger = logging.getLogger(__name__)

PENDING = "pending"
SENT = "sent"
FAILED = "failed"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class NotificationService:
    """Emits engine events and delivers them to the notification service."""

    # Event types
    BOOKING_REQUESTED = "BookingRequested"
    BOOKING_APPROVED = "BookingApproved"
    BOOKING_CONFIRMED = "BookingConfirmed"
    BOOKING_CANCELLED = "BookingCancelled"
    BOOKING_REFUNDED = "BookingRefunded"
    BOOKING_SETTLED = "BookingSettled"
    DEPOSIT_AUTHORIZATION_FAILED = "DepositAuthorizationFailed"
    DEPOSIT_HOLD_EXPIRED = "DepositHoldExpired"
    DEPOSIT_CAPTURED = "DepositCaptured"
    DISPUTE_OPENED = "DisputeOpened"
    DISPUTE_RESOLVED = "DisputeResolved"
    DISPUTE_ESCALATED = "DisputeEscalated"
    PAYOUT_PROCESSED = "PayoutProcessed"
    PAYOUT_FAILED = "PayoutFailed"

    def __init__(self) -> None:
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Lazy-load HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=settings.notification_timeout_seconds)
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    async def emit(
        self,
        db: AsyncSession,
        event_type: str,
        aggregate_type: str,
        aggregate_id: UUID,
        payload: dict[str, Any] | None = None,
    ) -> OutboxEvent:
        """Queue an event in the caller's transaction."""
        event = OutboxEvent(
            event_type=event_type,
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            payload=_jsonable(payload or {}),
            status=PENDING,
        )
        db.add(event)
        logger.debug(f"Queued {event_type} for {aggregate_type} {aggregate_id}")
        return event

    async def dispatch_pending(self, db: AsyncSession, limit: int | None = None) -> int:
        """Deliver pending events; returns how many were delivered.

        Failed deliveries stay pending until ``outbox_max_attempts`` is reached.
        """
        result = await db.execute(
            select(OutboxEvent)
            .where(OutboxEvent.status == PENDING)
            .order_by(OutboxEvent.created_at)
            .limit(limit or settings.outbox_batch_size)
            .with_for_update(skip_locked=True)
        )
        events = result.scalars().all()

        delivered = 0
        for event in events:
            if await self._deliver(event):
                event.status = SENT
                event.dispatched_at = datetime.now(UTC)
                delivered += 1
                continue

            event.attempts += 1
            if event.attempts >= settings.outbox_max_attempts:
                event.status = FAILED
                logger.error(
                    f"Giving up on {event.event_type} event {event.id} after {event.attempts} attempts"
                )

        await db.flush()
        return delivered

    async def _deliver(self, event: OutboxEvent) -> bool:
        if not settings.notification_webhook_url:
            logger.debug(f"No notification webhook configured, dropping {event.event_type} {event.id}")
            return True

        try:
            response = await self.http_client.post(
                settings.notification_webhook_url,
                json={
                    "id": str(event.id),
                    "type": event.event_type,
                    "aggregate_type": event.aggregate_type,
                    "aggregate_id": str(event.aggregate_id),
                    "occurred_at": event.created_at.isoformat(),
                    "payload": event.payload,
                },
                headers={"Idempotency-Key": str(event.id)},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            event.last_error = str(exc)[:1000]
            logger.warning(f"Delivery of {event.event_type} event {event.id} failed: {exc}")
            return False
        return True


notification_service = NotificationService()
