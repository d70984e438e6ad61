"""Tests for the notification outbox dispatcher."""

import json
import uuid
from decimal import Decimal

import httpx
import pytest

from rentflow.config import settings
from rentflow.services.notification_service import FAILED, PENDING, SENT, NotificationService

pytestmark = pytest.mark.integration

WEBHOOK_URL = "https://notifications.internal/events"


@pytest.fixture
def service():
    return NotificationService()


@pytest.fixture
def webhook(monkeypatch):
    monkeypatch.setattr(settings, "notification_webhook_url", WEBHOOK_URL)
    monkeypatch.setattr(settings, "outbox_max_attempts", 3)


def client_for(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


async def test_events_are_dropped_without_webhook(db, service, monkeypatch):
    monkeypatch.setattr(settings, "notification_webhook_url", None)
    event = await service.emit(db, "BookingConfirmed", "booking", uuid.uuid4(), {"total_price": Decimal("10")})

    assert await service.dispatch_pending(db) == 1
    assert event.status == SENT


async def test_delivery_posts_event_envelope(db, service, webhook):
    received = []

    def handler(request: httpx.Request) -> httpx.Response:
        received.append((request, json.loads(request.content)))
        return httpx.Response(202)

    service._http_client = client_for(handler)
    booking_id = uuid.uuid4()
    event = await service.emit(
        db, "BookingCancelled", "booking", booking_id, {"refund_amount": Decimal("220.00"), "renter_id": booking_id}
    )
    await db.flush()

    delivered = await service.dispatch_pending(db)

    assert delivered == 1
    assert event.status == SENT
    assert event.dispatched_at is not None
    request, body = received[0]
    assert str(request.url) == WEBHOOK_URL
    assert request.headers["Idempotency-Key"] == str(event.id)
    assert body["type"] == "BookingCancelled"
    assert body["aggregate_id"] == str(booking_id)
    assert body["payload"] == {"refund_amount": "220.00", "renter_id": str(booking_id)}
    await service.close()


async def test_failed_delivery_is_retried(db, service, webhook):
    responses = iter([httpx.Response(503), httpx.Response(200)])
    service._http_client = client_for(lambda request: next(responses))
    event = await service.emit(db, "PayoutProcessed", "payout", uuid.uuid4())

    assert await service.dispatch_pending(db) == 0
    assert event.status == PENDING
    assert event.attempts == 1
    assert "503" in event.last_error

    assert await service.dispatch_pending(db) == 1
    assert event.status == SENT
    await service.close()


async def test_delivery_gives_up_after_max_attempts(db, service, webhook):
    service._http_client = client_for(lambda request: httpx.Response(500))
    event = await service.emit(db, "DisputeOpened", "dispute", uuid.uuid4())

    for _ in range(3):
        await service.dispatch_pending(db)

    assert event.status == FAILED
    assert event.attempts == 3
    assert await service.dispatch_pending(db) == 0
    await service.close()
