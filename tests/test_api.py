"""HTTP tests for the booking, ledger and payout endpoints."""

import logging
import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient

from rentflow.api.deps import get_payment_gateway
from rentflow.core.exceptions import AppException
from rentflow.database import get_db
from rentflow.main import create_application

pytestmark = pytest.mark.integration


@pytest.fixture
def app(session_maker, gateway):
    application = create_application()

    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
                await session.commit()
            except AppException as exc:
                if exc.persist_changes:
                    await session.commit()
                else:
                    await session.rollback()
                raise
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_payment_gateway] = lambda: gateway
    return application


@pytest.fixture
async def client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
async def listing(db, make_listing):
    """Listing committed so request sessions can see it."""
    listing = await make_listing()
    await db.commit()
    return listing


def as_actor(actor_id) -> dict:
    return {"X-Actor-ID": str(actor_id)}


async def create_booking(client, listing, renter_id, days_ahead=5, days=2):
    start = datetime.now(UTC) + timedelta(days=days_ahead)
    response = await client.post(
        "/api/v1/bookings/",
        json={
            "listing_id": str(listing.id),
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=days)).isoformat(),
            "payment_method": "pm_card_visa",
        },
        headers=as_actor(renter_id),
    )
    assert response.status_code == 201, response.text
    return response.json()


async def confirm(client, booking, owner_id, renter_id):
    response = await client.post(f"/api/v1/bookings/{booking['id']}/approve", headers=as_actor(owner_id))
    assert response.status_code == 200, response.text
    response = await client.post(
        f"/api/v1/bookings/{booking['id']}/payment", json={}, headers=as_actor(renter_id)
    )
    assert response.status_code == 200, response.text
    return response.json()


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
    assert "X-Request-ID" in response.headers


async def test_requests_are_logged_with_actor(client, caplog, renter_id):
    caplog.set_level(logging.INFO, logger="rentflow.core.middleware")

    response = await client.get("/health", headers={**as_actor(renter_id), "X-Request-ID": "req-42"})
    await client.get("/health")

    assert response.headers["X-Request-ID"] == "req-42"
    lines = [r.getMessage() for r in caplog.records if r.name == "rentflow.core.middleware"]
    assert any(f"actor={renter_id} request_id=req-42" in line for line in lines)
    assert "actor=anonymous" in lines[-1]


async def test_booking_flow_over_http(client, listing, owner_id, renter_id, standard_fees):
    booking = await create_booking(client, listing, renter_id)
    assert booking["status"] == "draft"
    assert Decimal(booking["total_price"]) == Decimal("220")
    assert Decimal(booking["owner_earnings"]) == Decimal("180")

    confirmed = await confirm(client, booking, owner_id, renter_id)
    assert confirmed["status"] == "confirmed"
    assert confirmed["payment_reference"]

    entries = (await client.get(f"/api/v1/ledger/bookings/{booking['id']}/entries")).json()
    assert len(entries) == 5
    assert {e["transaction_type"] for e in entries} == {"payment", "owner_earning"}
    assert (await client.get("/api/v1/ledger/reconciliation")).json() == []

    response = await client.post(
        f"/api/v1/bookings/{booking['id']}/cancel", json={"reason": "Plans changed"}, headers=as_actor(renter_id)
    )
    assert response.status_code == 200, response.text
    assert response.json()["status"] == "refunded"
    assert Decimal(response.json()["refund_amount"]) == Decimal("220")

    balance = (await client.get(f"/api/v1/ledger/owners/{owner_id}/balance")).json()
    assert Decimal(balance["balance"]) == Decimal("0")

    history = (await client.get(f"/api/v1/bookings/{booking['id']}/history")).json()
    assert [h["to_status"] for h in history] == ["draft", "pending_payment", "confirmed", "cancelled", "refunded"]


async def test_invalid_transition_reports_states(client, listing, owner_id, renter_id):
    booking = await create_booking(client, listing, renter_id)
    await confirm(client, booking, owner_id, renter_id)

    response = await client.post(f"/api/v1/bookings/{booking['id']}/check-out", headers=as_actor(renter_id))

    assert response.status_code == 409
    body = response.json()
    assert body["current_state"] == "confirmed"
    assert body["attempted_state"] == "awaiting_return_inspection"

    current = (await client.get(f"/api/v1/bookings/{booking['id']}")).json()
    assert current["status"] == "confirmed"


async def test_early_check_in_is_too_early(client, listing, owner_id, renter_id):
    booking = await create_booking(client, listing, renter_id)
    await confirm(client, booking, owner_id, renter_id)

    response = await client.post(f"/api/v1/bookings/{booking['id']}/check-in", headers=as_actor(renter_id))

    assert response.status_code == 425
    assert "earliest_at" in response.json()


async def test_overlapping_request_is_conflict(client, listing, renter_id):
    await create_booking(client, listing, renter_id)
    start = datetime.now(UTC) + timedelta(days=6)

    response = await client.post(
        "/api/v1/bookings/",
        json={
            "listing_id": str(listing.id),
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=1)).isoformat(),
        },
        headers=as_actor(uuid.uuid4()),
    )

    assert response.status_code == 409


async def test_request_requires_actor(client, listing):
    start = datetime.now(UTC) + timedelta(days=5)
    response = await client.post(
        "/api/v1/bookings/",
        json={
            "listing_id": str(listing.id),
            "start_date": start.isoformat(),
            "end_date": (start + timedelta(days=1)).isoformat(),
        },
    )

    assert response.status_code == 403


async def test_request_rejects_naive_dates(client, listing, renter_id):
    response = await client.post(
        "/api/v1/bookings/",
        json={
            "listing_id": str(listing.id),
            "start_date": "2030-01-01T10:00:00",
            "end_date": "2030-01-02T10:00:00",
        },
        headers=as_actor(renter_id),
    )

    assert response.status_code == 422


async def test_unknown_booking_is_not_found(client):
    response = await client.get(f"/api/v1/bookings/{uuid.uuid4()}")

    assert response.status_code == 404
    assert "not found" in response.json()["detail"]


async def test_payout_run_over_http(client):
    response = await client.post("/api/v1/payouts/run")

    assert response.status_code == 200
    assert response.json() == []
