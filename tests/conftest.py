"""Shared pytest fixtures for rentflow tests."""

import uuid
from collections.abc import AsyncGenerator
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import rentflow.models  # noqa: F401
from rentflow.config import settings
from rentflow.database import Base, build_engine
from rentflow.gateways.base import GatewayResult, GatewayType, OperationStatus, PaymentGateway
from rentflow.models.booking import Booking
from rentflow.models.listing import Listing, PayoutAccount
from rentflow.services.booking_service import booking_service
from rentflow.services.catalog_service import catalog_service

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FakeGateway(PaymentGateway):
    """Scriptable gateway: every operation succeeds unless told otherwise.

    Set ``statuses["charge"] = OperationStatus.FAILED`` (or PENDING) to change
    the outcome of one operation. Every call is recorded in ``calls``. An
    operation named in ``crash_after`` reaches the gateway and then raises, as
    if the worker died before it could record the result.
    """

    def __init__(self) -> None:
        self.statuses: dict[str, OperationStatus] = {}
        self.calls: list[tuple[str, dict]] = []
        self.crash_after: set[str] = set()

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.MANUAL

    def _result(self, operation: str, **kwargs) -> GatewayResult:
        self.calls.append((operation, kwargs))
        if operation in self.crash_after:
            raise ConnectionError(f"connection lost after {operation}")
        status = self.statuses.get(operation, OperationStatus.SUCCEEDED)
        if status == OperationStatus.FAILED:
            return GatewayResult(status=status, error_message=f"{operation} declined")
        return GatewayResult(status=status, reference=f"fake_{operation}_{kwargs['idempotency_key'][:12]}")

    def calls_for(self, operation: str) -> list[dict]:
        return [kwargs for name, kwargs in self.calls if name == operation]

    async def authorize(self, amount, currency, payment_method, idempotency_key, metadata=None):
        return self._result("authorize", amount=amount, payment_method=payment_method, idempotency_key=idempotency_key)

    async def capture(self, hold_ref, amount, currency, idempotency_key):
        return self._result("capture", hold_ref=hold_ref, amount=amount, idempotency_key=idempotency_key)

    async def void(self, hold_ref, idempotency_key):
        return self._result("void", hold_ref=hold_ref, idempotency_key=idempotency_key)

    async def charge(self, amount, currency, payment_method, idempotency_key, description, metadata=None):
        return self._result("charge", amount=amount, payment_method=payment_method, idempotency_key=idempotency_key)

    async def refund(self, payment_ref, amount, currency, idempotency_key, reason):
        return self._result("refund", payment_ref=payment_ref, amount=amount, idempotency_key=idempotency_key)

    async def transfer(self, destination, amount, currency, idempotency_key, description):
        return self._result("transfer", destination=destination, amount=amount, idempotency_key=idempotency_key)


@pytest.fixture
async def engine(tmp_path):
    """File-backed sqlite engine with the full schema."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'rentflow.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work; commit explicitly before other sessions write."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def owner_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def renter_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def no_fees(monkeypatch):
    """Service fee, tax and commission all zero: owner earnings equal the rental."""
    monkeypatch.setattr(settings, "service_fee_percent", Decimal("0"))
    monkeypatch.setattr(settings, "tax_percent", Decimal("0"))
    monkeypatch.setattr(settings, "platform_commission_percent", Decimal("0"))


@pytest.fixture
def standard_fees(monkeypatch):
    """10% service fee, no tax, 10% commission."""
    monkeypatch.setattr(settings, "service_fee_percent", Decimal("10"))
    monkeypatch.setattr(settings, "tax_percent", Decimal("0"))
    monkeypatch.setattr(settings, "platform_commission_percent", Decimal("10"))


@pytest.fixture
async def policies(db):
    """Seeded flexible / moderate / strict policies keyed by name."""
    seeded = await catalog_service.seed_default_policies(db)
    return {policy.name: policy for policy in seeded}


@pytest.fixture
def make_listing(db, policies, owner_id):
    async def _make_listing(
        base_price: str = "100.00",
        policy: str = "flexible",
        deposit: str | None = None,
        instant_book: bool = False,
        category: str = "equipment",
        owner: uuid.UUID | None = None,
        **overrides,
    ) -> Listing:
        listing = Listing(
            owner_id=owner or owner_id,
            title="Cordless drill set",
            category=category,
            base_price=Decimal(base_price),
            currency="USD",
            cancellation_policy_id=policies[policy].id,
            requires_deposit=deposit is not None,
            deposit_amount=Decimal(deposit or "0"),
            instant_book=instant_book,
            max_guests=4,
            **overrides,
        )
        db.add(listing)
        await db.flush()
        return listing

    return _make_listing


@pytest.fixture
def payout_account(db, owner_id):
    async def _payout_account(owner: uuid.UUID | None = None) -> PayoutAccount:
        account = PayoutAccount(
            owner_id=owner or owner_id,
            provider="manual",
            external_account_id="acct_owner_001",
            currency="USD",
        )
        db.add(account)
        await db.flush()
        return account

    return _payout_account


@pytest.fixture
def confirmed_booking(db, gateway, renter_id):
    """Request, approve and pay for a booking on ``listing``."""

    async def _confirmed_booking(
        listing: Listing,
        start: datetime | None = None,
        days: int = 2,
        now: datetime = NOW,
    ) -> Booking:
        start = start or now + timedelta(hours=72)
        booking = await booking_service.request_booking(
            db,
            listing.id,
            renter_id,
            start,
            start + timedelta(days=days),
            payment_method="pm_card_visa",
            now=now,
        )
        await booking_service.approve(db, gateway, booking.id, listing.owner_id, now=now)
        return await booking_service.collect_payment(db, gateway, booking.id, actor_id=renter_id, now=now)

    return _confirmed_booking


@pytest.fixture
def returned_booking(db, confirmed_booking, renter_id):
    """Confirmed booking that was checked in and returned."""

    async def _returned_booking(listing: Listing, days: int = 2) -> Booking:
        booking = await confirmed_booking(listing, days=days)
        await booking_service.check_in(db, booking.id, renter_id, now=booking.start_date)
        return await booking_service.check_out(db, booking.id, renter_id, now=booking.end_date)

    return _returned_booking
