"""Unit tests for the price breakdown."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from rentflow.core.exceptions import ValidationError
from rentflow.services.pricing_service import assert_price_invariants, pricing_service

START = datetime(2026, 6, 1, 10, 0, tzinfo=UTC)


@pytest.mark.unit
def test_quote_with_fees(standard_fees):
    quote = pricing_service.quote(Decimal("100"), START, START + timedelta(days=2))

    assert quote.rental_days == 2
    assert quote.rental_amount == Decimal("200.00")
    assert quote.service_fee == Decimal("20.00")
    assert quote.total_price == Decimal("220.00")
    assert quote.commission == Decimal("20.00")
    assert quote.platform_fee == Decimal("40.00")
    assert quote.owner_earnings == Decimal("180.00")


@pytest.mark.unit
def test_deposit_is_part_of_total_but_not_earnings(monkeypatch, no_fees):
    from rentflow.config import settings

    monkeypatch.setattr(settings, "platform_commission_percent", Decimal("10"))
    quote = pricing_service.quote(
        Decimal("125"), START, START + timedelta(days=2), deposit_amount=Decimal("50")
    )

    assert quote.base_price == Decimal("300.00")
    assert quote.total_price == Decimal("300.00")
    assert quote.owner_earnings + quote.platform_fee == Decimal("250.00")
    assert quote.owner_earnings == Decimal("225.00")


@pytest.mark.unit
def test_partial_days_round_up(no_fees):
    quote = pricing_service.quote(Decimal("40"), START, START + timedelta(days=1, hours=3))
    assert quote.rental_days == 2
    assert quote.total_price == Decimal("80.00")


@pytest.mark.unit
def test_same_day_rental_is_one_day(no_fees):
    quote = pricing_service.quote(Decimal("40"), START, START + timedelta(hours=4))
    assert quote.rental_days == 1


@pytest.mark.unit
def test_weekly_discount(no_fees):
    quote = pricing_service.quote(
        Decimal("100"),
        START,
        START + timedelta(days=7),
        weekly_discount_percent=Decimal("10"),
        monthly_discount_percent=Decimal("25"),
    )
    assert quote.discount_amount == Decimal("70.00")
    assert quote.total_price == Decimal("630.00")
    assert quote.owner_earnings == Decimal("630.00")


@pytest.mark.unit
def test_monthly_discount_wins_over_weekly(no_fees):
    quote = pricing_service.quote(
        Decimal("10"),
        START,
        START + timedelta(days=28),
        weekly_discount_percent=Decimal("10"),
        monthly_discount_percent=Decimal("25"),
    )
    assert quote.discount_amount == Decimal("70.00")


@pytest.mark.unit
def test_end_before_start_is_rejected():
    with pytest.raises(ValidationError):
        pricing_service.quote(Decimal("10"), START, START)


@pytest.mark.unit
def test_price_invariants_detect_mismatch():
    with pytest.raises(ValidationError, match="Price breakdown mismatch"):
        assert_price_invariants(
            base_price=Decimal("100"),
            service_fee=Decimal("10"),
            tax=Decimal("0"),
            discount_amount=Decimal("0"),
            deposit_amount=Decimal("0"),
            total_price=Decimal("105"),
            owner_earnings=Decimal("95"),
            platform_fee=Decimal("10"),
        )
    with pytest.raises(ValidationError, match="Earnings split mismatch"):
        assert_price_invariants(
            base_price=Decimal("100"),
            service_fee=Decimal("0"),
            tax=Decimal("0"),
            discount_amount=Decimal("0"),
            deposit_amount=Decimal("20"),
            total_price=Decimal("100"),
            owner_earnings=Decimal("90"),
            platform_fee=Decimal("0"),
        )
