"""Booking price calculation.

Breakdown rules:
- rental = rental_days × listing base price (per day, partial days round up)
- discount = monthly (28+ days) or weekly (7+ days) percent of the rental
- service_fee = service_fee_percent of the rental, tax = tax_percent of
  (rental − discount + service_fee)
- commission = platform_commission_percent of (rental − discount)
- base_price = rental + deposit
- total_price = base_price + service_fee + tax − discount
- platform_fee = service_fee + tax + commission
- owner_earnings = total_price − deposit − platform_fee
"""

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from rentflow.config import settings
from rentflow.core.exceptions import ValidationError

CENT = Decimal("0.01")
HUNDRED = Decimal("100")
ZERO = Decimal("0.00")

WEEKLY_DAYS = 7
MONTHLY_DAYS = 28


def _money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def _percent_of(amount: Decimal, percent: Decimal) -> Decimal:
    return _money(amount * Decimal(percent) / HUNDRED)


@dataclass(frozen=True)
class PriceBreakdown:
    rental_days: int
    rental_amount: Decimal
    base_price: Decimal
    service_fee: Decimal
    tax: Decimal
    deposit_amount: Decimal
    discount_amount: Decimal
    total_price: Decimal
    commission: Decimal
    platform_fee: Decimal
    owner_earnings: Decimal
    currency: str


def assert_price_invariants(
    base_price: Decimal,
    service_fee: Decimal,
    tax: Decimal,
    discount_amount: Decimal,
    deposit_amount: Decimal,
    total_price: Decimal,
    owner_earnings: Decimal,
    platform_fee: Decimal,
) -> None:
    """Guard: both booking price identities must hold exactly."""
    if total_price != base_price + service_fee + tax - discount_amount:
        raise ValidationError(
            f"Price breakdown mismatch: total {total_price} != base {base_price} + service {service_fee}"
            f" + tax {tax} - discount {discount_amount}"
        )
    if owner_earnings + platform_fee != total_price - deposit_amount:
        raise ValidationError(
            f"Earnings split mismatch: owner {owner_earnings} + platform {platform_fee}"
            f" != total {total_price} - deposit {deposit_amount}"
        )
    if owner_earnings < 0 or platform_fee < 0:
        raise ValidationError("Owner earnings and platform fee must not be negative")


class PricingService:
    """Service for calculating booking price breakdowns."""

    def rental_days(self, start: datetime, end: datetime) -> int:
        if end <= start:
            raise ValidationError("Rental end must be after its start")
        return max(1, math.ceil((end - start) / timedelta(days=1)))

    def discount_percent(
        self,
        days: int,
        weekly_discount_percent: Decimal,
        monthly_discount_percent: Decimal,
    ) -> Decimal:
        if days >= MONTHLY_DAYS and monthly_discount_percent:
            return Decimal(monthly_discount_percent)
        if days >= WEEKLY_DAYS and weekly_discount_percent:
            return Decimal(weekly_discount_percent)
        return Decimal("0")

    def quote(
        self,
        base_price_per_day: Decimal,
        start: datetime,
        end: datetime,
        deposit_amount: Decimal = ZERO,
        weekly_discount_percent: Decimal = Decimal("0"),
        monthly_discount_percent: Decimal = Decimal("0"),
        currency: str | None = None,
    ) -> PriceBreakdown:
        """Calculate the full breakdown for a rental window.

        Args:
            base_price_per_day: Listing price per rental day
            start: Rental start
            end: Rental end (exclusive)
            deposit_amount: Security deposit (0 when none is required)
            weekly_discount_percent: Listing discount for 7+ day rentals
            monthly_discount_percent: Listing discount for 28+ day rentals
            currency: ISO currency code

        Returns:
            PriceBreakdown: All amounts, rounded to cents
        """
        days = self.rental_days(start, end)
        rental = _money(Decimal(base_price_per_day) * days)
        deposit = _money(deposit_amount or ZERO)

        discount = _percent_of(
            rental, self.discount_percent(days, weekly_discount_percent, monthly_discount_percent)
        )
        service_fee = _percent_of(rental, settings.service_fee_percent)
        tax = _percent_of(rental - discount + service_fee, settings.tax_percent)
        commission = _percent_of(rental - discount, settings.platform_commission_percent)

        base_price = rental + deposit
        total_price = base_price + service_fee + tax - discount
        platform_fee = service_fee + tax + commission
        owner_earnings = total_price - deposit - platform_fee

        assert_price_invariants(
            base_price, service_fee, tax, discount, deposit, total_price, owner_earnings, platform_fee
        )

        return PriceBreakdown(
            rental_days=days,
            rental_amount=rental,
            base_price=base_price,
            service_fee=service_fee,
            tax=tax,
            deposit_amount=deposit,
            discount_amount=discount,
            total_price=total_price,
            commission=commission,
            platform_fee=platform_fee,
            owner_earnings=owner_earnings,
            currency=currency or settings.currency,
        )


pricing_service = PricingService()
