"""Read-only adapter over catalog reference data.

The catalog owns listings, cancellation policies and payout accounts; the
engine reads them at request time and never mutates them except for
appending new policy versions.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from rentflow.core.exceptions import NotFoundError, ValidationError
from rentflow.domain.cancellation_policy import (
    DEFAULT_POLICY_RULES,
    RefundRule,
    describe_policy,
    validate_rules,
)
from rentflow.models.cancellation import CancellationPolicy, CancellationRule
from rentflow.models.listing import Listing, PayoutAccount


@dataclass(frozen=True)
class ListingTerms:
    listing_id: UUID
    owner_id: UUID
    base_price: Decimal
    currency: str
    cancellation_policy_id: UUID
    requires_deposit: bool
    deposit_amount: Decimal
    instant_book: bool
    max_guests: int
    category: str
    weekly_discount_percent: Decimal
    monthly_discount_percent: Decimal
    available_from: datetime | None
    available_until: datetime | None
    is_active: bool

    def assert_bookable(self, start: datetime, end: datetime, guest_count: int) -> None:
        """Validate a requested rental window against the listing terms."""
        if not self.is_active:
            raise ValidationError("This listing is not available")
        if self.available_from and start < self.available_from:
            raise ValidationError(f"Listing is not available before {self.available_from.isoformat()}")
        if self.available_until and end > self.available_until:
            raise ValidationError(f"Listing is not available after {self.available_until.isoformat()}")
        if guest_count > self.max_guests:
            raise ValidationError(f"Maximum {self.max_guests} guests allowed")


class CatalogService:
    """Listing terms, cancellation policies and payout destinations."""

    async def get_terms(self, db: AsyncSession, listing_id: UUID, lock: bool = False) -> ListingTerms:
        """Load listing terms; ``lock`` takes the listing row lock for availability checks."""
        query = select(Listing).where(Listing.id == listing_id)
        if lock:
            query = query.with_for_update()
        result = await db.execute(query)
        listing = result.scalar_one_or_none()
        if not listing:
            raise NotFoundError("Listing", str(listing_id))

        return ListingTerms(
            listing_id=listing.id,
            owner_id=listing.owner_id,
            base_price=listing.base_price,
            currency=listing.currency,
            cancellation_policy_id=listing.cancellation_policy_id,
            requires_deposit=listing.requires_deposit,
            deposit_amount=listing.deposit_amount if listing.requires_deposit else Decimal("0"),
            instant_book=listing.instant_book,
            max_guests=listing.max_guests,
            category=listing.category,
            weekly_discount_percent=listing.weekly_discount_percent or Decimal("0"),
            monthly_discount_percent=listing.monthly_discount_percent or Decimal("0"),
            available_from=listing.available_from,
            available_until=listing.available_until,
            is_active=listing.is_active,
        )

    async def get_policy(self, db: AsyncSession, policy_id: UUID) -> CancellationPolicy:
        result = await db.execute(
            select(CancellationPolicy).where(CancellationPolicy.id == policy_id)
        )
        policy = result.scalar_one_or_none()
        if not policy:
            raise NotFoundError("Cancellation policy", str(policy_id))
        return policy

    async def latest_policy(self, db: AsyncSession, name: str) -> CancellationPolicy | None:
        result = await db.execute(
            select(CancellationPolicy)
            .where(CancellationPolicy.name == name)
            .order_by(CancellationPolicy.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def create_policy(
        self,
        db: AsyncSession,
        name: str,
        rules: list[RefundRule | tuple[int, Decimal]],
    ) -> CancellationPolicy:
        """Create the next version of a named policy."""
        ordered = validate_rules(rules)

        result = await db.execute(
            select(func.max(CancellationPolicy.version)).where(CancellationPolicy.name == name)
        )
        version = (result.scalar() or 0) + 1

        policy = CancellationPolicy(
            name=name,
            version=version,
            description=describe_policy(ordered),
            rules=[
                CancellationRule(
                    hours_before_start=rule.hours_before_start,
                    refund_percentage=rule.refund_percentage,
                )
                for rule in ordered
            ],
        )
        db.add(policy)
        await db.flush()
        return policy

    async def seed_default_policies(self, db: AsyncSession) -> list[CancellationPolicy]:
        """Create the standard policies when absent."""
        policies = []
        for name, rules in DEFAULT_POLICY_RULES.items():
            policy = await self.latest_policy(db, name.value)
            if policy is None:
                policy = await self.create_policy(db, name.value, rules)
            policies.append(policy)
        return policies

    async def get_payout_account(self, db: AsyncSession, owner_id: UUID) -> PayoutAccount | None:
        result = await db.execute(
            select(PayoutAccount).where(
                PayoutAccount.owner_id == owner_id,
                PayoutAccount.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()


catalog_service = CatalogService()
