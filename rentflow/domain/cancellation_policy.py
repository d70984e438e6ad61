"""Cancellation policy evaluator.

A policy is an ordered set of refund rules ``(hours_before_start, refund_percentage)``
where the percentage is a fraction in [0, 1]. The evaluator scans the rules by
descending threshold and returns the percentage of the first rule whose
threshold the cancellation still meets. No match means no refund.

Seeded policies:
- flexible: Full refund up to 48h before the rental starts
- moderate: Full refund up to 5 days before, 50% up to 24h, nothing after
- strict: 50% refund up to 7 days before, nothing after
"""

from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, NamedTuple

from rentflow.core.exceptions import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")
CENT = Decimal("0.01")


class PolicyName(str, Enum):
    """Seeded cancellation policy names."""

    FLEXIBLE = "flexible"
    MODERATE = "moderate"
    STRICT = "strict"


class RefundRule(NamedTuple):
    hours_before_start: int
    refund_percentage: Decimal


DEFAULT_POLICY_RULES: dict[PolicyName, list[RefundRule]] = {
    PolicyName.FLEXIBLE: [
        RefundRule(48, Decimal("1")),
    ],
    PolicyName.MODERATE: [
        RefundRule(120, Decimal("1")),
        RefundRule(24, Decimal("0.5")),
    ],
    PolicyName.STRICT: [
        RefundRule(168, Decimal("0.5")),
    ],
}


def sort_rules(rules: Iterable[RefundRule | tuple[int, Decimal]]) -> list[RefundRule]:
    """Return rules ordered by descending threshold."""
    return sorted(
        (RefundRule(int(h), Decimal(p)) for h, p in rules),
        key=lambda rule: rule.hours_before_start,
        reverse=True,
    )


def validate_rules(rules: Iterable[RefundRule | tuple[int, Decimal]]) -> list[RefundRule]:
    """Validate a rule set and return it sorted.

    Percentages must not increase as the threshold shrinks, otherwise a later
    cancellation could earn a larger refund than an earlier one.
    """
    ordered = sort_rules(rules)
    if not ordered:
        raise ValidationError("A cancellation policy needs at least one rule")

    seen: set[int] = set()
    previous: Decimal | None = None
    for rule in ordered:
        if rule.hours_before_start < 0:
            raise ValidationError(f"Rule threshold must be non-negative, got {rule.hours_before_start}")
        if rule.hours_before_start in seen:
            raise ValidationError(f"Duplicate rule threshold {rule.hours_before_start}h")
        if not ZERO <= rule.refund_percentage <= ONE:
            raise ValidationError(
                f"Refund percentage must be between 0 and 1, got {rule.refund_percentage}"
            )
        if previous is not None and rule.refund_percentage > previous:
            raise ValidationError(
                "Refund percentage must not increase closer to the start "
                f"({rule.hours_before_start}h grants {rule.refund_percentage} > {previous})"
            )
        seen.add(rule.hours_before_start)
        previous = rule.refund_percentage
    return ordered


def hours_until_start(now: datetime, start: datetime) -> Decimal:
    return Decimal(str((start - now).total_seconds())) / Decimal("3600")


def refund_percentage(
    rules: Iterable[RefundRule | tuple[int, Decimal]],
    now: datetime,
    start: datetime,
    host_cancellation: bool = False,
) -> Decimal:
    """Refund fraction in [0, 1] for cancelling at ``now`` a rental starting at ``start``.

    Args:
        rules: Policy refund rules, any order
        now: Moment of cancellation
        start: Rental start
        host_cancellation: Owner cancelled or never made the item available

    Returns:
        Decimal: Refund fraction, 1 for a full refund
    """
    if host_cancellation:
        return ONE

    hours = hours_until_start(now, start)
    if hours < 0:
        return ZERO

    for rule in sort_rules(rules):
        if rule.hours_before_start <= hours:
            return rule.refund_percentage

    return ZERO


def refund_amount(percentage: Decimal, refundable: Decimal) -> Decimal:
    """Apply a refund fraction to an amount, rounded to cents."""
    return (refundable * percentage).quantize(CENT, rounding=ROUND_HALF_UP)


def describe_policy(rules: Iterable[RefundRule | tuple[int, Decimal]]) -> str:
    """Human-readable policy description."""
    parts = []
    for rule in sort_rules(rules):
        pct = (rule.refund_percentage * 100).normalize()
        hours = rule.hours_before_start
        window = f"{hours // 24} days" if hours % 24 == 0 and hours >= 48 else f"{hours} hours"
        if rule.refund_percentage == ONE:
            parts.append(f"Full refund up to {window} before the rental starts.")
        elif rule.refund_percentage == ZERO:
            parts.append(f"No refund from {window} before the rental starts.")
        else:
            parts.append(f"{pct:f}% refund up to {window} before the rental starts.")
    parts.append("No refund after that.")
    return " ".join(parts)
