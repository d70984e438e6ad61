"""Shared column types."""

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import JSON, DateTime, Numeric, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB

# Monetary amounts: fixed point, two decimal places.
Money = Numeric(12, 2, asdecimal=True)

# Refund fractions in [0, 1].
Fraction = Numeric(5, 4, asdecimal=True)

JSONType = JSON().with_variant(JSONB(), "postgresql")

ZERO = Decimal("0.00")


def utcnow() -> datetime:
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime stored as UTC.

    Backends without timezone support hand back naive values; those are
    re-attached to UTC on load.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"Naive datetime {value!r} cannot be stored; attach a timezone")
        return value.astimezone(UTC)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
