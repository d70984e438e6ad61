"""Seed cancellation policies.

Revision ID: 002_seed_policies
Revises: 001_initial
Create Date: 2026-10-19

Seeds version 1 of the standard flexible, moderate and strict policies.
"""

import uuid
from decimal import Decimal
from typing import Sequence

from alembic import op
from sqlalchemy import Integer, Numeric, String, column, table
from sqlalchemy.dialects.postgresql import UUID

# revision identifiers
revision: str = "002_seed_policies"
down_revision: str = "001_initial"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

# (hours before start, refund fraction), highest threshold first
POLICIES = {
    "flexible": {
        "description": "Full refund up to 48 hours before the rental starts",
        "rules": [(48, Decimal("1"))],
    },
    "moderate": {
        "description": "Full refund up to 5 days before, half refund up to 24 hours before",
        "rules": [(120, Decimal("1")), (24, Decimal("0.5"))],
    },
    "strict": {
        "description": "Half refund up to 7 days before the rental starts",
        "rules": [(168, Decimal("0.5"))],
    },
}


def upgrade() -> None:
    """Insert the standard policies."""
    policies_table = table(
        "cancellation_policies",
        column("id", UUID),
        column("name", String),
        column("version", Integer),
        column("description", String),
    )
    rules_table = table(
        "cancellation_rules",
        column("id", UUID),
        column("policy_id", UUID),
        column("hours_before_start", Integer),
        column("refund_percentage", Numeric),
    )

    policies = []
    rules = []
    for name, data in POLICIES.items():
        policy_id = str(uuid.uuid4())
        policies.append(
            {"id": policy_id, "name": name, "version": 1, "description": data["description"]}
        )
        rules.extend(
            {
                "id": str(uuid.uuid4()),
                "policy_id": policy_id,
                "hours_before_start": hours,
                "refund_percentage": fraction,
            }
            for hours, fraction in data["rules"]
        )

    op.bulk_insert(policies_table, policies)
    op.bulk_insert(rules_table, rules)


def downgrade() -> None:
    """Remove the seeded policies."""
    op.execute(
        "DELETE FROM cancellation_rules WHERE policy_id IN "
        "(SELECT id FROM cancellation_policies WHERE version = 1 "
        "AND name IN ('flexible', 'moderate', 'strict'))"
    )
    op.execute(
        "DELETE FROM cancellation_policies WHERE version = 1 "
        "AND name IN ('flexible', 'moderate', 'strict')"
    )
