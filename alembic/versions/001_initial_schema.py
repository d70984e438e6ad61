"""Initial database schema.

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates all tables for the rental engine:
- Catalog reference data (policies, listings, payout accounts)
- Bookings, calendar claims and state history
- Deposit holds
- Ledger postings and entries
- Disputes, resolutions and timeline
- Payouts and the notification outbox
"""

from typing import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers
revision: str = "001_initial"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

MONEY = sa.Numeric(12, 2)
FRACTION = sa.Numeric(5, 4)


def upgrade() -> None:
    """Create all database tables."""

    # ==================== CANCELLATION POLICIES ====================
    op.create_table(
        "cancellation_policies",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("name", sa.String(50), nullable=False, index=True),
        sa.Column("version", sa.Integer, nullable=False, server_default="1"),
        sa.Column("description", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("name", "version", name="uq_cancellation_policy_version"),
    )

    op.create_table(
        "cancellation_rules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("policy_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cancellation_policies.id"), nullable=False, index=True),
        sa.Column("hours_before_start", sa.Integer, nullable=False),
        sa.Column("refund_percentage", FRACTION, nullable=False),
        sa.UniqueConstraint("policy_id", "hours_before_start", name="uq_cancellation_rule_threshold"),
        sa.CheckConstraint("refund_percentage >= 0 AND refund_percentage <= 1", name="ck_cancellation_rule_fraction"),
    )

    # ==================== CATALOG ====================
    op.create_table(
        "listings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("category", sa.String(30), nullable=False, server_default="other"),
        sa.Column("category_data", postgresql.JSONB),
        sa.Column("base_price", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("weekly_discount_percent", sa.Numeric(5, 2), server_default="0"),
        sa.Column("monthly_discount_percent", sa.Numeric(5, 2), server_default="0"),
        sa.Column("cancellation_policy_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cancellation_policies.id"), nullable=False),
        sa.Column("requires_deposit", sa.Boolean, server_default=sa.false()),
        sa.Column("deposit_amount", MONEY, server_default="0"),
        sa.Column("instant_book", sa.Boolean, server_default=sa.false()),
        sa.Column("max_guests", sa.Integer, server_default="1"),
        sa.Column("available_from", sa.DateTime(timezone=True)),
        sa.Column("available_until", sa.DateTime(timezone=True)),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "payout_accounts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False, unique=True),
        sa.Column("provider", sa.String(30), nullable=False, server_default="manual"),
        sa.Column("external_account_id", sa.String(100), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # ==================== BOOKINGS ====================
    op.create_table(
        "bookings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_number", sa.String(20), unique=True, nullable=False, index=True),
        sa.Column("listing_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("listings.id"), nullable=False, index=True),
        sa.Column("renter_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("cancellation_policy_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("cancellation_policies.id"), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("guest_count", sa.Integer, server_default="1"),
        sa.Column("status", sa.String(30), nullable=False, server_default="draft", index=True),
        sa.Column("pre_dispute_status", sa.String(30)),
        sa.Column("rental_days", sa.Integer, nullable=False),
        sa.Column("rental_amount", MONEY, nullable=False),
        sa.Column("base_price", MONEY, nullable=False),
        sa.Column("service_fee", MONEY, server_default="0"),
        sa.Column("tax", MONEY, server_default="0"),
        sa.Column("deposit_amount", MONEY, server_default="0"),
        sa.Column("discount_amount", MONEY, server_default="0"),
        sa.Column("total_price", MONEY, nullable=False),
        sa.Column("owner_earnings", MONEY, nullable=False),
        sa.Column("platform_fee", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("requires_deposit", sa.Boolean, server_default=sa.false()),
        sa.Column("payment_method", sa.String(100)),
        sa.Column("payment_reference", sa.String(100), unique=True),
        sa.Column("cancelled_by", sa.String(10)),
        sa.Column("cancellation_reason", sa.Text),
        sa.Column("refund_percentage", FRACTION),
        sa.Column("refund_amount", MONEY, server_default="0"),
        sa.Column("category_data", postgresql.JSONB),
        sa.Column("confirmed_at", sa.DateTime(timezone=True)),
        sa.Column("checked_in_at", sa.DateTime(timezone=True)),
        sa.Column("returned_at", sa.DateTime(timezone=True)),
        sa.Column("completed_at", sa.DateTime(timezone=True)),
        sa.Column("settled_at", sa.DateTime(timezone=True)),
        sa.Column("cancelled_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("version_id", sa.Integer, nullable=False),
        sa.CheckConstraint("end_date > start_date", name="ck_bookings_window"),
        sa.CheckConstraint("total_price >= 0", name="ck_bookings_total_non_negative"),
    )

    op.create_table(
        "booked_days",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("listing_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("listings.id"), nullable=False, index=True),
        sa.Column("day", sa.Date, nullable=False),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), nullable=False, index=True),
        sa.UniqueConstraint("listing_id", "day", name="uq_booked_days_listing_day"),
    )

    op.create_table(
        "booking_state_history",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), nullable=False, index=True),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("from_status", sa.String(30)),
        sa.Column("to_status", sa.String(30), nullable=False),
        sa.Column("reason", sa.Text),
        sa.Column("changed_by", postgresql.UUID(as_uuid=True)),
        sa.Column("details", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("booking_id", "sequence", name="uq_booking_history_sequence"),
    )

    # ==================== DEPOSITS ====================
    op.create_table(
        "deposit_holds",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), index=True),
        sa.Column("renter_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("replaces_hold_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("deposit_holds.id")),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("deducted_amount", MONEY, server_default="0"),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("status", sa.String(20), nullable=False, server_default="authorized", index=True),
        sa.Column("payment_method", sa.String(100)),
        sa.Column("external_hold_ref", sa.String(100)),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
        sa.Column("failure_reason", sa.Text),
        sa.Column("capture_reason", sa.Text),
        sa.Column("liability_posted", sa.Boolean, server_default=sa.false()),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("authorized_at", sa.DateTime(timezone=True)),
        sa.Column("captured_at", sa.DateTime(timezone=True)),
        sa.Column("released_at", sa.DateTime(timezone=True)),
        sa.Column("expired_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("version_id", sa.Integer, nullable=False),
        sa.CheckConstraint("deducted_amount >= 0 AND deducted_amount <= amount", name="ck_deposit_holds_deduction"),
    )
    # At most one live hold per booking
    op.create_index(
        "uq_deposit_holds_one_authorized",
        "deposit_holds",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text("status = 'authorized'"),
    )

    # ==================== PAYOUTS ====================
    op.create_table(
        "payouts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("reference", sa.String(30), unique=True, nullable=False),
        sa.Column("owner_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("destination_account", sa.String(100), nullable=False),
        sa.Column("idempotency_key", sa.String(64), nullable=False, unique=True),
        sa.Column("external_transfer_ref", sa.String(100)),
        sa.Column("failure_reason", sa.Text),
        sa.Column("attempts", sa.Integer, server_default="0"),
        sa.Column("entry_count", sa.Integer, server_default="0"),
        sa.Column("period_start", sa.DateTime(timezone=True)),
        sa.Column("period_end", sa.DateTime(timezone=True)),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.Column("failed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("version_id", sa.Integer, nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_payouts_amount_positive"),
    )

    # ==================== LEDGER ====================
    op.create_table(
        "ledger_postings",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), index=True),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("reference_id", sa.String(120), nullable=False, index=True),
        sa.Column("reversal_of_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("ledger_postings.id")),
        sa.Column("description", sa.Text),
        sa.Column("created_by", postgresql.UUID(as_uuid=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("transaction_type", "reference_id", name="uq_ledger_posting_reference"),
    )

    op.create_table(
        "ledger_entries",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("posting_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("ledger_postings.id"), nullable=False, index=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("transaction_type", sa.String(30), nullable=False),
        sa.Column("reference_id", sa.String(120), nullable=False, index=True),
        sa.Column("account_type", sa.String(30), nullable=False, index=True),
        sa.Column("party_id", postgresql.UUID(as_uuid=True), index=True),
        sa.Column("side", sa.String(10), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("currency", sa.String(3), nullable=False, server_default="USD"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending", index=True),
        sa.Column("settled_at", sa.DateTime(timezone=True)),
        sa.Column("payout_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("payouts.id"), index=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.CheckConstraint("amount > 0", name="ck_ledger_entries_amount_positive"),
        sa.CheckConstraint("side IN ('debit', 'credit')", name="ck_ledger_entries_side"),
    )

    # ==================== DISPUTES ====================
    op.create_table(
        "disputes",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("bookings.id"), nullable=False, index=True),
        sa.Column("condition_report_id", postgresql.UUID(as_uuid=True)),
        sa.Column("initiator_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("defendant_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("dispute_type", sa.String(30), nullable=False),
        sa.Column("title", sa.String(200), nullable=False),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("amount_claimed", MONEY, server_default="0"),
        sa.Column("evidence_urls", postgresql.JSONB),
        sa.Column("status", sa.String(30), nullable=False, server_default="open", index=True),
        sa.Column("priority", sa.String(10), nullable=False, server_default="medium"),
        sa.Column("sla_deadline", sa.DateTime(timezone=True), nullable=False, index=True),
        sa.Column("escalated_at", sa.DateTime(timezone=True)),
        sa.Column("assigned_to", postgresql.UUID(as_uuid=True)),
        sa.Column("dismissal_reason", sa.Text),
        sa.Column("resolved_at", sa.DateTime(timezone=True)),
        sa.Column("closed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("version_id", sa.Integer, nullable=False),
    )

    op.create_table(
        "dispute_resolutions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("dispute_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("disputes.id"), nullable=False, unique=True),
        sa.Column("outcome", sa.String(30), nullable=False),
        sa.Column("refund_amount", MONEY, server_default="0"),
        sa.Column("payout_adjustment", MONEY, server_default="0"),
        sa.Column("deposit_deduction", MONEY, server_default="0"),
        sa.Column("notes", sa.Text),
        sa.Column("resolved_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "dispute_timeline",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("dispute_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("disputes.id"), nullable=False, index=True),
        sa.Column("sequence", sa.Integer, nullable=False),
        sa.Column("event_type", sa.String(40), nullable=False),
        sa.Column("from_status", sa.String(30)),
        sa.Column("to_status", sa.String(30)),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True)),
        sa.Column("note", sa.Text),
        sa.Column("details", postgresql.JSONB),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("dispute_id", "sequence", name="uq_dispute_timeline_sequence"),
    )

    # ==================== OUTBOX ====================
    op.create_table(
        "outbox_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("event_type", sa.String(50), nullable=False, index=True),
        sa.Column("aggregate_type", sa.String(30), nullable=False),
        sa.Column("aggregate_id", postgresql.UUID(as_uuid=True), nullable=False, index=True),
        sa.Column("payload", postgresql.JSONB, nullable=False),
        sa.Column("status", sa.String(10), nullable=False, server_default="pending", index=True),
        sa.Column("attempts", sa.Integer, server_default="0"),
        sa.Column("last_error", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("dispatched_at", sa.DateTime(timezone=True)),
    )


def downgrade() -> None:
    """Drop all database tables in reverse order."""
    op.drop_table("outbox_events")
    op.drop_table("dispute_timeline")
    op.drop_table("dispute_resolutions")
    op.drop_table("disputes")
    op.drop_table("ledger_entries")
    op.drop_table("ledger_postings")
    op.drop_table("payouts")
    op.drop_index("uq_deposit_holds_one_authorized", table_name="deposit_holds")
    op.drop_table("deposit_holds")
    op.drop_table("booking_state_history")
    op.drop_table("booked_days")
    op.drop_table("bookings")
    op.drop_table("payout_accounts")
    op.drop_table("listings")
    op.drop_table("cancellation_rules")
    op.drop_table("cancellation_policies")
