"""Initial referral engine schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19

Creates the ledger tables:
- accounts: identity, referral attribution and earnings balance
- referral_events: one row per commission line, keyed for idempotency
- referral_configs, referral_tiers, account_tiers
- webhook_events: claim/lease ledger for inbound events
- payout_records, commission_records, notifications
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(12, 2)


def upgrade() -> None:
    """Create ledger tables."""

    op.create_table(
        "accounts",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("referral_code", sa.String(20), nullable=True),
        sa.Column("referred_by_id", sa.Integer(), nullable=True),
        sa.Column("commission_override", MONEY, nullable=True),
        sa.Column("total_earnings", MONEY, nullable=False, server_default="0"),
        sa.Column("gateway_customer_id", sa.String(255), nullable=True),
        sa.Column("payout_destination_id", sa.String(255), nullable=True),
        sa.Column("payout_destination_status", sa.String(20), nullable=False, server_default="none"),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["referred_by_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_accounts_email", "accounts", ["email"], unique=True)
    op.create_index("ix_accounts_referral_code", "accounts", ["referral_code"], unique=True)
    op.create_index("ix_accounts_referred_by_id", "accounts", ["referred_by_id"])

    op.create_table(
        "referral_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("idempotency_key", sa.String(512), nullable=False),
        sa.Column("referrer_email", sa.String(255), nullable=False),
        sa.Column("referred_email", sa.String(255), nullable=False),
        sa.Column("referral_code", sa.String(20), nullable=False),
        sa.Column("commission_earned", MONEY, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("conversion_type", sa.String(20), nullable=False),
        sa.Column("level", sa.Integer(), nullable=True),
        sa.Column("checkout_session_id", sa.String(255), nullable=True),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("amount_paid", MONEY, nullable=True),
        sa.Column("reward_issued", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reward_issued_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("idempotency_key"),
    )
    op.create_index("ix_referral_events_referrer_email", "referral_events", ["referrer_email"])
    op.create_index("ix_referral_events_referred_email", "referral_events", ["referred_email"])
    op.create_index("ix_referral_events_referral_code", "referral_events", ["referral_code"])
    op.create_index("ix_referral_events_checkout_session_id", "referral_events", ["checkout_session_id"])

    op.create_table(
        "referral_configs",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("reward_type", sa.String(20), nullable=False, server_default="percentage"),
        sa.Column("reward_value", MONEY, nullable=False, server_default="10"),
        sa.Column("minimum_purchase_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("referred_discount_value", MONEY, nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "referral_tiers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("tier_name", sa.String(100), nullable=False),
        sa.Column("tier_level", sa.Integer(), nullable=False),
        sa.Column("min_referrals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("min_commission", MONEY, nullable=False, server_default="0"),
        sa.Column("bonus_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("percentage_boost", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("perks", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tier_level"),
    )

    op.create_table(
        "account_tiers",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("account_email", sa.String(255), nullable=False),
        sa.Column("current_tier_id", sa.Integer(), nullable=False),
        sa.Column("current_tier_level", sa.Integer(), nullable=False),
        sa.Column("next_tier_id", sa.Integer(), nullable=True),
        sa.Column("total_referrals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("successful_referrals", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_commission_earned", MONEY, nullable=False, server_default="0"),
        sa.Column("progress_to_next_tier", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("tier_bonuses_earned", MONEY, nullable=False, server_default="0"),
        sa.Column("tier_history", sa.JSON(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.ForeignKeyConstraint(["current_tier_id"], ["referral_tiers.id"]),
        sa.ForeignKeyConstraint(["next_tier_id"], ["referral_tiers.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("account_id"),
    )
    op.create_index("ix_account_tiers_account_email", "account_tiers", ["account_email"])

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("source", sa.String(50), nullable=False, server_default="stripe"),
        sa.Column("processed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("result_metadata", sa.JSON(), nullable=True),
        sa.Column("locked_until", sa.DateTime(), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_webhook_events_event_id", "webhook_events", ["event_id"], unique=True)

    op.create_table(
        "payout_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("account_id", sa.Integer(), nullable=False),
        sa.Column("account_email", sa.String(255), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("destination_id", sa.String(255), nullable=True),
        sa.Column("destination_transfer_id", sa.String(255), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("source", sa.String(20), nullable=False, server_default="batch"),
        sa.Column("batch_run_id", sa.String(64), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("reviewed_by", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.ForeignKeyConstraint(["account_id"], ["accounts.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("batch_run_id", "account_id", name="uq_payout_run_account"),
    )
    op.create_index("ix_payout_records_account_id", "payout_records", ["account_id"])
    op.create_index("ix_payout_records_account_email", "payout_records", ["account_email"])
    op.create_index(
        "uq_payout_one_pending",
        "payout_records",
        ["account_id"],
        unique=True,
        sqlite_where=sa.text("status = 'pending'"),
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "commission_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("reference_id", sa.String(255), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("beneficiary_email", sa.String(255), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="completed"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_type", "reference_id", "beneficiary_email", name="uq_commission_reference"),
    )
    op.create_index("ix_commission_records_beneficiary_email", "commission_records", ["beneficiary_email"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_email", sa.String(255), nullable=False),
        sa.Column("type", sa.String(50), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notifications_user_email", "notifications", ["user_email"])


def downgrade() -> None:
    """Drop ledger tables."""
    op.drop_table("notifications")
    op.drop_table("commission_records")
    op.drop_index("uq_payout_one_pending", table_name="payout_records")
    op.drop_table("payout_records")
    op.drop_table("webhook_events")
    op.drop_table("account_tiers")
    op.drop_table("referral_tiers")
    op.drop_table("referral_configs")
    op.drop_table("referral_events")
    op.drop_table("accounts")
