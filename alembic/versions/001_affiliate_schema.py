"""Affiliate program schema - links, tracking, commissions, payouts, tier config.

Revision ID: 001
Revises:
Create Date: 2026-10-17
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users (marketplace accounts; owned by the auth service)
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(255)),
        sa.Column("role", sa.String(20), nullable=False, server_default="fan"),
        sa.Column("is_admin", sa.Boolean, server_default=sa.false()),
        sa.Column("referrer_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id")),
        sa.Column("is_affiliate", sa.Boolean, server_default=sa.false()),
        sa.Column("affiliate_code", sa.String(100)),
        sa.Column("affiliate_tier", sa.String(20), server_default="bronze"),
        sa.Column("affiliate_earnings", sa.Numeric(12, 2), server_default="0"),
        sa.Column("affiliate_joined_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_users_referrer_id", "users", ["referrer_id"])
    op.create_index("ix_users_is_affiliate", "users", ["is_affiliate"])

    # Affiliate links
    op.create_table(
        "affiliate_links",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("code", sa.String(100), nullable=False),
        sa.Column("landing_page", sa.String(255), server_default="/"),
        sa.Column("is_active", sa.Boolean, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_affiliate_links_code", "affiliate_links", ["code"], unique=True)
    op.create_index("ix_affiliate_links_user_id", "affiliate_links", ["user_id"], unique=True)

    # Tracking events (visit / signup / booking)
    op.create_table(
        "affiliate_tracking",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("affiliate_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("event_type", sa.String(20), nullable=False),
        sa.Column("visitor_id", sa.String(64)),
        sa.Column("ip_address", sa.String(64)),
        sa.Column("user_agent", sa.Text),
        sa.Column("referral_url", sa.Text),
        sa.Column("metadata", postgresql.JSONB, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index(
        "ix_affiliate_tracking_affiliate_event", "affiliate_tracking", ["affiliate_id", "event_type"]
    )
    op.create_index(
        "ix_affiliate_tracking_visitor", "affiliate_tracking", ["affiliate_id", "visitor_id", "event_type"]
    )

    # Commissions
    op.create_table(
        "affiliate_commissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("affiliate_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("referred_user_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("request_id", sa.String(64)),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("commission_type", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("paid_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'cancelled', 'paid')",
            name="ck_affiliate_commissions_status",
        ),
        sa.CheckConstraint("amount >= 0", name="ck_affiliate_commissions_amount"),
    )
    op.create_index(
        "ix_affiliate_commissions_affiliate_status", "affiliate_commissions", ["affiliate_id", "status"]
    )
    op.create_index(
        "uq_affiliate_commissions_signup_user", "affiliate_commissions", ["referred_user_id"],
        unique=True, postgresql_where=sa.text("commission_type = 'signup'"),
    )
    op.create_index(
        "uq_affiliate_commissions_booking_request", "affiliate_commissions", ["request_id"],
        unique=True, postgresql_where=sa.text("commission_type = 'booking'"),
    )

    # Payouts
    op.create_table(
        "affiliate_payouts",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("affiliate_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("payout_method", sa.String(20), nullable=False),
        sa.Column("payout_details", postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("notes", sa.Text),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.CheckConstraint("amount > 0", name="ck_affiliate_payouts_amount"),
        sa.CheckConstraint(
            "payout_method IN ('paypal', 'bank_transfer', 'wallet_credit')",
            name="ck_affiliate_payouts_method",
        ),
    )
    op.create_index(
        "ix_affiliate_payouts_affiliate_status", "affiliate_payouts", ["affiliate_id", "status"]
    )

    # Platform config (tier thresholds live under key 'affiliate_tiers')
    op.create_table(
        "platform_config",
        sa.Column("key", sa.String(100), primary_key=True),
        sa.Column("value", postgresql.JSONB, nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_by", postgresql.UUID(as_uuid=True)),
    )
    op.execute(
        """
        INSERT INTO platform_config (key, value) VALUES (
            'affiliate_tiers',
            '{"tiers": {"bronze": 0, "silver": 500, "gold": 2000, "platinum": 5000},
              "rates": {"bronze": 0.10, "silver": 0.12, "gold": 0.15, "platinum": 0.20}}'::jsonb
        ) ON CONFLICT (key) DO NOTHING
        """
    )


def downgrade() -> None:
    op.drop_table("platform_config")
    op.drop_table("affiliate_payouts")
    op.drop_table("affiliate_commissions")
    op.drop_table("affiliate_tracking")
    op.drop_table("affiliate_links")
    op.drop_table("users")
