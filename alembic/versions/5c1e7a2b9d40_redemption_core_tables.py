"""redemption_core_tables

Revision ID: 5c1e7a2b9d40
Revises:
Create Date: 2026-10-18 09:30:00.000000
"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "5c1e7a2b9d40"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "redemptions",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("voucher_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("code", sa.Text(), nullable=False),
        sa.Column("customer_sequence", sa.Integer(), nullable=False),
        sa.Column("redeemed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=True),
        sa.Column("offline", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("synced_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("device_id", sa.String(128), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("customer_sequence >= 1", name="ck_redemptions_customer_sequence_positive"),
        sa.CheckConstraint("(latitude IS NULL) = (longitude IS NULL)", name="ck_redemptions_location_pair"),
        sa.UniqueConstraint(
            "voucher_id",
            "customer_id",
            "customer_sequence",
            name="uq_redemptions_voucher_customer_sequence",
        ),
    )
    op.create_index("idx_redemptions_voucher", "redemptions", ["voucher_id"])
    op.create_index("idx_redemptions_customer", "redemptions", ["customer_id"])
    op.create_index("idx_redemptions_provider_redeemed_at", "redemptions", ["provider_id", "redeemed_at"])
    op.create_index("idx_redemptions_code", "redemptions", ["code"])

    op.create_table(
        "fraud_cases",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("case_number", sa.String(32), nullable=False),
        sa.Column("redemption_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("risk_score", sa.Integer(), nullable=False),
        sa.Column("flags", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("customer_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("provider_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("voucher_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("reviewed_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("review_notes", sa.String(500), nullable=True),
        sa.Column("actions_taken", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("detection_metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('PENDING','APPROVED','REJECTED','FALSE_POSITIVE')", name="ck_fraud_cases_status"),
        sa.CheckConstraint("risk_score >= 0 AND risk_score <= 100", name="ck_fraud_cases_risk_score_range"),
        sa.ForeignKeyConstraint(["redemption_id"], ["redemptions.id"]),
        sa.UniqueConstraint("case_number", name="uq_fraud_cases_case_number"),
        sa.UniqueConstraint("redemption_id", name="uq_fraud_cases_redemption_id"),
    )
    op.create_index("idx_fraud_cases_status_detected", "fraud_cases", ["status", "detected_at"])
    op.create_index("idx_fraud_cases_provider", "fraud_cases", ["provider_id"])
    op.create_index("idx_fraud_cases_customer", "fraud_cases", ["customer_id"])
    op.create_index("idx_fraud_cases_risk_detected", "fraud_cases", ["risk_score", "detected_at"])

    op.create_table(
        "fraud_case_history",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("fraud_case_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("action", sa.String(64), nullable=False),
        sa.Column("performed_by", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("notes", sa.String(500), nullable=True),
        sa.Column("metadata", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["fraud_case_id"], ["fraud_cases.id"]),
    )
    op.create_index(
        "idx_fraud_case_history_case_created",
        "fraud_case_history",
        ["fraud_case_id", "created_at"],
    )

    op.create_table(
        "static_short_codes",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("code", sa.String(16), nullable=False),
        sa.Column("voucher_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("created_by", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint("char_length(code) BETWEEN 4 AND 16", name="ck_static_short_codes_length"),
        sa.UniqueConstraint("code", name="uq_static_short_codes_code"),
    )
    op.create_index("idx_static_short_codes_voucher", "static_short_codes", ["voucher_id"])


def downgrade() -> None:
    op.drop_index("idx_static_short_codes_voucher", table_name="static_short_codes")
    op.drop_table("static_short_codes")
    op.drop_index("idx_fraud_case_history_case_created", table_name="fraud_case_history")
    op.drop_table("fraud_case_history")
    op.drop_index("idx_fraud_cases_risk_detected", table_name="fraud_cases")
    op.drop_index("idx_fraud_cases_customer", table_name="fraud_cases")
    op.drop_index("idx_fraud_cases_provider", table_name="fraud_cases")
    op.drop_index("idx_fraud_cases_status_detected", table_name="fraud_cases")
    op.drop_table("fraud_cases")
    op.drop_index("idx_redemptions_code", table_name="redemptions")
    op.drop_index("idx_redemptions_provider_redeemed_at", table_name="redemptions")
    op.drop_index("idx_redemptions_customer", table_name="redemptions")
    op.drop_index("idx_redemptions_voucher", table_name="redemptions")
    op.drop_table("redemptions")
