"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "clients",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("short_code", sa.String(), nullable=True, unique=True),
        sa.Column("webhook_secret", sa.String(), nullable=True),
        sa.Column("webhooks_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "client_webhook_endpoints",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("client_id", sa.String(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint("client_id", "kind", name="uq_client_webhook_endpoints_client_kind"),
    )
    op.create_index("ix_client_webhook_endpoints_client_id", "client_webhook_endpoints", ["client_id"])

    op.create_table(
        "operations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("client_id", sa.String(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("phone_number", sa.String(), nullable=False),
        sa.Column("account_reference", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("result_code", sa.Integer(), nullable=True),
        sa.Column("result_desc", sa.Text(), nullable=True),
        sa.Column("network_reference", sa.String(), nullable=True),
        sa.Column("network_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("raw_request", postgresql.JSONB(), nullable=True),
        sa.Column("raw_response", postgresql.JSONB(), nullable=True),
        sa.Column("callback_data", postgresql.JSONB(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("correlated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_operations_client_id", "operations", ["client_id"])
    op.create_index("ix_operations_status", "operations", ["status"])
    op.create_index("ix_operations_network_reference", "operations", ["network_reference"])
    op.create_index("ix_operations_client_created", "operations", ["client_id", "created_at"])

    op.create_table(
        "operation_correlations",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("operation_id", sa.String(), sa.ForeignKey("operations.id"), nullable=False),
        sa.Column("id_kind", sa.String(), nullable=False),
        sa.Column("value", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_operation_correlations_operation_id", "operation_correlations", ["operation_id"])
    # Unique across kinds: a callback is resolved by value alone.
    op.create_index("ix_operation_correlations_value", "operation_correlations", ["value"], unique=True)

    op.create_table(
        "notifications",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("client_id", sa.String(), sa.ForeignKey("clients.id"), nullable=False),
        sa.Column("operation_id", sa.String(), sa.ForeignKey("operations.id"), nullable=True),
        sa.Column("kind", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="pending"),
        sa.Column("payload", postgresql.JSONB(), nullable=False),
        sa.Column("destination", sa.String(), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_response_status", sa.Integer(), nullable=True),
        sa.Column("last_response_body", sa.Text(), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("claim_token", sa.String(), nullable=True),
        sa.Column("claimed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_client_id", "notifications", ["client_id"])
    op.create_index("ix_notifications_operation_id", "notifications", ["operation_id"])
    # Serves the retry sweep predicate (status, last attempt).
    op.create_index("ix_notifications_status_last_attempt", "notifications", ["status", "last_attempt_at"])
    op.create_index("ix_notifications_client_created", "notifications", ["client_id", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_notifications_client_created", table_name="notifications")
    op.drop_index("ix_notifications_status_last_attempt", table_name="notifications")
    op.drop_index("ix_notifications_operation_id", table_name="notifications")
    op.drop_index("ix_notifications_client_id", table_name="notifications")
    op.drop_table("notifications")
    op.drop_index("ix_operation_correlations_value", table_name="operation_correlations")
    op.drop_index("ix_operation_correlations_operation_id", table_name="operation_correlations")
    op.drop_table("operation_correlations")
    op.drop_index("ix_operations_client_created", table_name="operations")
    op.drop_index("ix_operations_network_reference", table_name="operations")
    op.drop_index("ix_operations_status", table_name="operations")
    op.drop_index("ix_operations_client_id", table_name="operations")
    op.drop_table("operations")
    op.drop_index("ix_client_webhook_endpoints_client_id", table_name="client_webhook_endpoints")
    op.drop_table("client_webhook_endpoints")
    op.drop_table("clients")
