"""initial schema: shops, catalog, documents, event ledger, stock logs, usage

Revision ID: 3f1c9a2b7d40
Revises:
Create Date: 2026-10-18 09:12:03.184211
"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "3f1c9a2b7d40"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
document_type = sa.Enum("receipt", "invoice", "sales_note", "credit_note", name="document_type")
document_status = sa.Enum("pending", "generated", "sent", "cancelled", "error", name="document_status")
event_topic = sa.Enum("orders_create", "orders_cancelled", name="event_topic")
event_status = sa.Enum("pending", "processing", "completed", "failed", name="event_status")
sync_direction = sa.Enum("to_external", "to_commerce", "bidirectional", name="sync_direction")
sync_source = sa.Enum("manual", "event", name="sync_source")
sync_status = sa.Enum("success", "error", name="sync_status")
notification_type = sa.Enum("error", "warning", "info", "success", name="notification_type")

ACTIVE_DOCUMENT_WHERE = sa.text("status <> 'cancelled' AND document_type <> 'credit_note'")


def upgrade() -> None:
    op.create_table(
        "shops",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("shop_domain", sa.String(255), nullable=False, unique=True),
        sa.Column("currency", sa.String(3), nullable=False, server_default="CLP"),
        sa.Column("commerce_access_token", sa.String(255)),
        sa.Column("commerce_location_id", sa.BigInteger()),
        sa.Column("fiscal_api_token", sa.String(255)),
        sa.Column("fiscal_branch_id", sa.BigInteger()),
        sa.Column("fiscal_warehouse_id", sa.BigInteger()),
        sa.Column("is_fiscal_configured", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("settings", sa.JSON(), nullable=False),
        sa.Column("document_type_ids", sa.JSON(), nullable=False),
        sa.Column("last_sync_at", sa.DateTime(timezone=True)),
        sa.Column("last_document_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "catalog_mappings",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("commerce_product_id", sa.BigInteger(), nullable=False),
        sa.Column("commerce_variant_id", sa.BigInteger()),
        sa.Column("commerce_inventory_item_id", sa.BigInteger()),
        sa.Column("commerce_sku", sa.String(128)),
        sa.Column("fiscal_item_id", sa.BigInteger(), nullable=False),
        sa.Column("fiscal_variant_id", sa.BigInteger()),
        sa.Column("sync_stock", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sync_price", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_synced_quantity", sa.Integer()),
        sa.Column("last_stock_sync_at", sa.DateTime(timezone=True)),
        sa.Column("last_error", sa.Text()),
        sa.UniqueConstraint(
            "shop_id",
            "commerce_product_id",
            "commerce_variant_id",
            name="uq_catalog_mapping_shop_product_variant",
        ),
    )
    op.create_index(
        "ix_catalog_mappings_commerce_inventory_item_id",
        "catalog_mappings",
        ["commerce_inventory_item_id"],
    )

    op.create_table(
        "fiscal_documents",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("commerce_order_id", sa.BigInteger(), nullable=False),
        sa.Column("commerce_order_name", sa.String(64)),
        sa.Column("commerce_order_number", sa.BigInteger()),
        sa.Column("document_type", document_type, nullable=False),
        sa.Column("status", document_status, nullable=False),
        sa.Column("fiscal_document_id", sa.BigInteger()),
        sa.Column("fiscal_number", sa.String(64)),
        sa.Column("fiscal_type_code", sa.Integer()),
        sa.Column(
            "reference_document_id",
            sa.BigInteger(),
            sa.ForeignKey("fiscal_documents.id", ondelete="RESTRICT"),
            unique=True,
        ),
        sa.Column("tax_id", sa.String(16)),
        sa.Column("customer_name", sa.String(255)),
        sa.Column("customer_email", sa.String(255)),
        sa.Column("net_amount", sa.Numeric(14, 2)),
        sa.Column("tax_amount", sa.Numeric(14, 2)),
        sa.Column("gross_amount", sa.Numeric(14, 2)),
        sa.Column("currency", sa.String(3), nullable=False, server_default="CLP"),
        sa.Column("error_message", sa.Text()),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("generated_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    # at most one live sales document per order; credit notes and cancelled originals excluded
    op.create_index(
        "uq_fiscal_documents_active_order",
        "fiscal_documents",
        ["shop_id", "commerce_order_id"],
        unique=True,
        postgresql_where=ACTIVE_DOCUMENT_WHERE,
        sqlite_where=ACTIVE_DOCUMENT_WHERE,
    )
    op.create_index("ix_fiscal_documents_shop_created", "fiscal_documents", ["shop_id", "created_at"])

    op.create_table(
        "event_records",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("topic", event_topic, nullable=False),
        sa.Column("order_id", sa.BigInteger(), nullable=False),
        sa.Column("status", event_status, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("result", sa.JSON()),
        sa.Column("error_message", sa.Text()),
        sa.Column("retryable", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("next_retry_at", sa.DateTime(timezone=True)),
        sa.Column(
            "document_id",
            sa.BigInteger(),
            sa.ForeignKey("fiscal_documents.id", ondelete="SET NULL"),
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("shop_id", "topic", "order_id", name="uq_event_records_shop_topic_order"),
    )
    op.create_index("ix_event_records_status_next_retry", "event_records", ["status", "next_retry_at"])

    op.create_table(
        "stock_sync_logs",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column(
            "mapping_id",
            sa.BigInteger(),
            sa.ForeignKey("catalog_mappings.id", ondelete="SET NULL"),
        ),
        sa.Column("direction", sync_direction, nullable=False),
        sa.Column("previous_quantity", sa.Integer()),
        sa.Column("new_quantity", sa.Integer()),
        sa.Column("delta", sa.Integer()),
        sa.Column("source", sync_source, nullable=False),
        sa.Column("source_id", sa.String(64)),
        sa.Column("status", sync_status, nullable=False),
        sa.Column("error_message", sa.Text()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_stock_sync_logs_shop_created", "stock_sync_logs", ["shop_id", "created_at"])

    op.create_table(
        "usage_counters",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("month", sa.Integer(), nullable=False),
        *[
            sa.Column(name, sa.Integer(), nullable=False, server_default="0")
            for name in (
                "orders_count",
                "documents_count",
                "receipts_count",
                "invoices_count",
                "sales_notes_count",
                "credit_notes_count",
                "stock_syncs_count",
                "errors_count",
            )
        ],
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("shop_id", "year", "month", name="uq_usage_counters_shop_period"),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), primary_key=True),
        sa.Column("shop_id", sa.BigInteger(), sa.ForeignKey("shops.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", notification_type, nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("entity_type", sa.String(64)),
        sa.Column("entity_id", sa.String(64)),
        sa.Column("is_read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("read_at", sa.DateTime(timezone=True)),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_shop_read", "notifications", ["shop_id", "is_read"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("usage_counters")
    op.drop_table("stock_sync_logs")
    op.drop_table("event_records")
    op.drop_table("fiscal_documents")
    op.drop_table("catalog_mappings")
    op.drop_table("shops")

    bind = op.get_bind()
    for enum_type in (
        notification_type,
        sync_status,
        sync_source,
        sync_direction,
        event_status,
        event_topic,
        document_status,
        document_type,
    ):
        enum_type.drop(bind, checkfirst=True)
