from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fiscal_bridge.app.db.base import Base, BigIntPK, utcnow
from fiscal_bridge.app.db.models.core_types import (
    DocumentStatus,
    DocumentType,
    EventStatus,
    EventTopic,
    NotificationType,
    SyncDirection,
    SyncSource,
    SyncStatus,
)


# ---------- SHOP (owned by the install flow, read here) ----------
class Shop(Base):
    __tablename__ = "shops"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_domain: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="CLP", nullable=False)

    commerce_access_token: Mapped[str | None] = mapped_column(String(255))
    commerce_location_id: Mapped[int | None] = mapped_column(BigInteger)

    fiscal_api_token: Mapped[str | None] = mapped_column(String(255))
    fiscal_branch_id: Mapped[int | None] = mapped_column(BigInteger)
    fiscal_warehouse_id: Mapped[int | None] = mapped_column(BigInteger)
    is_fiscal_configured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # default_document_type, sync_stock_enabled, sync_stock_direction, required_mapped_ratio
    settings: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    # document class -> external document type id
    document_type_ids: Mapped[dict[str, int]] = mapped_column(JSON, default=dict, nullable=False)

    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_document_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# ---------- CATALOG ----------
class CatalogMapping(Base):
    __tablename__ = "catalog_mappings"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)

    commerce_product_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commerce_variant_id: Mapped[int | None] = mapped_column(BigInteger)
    commerce_inventory_item_id: Mapped[int | None] = mapped_column(BigInteger, index=True)
    commerce_sku: Mapped[str | None] = mapped_column(String(128))

    fiscal_item_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fiscal_variant_id: Mapped[int | None] = mapped_column(BigInteger)

    sync_stock: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sync_price: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    last_synced_quantity: Mapped[int | None] = mapped_column(Integer)
    last_stock_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[str | None] = mapped_column(Text)

    shop: Mapped[Shop] = relationship()

    __table_args__ = (
        UniqueConstraint(
            "shop_id",
            "commerce_product_id",
            "commerce_variant_id",
            name="uq_catalog_mapping_shop_product_variant",
        ),
    )

    @property
    def fiscal_stock_variant_id(self) -> int:
        return self.fiscal_variant_id or self.fiscal_item_id


# ---------- DOCUMENTS ----------
class FiscalDocument(Base):
    __tablename__ = "fiscal_documents"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="RESTRICT"), nullable=False)

    commerce_order_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    commerce_order_name: Mapped[str | None] = mapped_column(String(64))
    commerce_order_number: Mapped[int | None] = mapped_column(BigInteger)

    document_type: Mapped[DocumentType] = mapped_column(Enum(DocumentType, name="document_type"), nullable=False)
    status: Mapped[DocumentStatus] = mapped_column(
        Enum(DocumentStatus, name="document_status"),
        default=DocumentStatus.pending,
        nullable=False,
    )

    fiscal_document_id: Mapped[int | None] = mapped_column(BigInteger)
    fiscal_number: Mapped[str | None] = mapped_column(String(64))
    fiscal_type_code: Mapped[int | None] = mapped_column(Integer)

    # credit notes point at the document they reverse
    reference_document_id: Mapped[int | None] = mapped_column(
        ForeignKey("fiscal_documents.id", ondelete="RESTRICT"),
        unique=True,
    )

    tax_id: Mapped[str | None] = mapped_column(String(16))
    customer_name: Mapped[str | None] = mapped_column(String(255))
    customer_email: Mapped[str | None] = mapped_column(String(255))

    net_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    tax_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    gross_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2))
    currency: Mapped[str] = mapped_column(String(3), default="CLP", nullable=False)

    error_message: Mapped[str | None] = mapped_column(Text)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    generated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        # at most one live sales document per order
        Index(
            "uq_fiscal_documents_active_order",
            "shop_id",
            "commerce_order_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled' AND document_type <> 'credit_note'"),
            sqlite_where=text("status <> 'cancelled' AND document_type <> 'credit_note'"),
        ),
        Index("ix_fiscal_documents_shop_created", "shop_id", "created_at"),
    )


# ---------- EVENT LEDGER ----------
class EventRecord(Base):
    __tablename__ = "event_records"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    topic: Mapped[EventTopic] = mapped_column(Enum(EventTopic, name="event_topic"), nullable=False)
    order_id: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[EventStatus] = mapped_column(
        Enum(EventStatus, name="event_status"),
        default=EventStatus.pending,
        nullable=False,
    )
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    result: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    error_message: Mapped[str | None] = mapped_column(Text)

    retryable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    document_id: Mapped[int | None] = mapped_column(ForeignKey("fiscal_documents.id", ondelete="SET NULL"))
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("shop_id", "topic", "order_id", name="uq_event_records_shop_topic_order"),
        Index("ix_event_records_status_next_retry", "status", "next_retry_at"),
    )


# ---------- STOCK ----------
class StockSyncLogEntry(Base):
    __tablename__ = "stock_sync_logs"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    mapping_id: Mapped[int | None] = mapped_column(ForeignKey("catalog_mappings.id", ondelete="SET NULL"))

    direction: Mapped[SyncDirection] = mapped_column(Enum(SyncDirection, name="sync_direction"), nullable=False)
    previous_quantity: Mapped[int | None] = mapped_column(Integer)
    new_quantity: Mapped[int | None] = mapped_column(Integer)
    delta: Mapped[int | None] = mapped_column(Integer)

    source: Mapped[SyncSource] = mapped_column(Enum(SyncSource, name="sync_source"), nullable=False)
    source_id: Mapped[str | None] = mapped_column(String(64))
    status: Mapped[SyncStatus] = mapped_column(Enum(SyncStatus, name="sync_status"), nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_stock_sync_logs_shop_created", "shop_id", "created_at"),)


# ---------- USAGE / NOTIFICATIONS ----------
class UsageCounter(Base):
    __tablename__ = "usage_counters"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)

    orders_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    documents_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    receipts_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    invoices_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    sales_notes_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credit_notes_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    stock_syncs_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    errors_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (UniqueConstraint("shop_id", "year", "month", name="uq_usage_counters_shop_period"),)


class Notification(Base):
    __tablename__ = "notifications"
    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    shop_id: Mapped[int] = mapped_column(ForeignKey("shops.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[NotificationType] = mapped_column(Enum(NotificationType, name="notification_type"), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(64))
    entity_id: Mapped[str | None] = mapped_column(String(64))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (Index("ix_notifications_shop_read", "shop_id", "is_read"),)
