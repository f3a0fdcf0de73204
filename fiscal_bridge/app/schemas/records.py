from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel

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


class FiscalDocumentRead(BaseModel):
    id: int
    commerce_order_id: int
    commerce_order_name: str | None
    document_type: DocumentType
    status: DocumentStatus

    fiscal_document_id: int | None
    fiscal_number: str | None
    fiscal_type_code: int | None
    reference_document_id: int | None

    tax_id: str | None
    customer_name: str | None
    net_amount: Decimal | None
    tax_amount: Decimal | None
    gross_amount: Decimal | None
    currency: str

    error_message: str | None
    generated_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class EventRecordRead(BaseModel):
    id: int
    topic: EventTopic
    order_id: int
    status: EventStatus
    result: dict[str, Any] | None
    error_message: str | None
    retryable: bool
    retry_count: int
    next_retry_at: datetime | None
    document_id: int | None
    processed_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class StockSyncLogRead(BaseModel):
    id: int
    mapping_id: int | None
    direction: SyncDirection
    previous_quantity: int | None
    new_quantity: int | None
    delta: int | None
    source: SyncSource
    source_id: str | None
    status: SyncStatus
    error_message: str | None
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationRead(BaseModel):
    id: int
    type: NotificationType
    title: str
    message: str
    entity_type: str | None
    entity_id: str | None
    is_read: bool
    read_at: datetime | None
    created_at: datetime

    class Config:
        from_attributes = True


class UsageRead(BaseModel):
    year: int
    month: int

    orders_count: int = 0
    documents_count: int = 0
    receipts_count: int = 0
    invoices_count: int = 0
    sales_notes_count: int = 0
    credit_notes_count: int = 0
    stock_syncs_count: int = 0
    errors_count: int = 0

    class Config:
        from_attributes = True
