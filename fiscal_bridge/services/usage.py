from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from fiscal_bridge.app.db.base import utcnow
from fiscal_bridge.app.db.models.core_types import DocumentType, NotificationType
from fiscal_bridge.app.db.models.models_v1 import Notification, UsageCounter
from fiscal_bridge.app.db.upsert import insert_if_absent

logger = logging.getLogger(__name__)

COUNTER_COLUMNS = frozenset(
    {
        "orders_count",
        "documents_count",
        "receipts_count",
        "invoices_count",
        "sales_notes_count",
        "credit_notes_count",
        "stock_syncs_count",
        "errors_count",
    }
)

DOCUMENT_COUNTERS = {
    DocumentType.receipt: "receipts_count",
    DocumentType.invoice: "invoices_count",
    DocumentType.sales_note: "sales_notes_count",
    DocumentType.credit_note: "credit_notes_count",
}


def increment_usage(db: Session, shop_id: int, *, at: datetime | None = None, **deltas: int) -> None:
    """
    Additive-only counter update for the (shop, year, month) period.

    One INSERT .. ON CONFLICT DO NOTHING, then one UPDATE col = col + n;
    never read-modify-write, so concurrent orders of the same shop all count.
    """
    unknown = set(deltas) - COUNTER_COLUMNS
    if unknown:
        raise ValueError(f"Unknown usage counters: {sorted(unknown)}")
    if any(n < 0 for n in deltas.values()):
        raise ValueError("Usage counters only increase")

    deltas = {col: n for col, n in deltas.items() if n}
    if not deltas:
        return

    at = at or utcnow()
    insert_if_absent(
        db,
        UsageCounter,
        {"shop_id": shop_id, "year": at.year, "month": at.month},
        conflict_columns=("shop_id", "year", "month"),
    )
    db.execute(
        update(UsageCounter)
        .where(UsageCounter.shop_id == shop_id)
        .where(UsageCounter.year == at.year)
        .where(UsageCounter.month == at.month)
        .values({col: getattr(UsageCounter, col) + n for col, n in deltas.items()})
        .execution_options(synchronize_session=False)
    )


def count_document(db: Session, shop_id: int, doc_type: DocumentType, *, new_order: bool = True) -> None:
    deltas = {"documents_count": 1, DOCUMENT_COUNTERS[doc_type]: 1}
    if new_order:
        deltas["orders_count"] = 1
    increment_usage(db, shop_id, **deltas)


def get_usage(db: Session, shop_id: int, year: int, month: int) -> UsageCounter | None:
    return db.execute(
        select(UsageCounter)
        .where(UsageCounter.shop_id == shop_id)
        .where(UsageCounter.year == year)
        .where(UsageCounter.month == month)
    ).scalar_one_or_none()


# ---------- Notifications ----------
def notify(
    db: Session,
    shop_id: int,
    title: str,
    message: str,
    *,
    type: NotificationType = NotificationType.error,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
) -> Notification:
    notification = Notification(
        shop_id=shop_id,
        type=type,
        title=title,
        message=message,
        entity_type=entity_type,
        entity_id=None if entity_id is None else str(entity_id),
    )
    db.add(notification)
    db.flush()
    logger.info("Notification %s for shop %s: %s", type.value, shop_id, title)
    return notification


def mark_notification_read(db: Session, shop_id: int, notification_id: int) -> Notification | None:
    notification = db.get(Notification, notification_id)
    if notification is None or notification.shop_id != shop_id:
        return None
    if not notification.is_read:
        notification.is_read = True
        notification.read_at = utcnow()
    return notification
