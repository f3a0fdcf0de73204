"""
Event ledger and order event processing.

    pending --claim--> processing --> completed
                                  +-> failed --(retry job, retryable only)--> processing

One EventRecord per (shop, topic, order id). The claim is an atomic
INSERT .. ON CONFLICT DO NOTHING followed by a conditional
pending -> processing UPDATE: exactly one concurrent delivery wins, the
others observe the existing row and are absorbed. Claims and terminal
transitions are committed here so other workers see them immediately.

A cancellation that arrives while its order is still being issued fails
as retryable; the retry job compensates once the document exists.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from fiscal_bridge.app import config
from fiscal_bridge.app.db.base import utcnow
from fiscal_bridge.app.db.models.core_types import DocumentStatus, DocumentType, EventStatus, EventTopic
from fiscal_bridge.app.db.models.models_v1 import EventRecord, FiscalDocument, Shop
from fiscal_bridge.app.db.upsert import insert_if_absent
from fiscal_bridge.app.schemas.commerce import CommerceOrder
from fiscal_bridge.app.schemas.shop import ShopSettings
from fiscal_bridge.services.document_types import resolve_document_type
from fiscal_bridge.services.errors import FiscalBridgeError, OrderInFlightError
from fiscal_bridge.services.fiscal_client import FiscalClient
from fiscal_bridge.services.issuer import FiscalDocumentIssuer, IssuedDocument
from fiscal_bridge.services.orders import OrderData, ensure_mapped, map_line_items, transform_order
from fiscal_bridge.services.usage import count_document, increment_usage, notify

logger = logging.getLogger(__name__)

# outcome values
COMPLETED = "completed"
FAILED = "failed"
DUPLICATE = "duplicate"
IN_PROGRESS = "in_progress"

ISSUED_DOCUMENT_STATUSES = (DocumentStatus.generated, DocumentStatus.sent)

FiscalClientFactory = Callable[[Shop], FiscalClient]


@dataclass(frozen=True)
class EventOutcome:
    status: str
    event_id: int | None = None
    document_id: int | None = None
    message: str | None = None


class _NotRecorded(FiscalBridgeError):
    """Document issued externally but the local write failed; never auto-retried."""


# ---------- Ledger ----------
def _event_key(stmt, shop_id: int, topic: EventTopic, order_id: int):
    return (
        stmt.where(EventRecord.shop_id == shop_id)
        .where(EventRecord.topic == topic)
        .where(EventRecord.order_id == order_id)
    )


def claim_event(
    db: Session,
    shop_id: int,
    topic: EventTopic,
    order_id: int,
    payload: dict[str, Any],
) -> tuple[EventRecord, bool]:
    """Create-or-fetch the record and try to move it pending -> processing."""
    insert_if_absent(
        db,
        EventRecord,
        {
            "shop_id": shop_id,
            "topic": topic,
            "order_id": order_id,
            "payload": payload,
            "status": EventStatus.pending,
        },
        conflict_columns=("shop_id", "topic", "order_id"),
    )
    db.commit()

    won = (
        db.execute(
            _event_key(update(EventRecord), shop_id, topic, order_id)
            .where(EventRecord.status == EventStatus.pending)
            .values(status=EventStatus.processing)
            .execution_options(synchronize_session=False)
        ).rowcount
        == 1
    )
    db.commit()

    record = db.execute(
        _event_key(select(EventRecord), shop_id, topic, order_id).execution_options(populate_existing=True)
    ).scalar_one()
    return record, won


def complete_event(
    db: Session,
    record: EventRecord,
    result: dict[str, Any],
    *,
    document_id: int | None = None,
) -> None:
    db.execute(
        update(EventRecord)
        .where(EventRecord.id == record.id)
        .where(EventRecord.status == EventStatus.processing)
        .values(
            status=EventStatus.completed,
            result=result,
            document_id=document_id,
            error_message=None,
            retryable=False,
            next_retry_at=None,
            processed_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()
    db.refresh(record)


def fail_event(db: Session, shop: Shop, record_id: int, exc: BaseException) -> EventRecord:
    """Record the failure, count it and raise a notification. Never raises the original error."""
    db.rollback()

    retryable = bool(getattr(exc, "retryable", False))
    record = db.get(EventRecord, record_id)
    next_retry_at = None
    if retryable and record.retry_count >= config.EVENT_RETRY_MAX_ATTEMPTS:
        logger.warning("Event %s exhausted %s retries", record_id, record.retry_count)
        retryable = False
    if retryable:
        delay = config.EVENT_RETRY_BASE_DELAY * 2**record.retry_count
        next_retry_at = utcnow() + timedelta(seconds=delay)

    db.execute(
        update(EventRecord)
        .where(EventRecord.id == record_id)
        .where(EventRecord.status == EventStatus.processing)
        .values(
            status=EventStatus.failed,
            error_message=str(exc),
            retryable=retryable,
            next_retry_at=next_retry_at,
            processed_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    increment_usage(db, shop.id, errors_count=1)

    action = "cancel" if record.topic == EventTopic.orders_cancelled else "generate document for"
    title = "Credit Note Failed" if record.topic == EventTopic.orders_cancelled else "Document Generation Failed"
    notify(
        db,
        shop.id,
        title,
        f"Failed to {action} order {_order_label(record)}: {exc}",
        entity_type="event",
        entity_id=record_id,
    )
    db.commit()
    db.refresh(record)
    return record


def _order_label(record: EventRecord) -> str:
    return str((record.payload or {}).get("name") or record.order_id)


def absorbed_outcome(record: EventRecord) -> EventOutcome:
    """Outcome for a delivery that lost the claim."""
    if record.status == EventStatus.completed:
        logger.info("Event %s already completed, idempotent replay", record.id)
        return EventOutcome(DUPLICATE, record.id, record.document_id, "already processed")
    if record.status == EventStatus.failed:
        logger.info("Event %s previously failed, left to the retry job", record.id)
        return EventOutcome(DUPLICATE, record.id, None, record.error_message)
    logger.info("Event %s is being processed by another worker", record.id)
    return EventOutcome(IN_PROGRESS, record.id)


# ---------- Documents ----------
def find_sales_document(db: Session, shop_id: int, order_id: int) -> FiscalDocument | None:
    """Live sales document of the order, else its most recent one."""
    rows = (
        db.execute(
            select(FiscalDocument)
            .where(FiscalDocument.shop_id == shop_id)
            .where(FiscalDocument.commerce_order_id == order_id)
            .where(FiscalDocument.document_type != DocumentType.credit_note)
            .order_by(FiscalDocument.id.desc())
        )
        .scalars()
        .all()
    )
    for doc in rows:
        if doc.status != DocumentStatus.cancelled:
            return doc
    return rows[0] if rows else None


def _issuer(shop: Shop, fiscal: FiscalClient) -> FiscalDocumentIssuer:
    return FiscalDocumentIssuer(
        fiscal,
        branch_id=shop.fiscal_branch_id,
        document_type_ids=shop.document_type_ids or {},
    )


def _persist_document(
    db: Session,
    shop: Shop,
    order: CommerceOrder,
    data: OrderData,
    doc_type: DocumentType,
    issued: IssuedDocument,
    *,
    reference_document_id: int | None = None,
) -> FiscalDocument:
    now = utcnow()
    document = FiscalDocument(
        shop_id=shop.id,
        commerce_order_id=order.id,
        commerce_order_name=data.order_name,
        commerce_order_number=data.order_number,
        document_type=doc_type,
        status=DocumentStatus.generated,
        fiscal_document_id=issued.external_id,
        fiscal_number=issued.number,
        fiscal_type_code=issued.type_code,
        reference_document_id=reference_document_id,
        tax_id=data.tax_id or None,
        customer_name=data.customer_name or None,
        customer_email=data.email or None,
        net_amount=data.net_amount,
        tax_amount=data.tax_amount,
        gross_amount=data.gross_amount,
        currency=data.currency,
        generated_at=now,
    )
    db.add(document)
    db.flush()
    shop.last_document_at = now
    return document


# ---------- orders/create ----------
def run_order_created(db: Session, shop: Shop, record: EventRecord, fiscal: FiscalClient) -> EventOutcome:
    """Resolver -> transformer -> mapper -> issuer for a claimed record."""
    record_id = record.id
    shop_domain = shop.shop_domain
    try:
        order = CommerceOrder.model_validate(record.payload)

        existing = find_sales_document(db, shop.id, order.id)
        if existing is not None and existing.status in ISSUED_DOCUMENT_STATUSES:
            complete_event(db, record, {"document_id": existing.id, "skipped": True}, document_id=existing.id)
            return EventOutcome(COMPLETED, record_id, existing.id, "document already exists")

        if _order_was_cancelled(db, shop.id, order.id):
            complete_event(db, record, {"skipped": True, "reason": "order cancelled"})
            return EventOutcome(COMPLETED, record_id, None, "order cancelled")

        settings = ShopSettings.from_json(shop.settings)
        doc_type = resolve_document_type(settings, order)
        data = transform_order(order)
        items = ensure_mapped(map_line_items(db, shop.id, order.line_items), settings.required_mapped_ratio)

        issued = _issuer(shop, fiscal).issue(doc_type, data, items)
    except Exception as exc:
        logger.exception("Order event %s failed for shop %s", record_id, shop_domain)
        failed = fail_event(db, shop, record_id, exc)
        return EventOutcome(FAILED, record_id, None, failed.error_message)

    try:
        document = _persist_document(db, shop, order, data, doc_type, issued)
        count_document(db, shop.id, doc_type)
        complete_event(
            db,
            record,
            {"document_id": document.id, "fiscal_document_id": issued.external_id, "number": issued.number},
            document_id=document.id,
        )
    except Exception as exc:
        logger.exception("Document %s issued but not recorded (event %s)", issued.number, record_id)
        failed = fail_event(
            db,
            shop,
            record_id,
            _NotRecorded(f"issued externally as {issued.number} (id {issued.external_id}) but not recorded: {exc}"),
        )
        return EventOutcome(FAILED, record_id, None, failed.error_message)

    logger.info("Order %s -> %s %s", data.order_name, doc_type.value, issued.number)
    return EventOutcome(COMPLETED, record_id, document.id)


def _order_was_cancelled(db: Session, shop_id: int, order_id: int) -> bool:
    return (
        db.execute(
            _event_key(select(EventRecord.id), shop_id, EventTopic.orders_cancelled, order_id)
            .where(EventRecord.status == EventStatus.completed)
        ).first()
        is not None
    )


def _order_in_flight(db: Session, shop_id: int, order_id: int) -> bool:
    return (
        db.execute(
            _event_key(select(EventRecord.id), shop_id, EventTopic.orders_create, order_id)
            .where(EventRecord.status.in_((EventStatus.pending, EventStatus.processing)))
        ).first()
        is not None
    )


def handle_order_created(
    db: Session, shop: Shop, payload: dict[str, Any], fiscal_client_factory: FiscalClientFactory
) -> EventOutcome:
    record, won = claim_event(db, shop.id, EventTopic.orders_create, int(payload["id"]), payload)
    if not won:
        return absorbed_outcome(record)
    return process_event(db, shop, record, fiscal_client_factory)


# ---------- orders/cancelled ----------
def run_order_cancelled(db: Session, shop: Shop, record: EventRecord, fiscal: FiscalClient) -> EventOutcome:
    """Compensate an issued document with a credit note; the original is never deleted."""
    record_id = record.id
    shop_domain = shop.shop_domain
    try:
        order = CommerceOrder.model_validate(record.payload)
        original = find_sales_document(db, shop.id, order.id)
        if original is None and _order_in_flight(db, shop.id, order.id):
            # compensated by the retry job once the document lands
            raise OrderInFlightError(f"order {order.id} is still being issued")
        if original is None or original.status not in ISSUED_DOCUMENT_STATUSES:
            complete_event(db, record, {"skipped": True, "reason": "no document to cancel"})
            return EventOutcome(COMPLETED, record_id, None, "nothing to cancel")

        issuer = _issuer(shop, fiscal)
        data = transform_order(order)
        items = ensure_mapped(map_line_items(db, shop.id, order.line_items))
        # validate locally before touching the fiscal service
        issuer.type_id_for(DocumentType.credit_note)
        reference = issuer.fetch_reference(original.fiscal_document_id)
        issued = issuer.issue_credit_note(reference, data, items)
    except Exception as exc:
        logger.exception("Cancellation event %s failed for shop %s", record_id, shop_domain)
        failed = fail_event(db, shop, record_id, exc)
        return EventOutcome(FAILED, record_id, None, failed.error_message)

    try:
        credit_note = _persist_document(
            db,
            shop,
            order,
            data,
            DocumentType.credit_note,
            issued,
            reference_document_id=original.id,
        )
        cancelled = db.execute(
            update(FiscalDocument)
            .where(FiscalDocument.id == original.id)
            .where(FiscalDocument.status != DocumentStatus.cancelled)
            .values(
                status=DocumentStatus.cancelled,
                error_message=f"Cancelled via credit note {issued.number}",
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        if cancelled != 1:
            raise RuntimeError(f"document {original.id} was cancelled concurrently")

        count_document(db, shop.id, DocumentType.credit_note, new_order=False)
        complete_event(
            db,
            record,
            {"document_id": original.id, "credit_note_id": credit_note.id, "number": issued.number},
            document_id=credit_note.id,
        )
    except Exception as exc:
        logger.exception("Credit note %s issued but not recorded (event %s)", issued.number, record_id)
        failed = fail_event(
            db,
            shop,
            record_id,
            _NotRecorded(f"credit note issued externally as {issued.number} but not recorded: {exc}"),
        )
        return EventOutcome(FAILED, record_id, None, failed.error_message)

    db.refresh(original)
    logger.info("Order %s cancelled with credit note %s", data.order_name, issued.number)
    return EventOutcome(COMPLETED, record_id, credit_note.id)


def handle_order_cancelled(
    db: Session, shop: Shop, payload: dict[str, Any], fiscal_client_factory: FiscalClientFactory
) -> EventOutcome:
    record, won = claim_event(db, shop.id, EventTopic.orders_cancelled, int(payload["id"]), payload)
    if not won:
        return absorbed_outcome(record)
    return process_event(db, shop, record, fiscal_client_factory)


EVENT_RUNNERS: dict[EventTopic, Callable[[Session, Shop, EventRecord, FiscalClient], EventOutcome]] = {
    EventTopic.orders_create: run_order_created,
    EventTopic.orders_cancelled: run_order_cancelled,
}


def process_event(
    db: Session, shop: Shop, record: EventRecord, fiscal_client_factory: FiscalClientFactory
) -> EventOutcome:
    """Run a claimed record through its topic handler with a client built for the shop."""
    record_id = record.id
    try:
        fiscal = fiscal_client_factory(shop)
    except Exception as exc:
        logger.exception("No fiscal client for shop %s (event %s)", shop.shop_domain, record_id)
        failed = fail_event(db, shop, record_id, exc)
        return EventOutcome(FAILED, record_id, None, failed.error_message)

    with fiscal:
        return EVENT_RUNNERS[record.topic](db, shop, record, fiscal)
