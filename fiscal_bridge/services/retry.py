"""
Retry loop over failed, retryable events.

Webhook redelivery never reprocesses a failed event; this job does, with
exponential backoff, until EVENT_RETRY_MAX_ATTEMPTS is reached.
"""
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from fiscal_bridge.app import config
from fiscal_bridge.app.db.base import utcnow
from fiscal_bridge.app.db.models.core_types import EventStatus
from fiscal_bridge.app.db.models.models_v1 import EventRecord, Shop
from fiscal_bridge.services.events import FAILED, EventOutcome, FiscalClientFactory, process_event

logger = logging.getLogger(__name__)


def due_events(db: Session, now: datetime, limit: int) -> list[EventRecord]:
    return list(
        db.execute(
            select(EventRecord)
            .where(EventRecord.status == EventStatus.failed)
            .where(EventRecord.retryable.is_(True))
            .where(EventRecord.retry_count < config.EVENT_RETRY_MAX_ATTEMPTS)
            .where(or_(EventRecord.next_retry_at.is_(None), EventRecord.next_retry_at <= now))
            .order_by(EventRecord.next_retry_at, EventRecord.id)
            .limit(limit)
        )
        .scalars()
        .all()
    )


def reclaim_event(db: Session, record_id: int) -> bool:
    """Conditional failed -> processing; False when another worker got there first."""
    won = (
        db.execute(
            update(EventRecord)
            .where(EventRecord.id == record_id)
            .where(EventRecord.status == EventStatus.failed)
            .where(EventRecord.retryable.is_(True))
            .values(
                status=EventStatus.processing,
                retry_count=EventRecord.retry_count + 1,
                next_retry_at=None,
            )
            .execution_options(synchronize_session=False)
        ).rowcount
        == 1
    )
    db.commit()
    return won


def retry_failed_events(
    db: Session,
    fiscal_client_factory: FiscalClientFactory,
    *,
    now: datetime | None = None,
    limit: int | None = None,
) -> list[EventOutcome]:
    now = now or utcnow()
    limit = limit or config.EVENT_RETRY_BATCH_SIZE

    outcomes: list[EventOutcome] = []
    for record_id in [r.id for r in due_events(db, now, limit)]:
        if not reclaim_event(db, record_id):
            continue

        record = db.get(EventRecord, record_id, populate_existing=True)
        shop = db.get(Shop, record.shop_id)
        logger.info("Retrying event %s (%s, attempt %s)", record_id, record.topic.value, record.retry_count)

        outcomes.append(process_event(db, shop, record, fiscal_client_factory))

    if outcomes:
        logger.info("Retried %s events, %s failed again", len(outcomes), sum(o.status == FAILED for o in outcomes))
    return outcomes
