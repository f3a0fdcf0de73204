from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_bridge.app.api.deps import get_db, get_fiscal_client_factory, get_shop
from fiscal_bridge.app.db.models.core_types import EventStatus
from fiscal_bridge.app.db.models.models_v1 import EventRecord, Shop
from fiscal_bridge.app.schemas.records import EventRecordRead
from fiscal_bridge.services.fiscal_client import FiscalClient
from fiscal_bridge.services.retry import retry_failed_events

# per shop, mounted under /shops/{shop_domain}
router = APIRouter(prefix="/events")

# operator job trigger
retry_router = APIRouter(prefix="/events")


@router.get("", response_model=list[EventRecordRead])
def list_events(
    status: EventStatus | None = None,
    order_id: int | None = None,
    limit: int = Query(50, ge=1, le=500),
    shop: Shop = Depends(get_shop),
    db: Session = Depends(get_db),
):
    stmt = select(EventRecord).where(EventRecord.shop_id == shop.id)

    if status is not None:
        stmt = stmt.where(EventRecord.status == status)

    if order_id is not None:
        stmt = stmt.where(EventRecord.order_id == order_id)

    return db.execute(stmt.order_by(EventRecord.id.desc()).limit(limit)).scalars().all()


@retry_router.post("/retry")
def retry_events(
    limit: int | None = Query(None, ge=1, le=500),
    db: Session = Depends(get_db),
    fiscal_factory: Callable[[Shop], FiscalClient] = Depends(get_fiscal_client_factory),
):
    outcomes = retry_failed_events(db, fiscal_factory, limit=limit)
    return {
        "retried": len(outcomes),
        "results": [
            {
                "event_id": o.event_id,
                "status": o.status,
                "document_id": o.document_id,
                "message": o.message,
            }
            for o in outcomes
        ],
    }
