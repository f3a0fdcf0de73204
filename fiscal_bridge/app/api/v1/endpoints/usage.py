from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from fiscal_bridge.app.api.deps import get_db, get_shop
from fiscal_bridge.app.db.base import utcnow
from fiscal_bridge.app.db.models.models_v1 import Shop
from fiscal_bridge.app.schemas.records import UsageRead
from fiscal_bridge.services.usage import get_usage

router = APIRouter(prefix="/usage")


@router.get("", response_model=UsageRead)
def read_usage(
    year: int | None = Query(None, ge=2000),
    month: int | None = Query(None, ge=1, le=12),
    shop: Shop = Depends(get_shop),
    db: Session = Depends(get_db),
):
    """Counters of one period (current month by default); zeros when nothing was counted yet."""
    now = utcnow()
    year = year or now.year
    month = month or now.month

    counter = get_usage(db, shop.id, year, month)
    if counter is None:
        return UsageRead(year=year, month=month)
    return counter
