from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_bridge.app.api.deps import get_commerce_client_factory, get_db, get_fiscal_client_factory, get_shop
from fiscal_bridge.app.db.models.core_types import SyncDirection, SyncStatus
from fiscal_bridge.app.db.models.models_v1 import Shop, StockSyncLogEntry
from fiscal_bridge.app.schemas.records import StockSyncLogRead
from fiscal_bridge.services.commerce_client import CommerceClient
from fiscal_bridge.services.errors import InvalidInputError
from fiscal_bridge.services.fiscal_client import FiscalClient
from fiscal_bridge.services.stock_sync import get_mapping, sync_mapping

router = APIRouter(prefix="/stock-sync")


class StockSyncRequest(BaseModel):
    mapping_id: int
    direction: SyncDirection = SyncDirection.to_external


@router.get("/logs", response_model=list[StockSyncLogRead])
def list_sync_logs(
    status: SyncStatus | None = None,
    mapping_id: int | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    shop: Shop = Depends(get_shop),
    db: Session = Depends(get_db),
):
    stmt = select(StockSyncLogEntry).where(StockSyncLogEntry.shop_id == shop.id)

    if status is not None:
        stmt = stmt.where(StockSyncLogEntry.status == status)

    if mapping_id is not None:
        stmt = stmt.where(StockSyncLogEntry.mapping_id == mapping_id)

    stmt = stmt.order_by(StockSyncLogEntry.id.desc()).offset(offset).limit(limit)
    return db.execute(stmt).scalars().all()


@router.post("/sync", response_model=StockSyncLogRead)
def trigger_sync(
    payload: StockSyncRequest,
    shop: Shop = Depends(get_shop),
    db: Session = Depends(get_db),
    fiscal_factory: Callable[[Shop], FiscalClient] = Depends(get_fiscal_client_factory),
    commerce_factory: Callable[[Shop], CommerceClient] = Depends(get_commerce_client_factory),
):
    """
    Manual reconciliation of one mapping.
    - 400 when the direction is outside the shop policy
    - sync failures are returned as an error log entry, not an HTTP error
    """
    mapping = get_mapping(db, shop.id, payload.mapping_id)
    if not mapping:
        raise HTTPException(status_code=404, detail="Mapping not found")

    try:
        with fiscal_factory(shop) as fiscal, commerce_factory(shop) as commerce:
            return sync_mapping(db, shop, mapping, payload.direction, fiscal, commerce)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
