from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_bridge.app.api.deps import get_db, get_shop
from fiscal_bridge.app.db.models.models_v1 import Notification, Shop
from fiscal_bridge.app.schemas.records import NotificationRead
from fiscal_bridge.services.usage import mark_notification_read

router = APIRouter(prefix="/notifications")


@router.get("", response_model=list[NotificationRead])
def list_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=500),
    shop: Shop = Depends(get_shop),
    db: Session = Depends(get_db),
):
    stmt = select(Notification).where(Notification.shop_id == shop.id)
    if unread_only:
        stmt = stmt.where(Notification.is_read.is_(False))
    return db.execute(stmt.order_by(Notification.id.desc()).limit(limit)).scalars().all()


@router.post("/{notification_id}/read", response_model=NotificationRead)
def read_notification(notification_id: int, shop: Shop = Depends(get_shop), db: Session = Depends(get_db)):
    notification = mark_notification_read(db, shop.id, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    db.commit()
    db.refresh(notification)
    return notification
