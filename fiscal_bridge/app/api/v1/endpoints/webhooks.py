"""
Commerce webhooks.

Only a bad signature is answered with an error (401, in verified_webhook).
Everything else is acknowledged with 200: processing failures are recorded
on the event ledger and retried by the retry job, never by redelivery.
"""
from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter, Depends
from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_bridge.app.api.deps import (
    WebhookDelivery,
    get_commerce_client_factory,
    get_db,
    get_fiscal_client_factory,
    verified_webhook,
)
from fiscal_bridge.app.db.models.models_v1 import Shop
from fiscal_bridge.app.schemas.commerce import InventoryLevelUpdate
from fiscal_bridge.services.commerce_client import CommerceClient
from fiscal_bridge.services.events import handle_order_cancelled, handle_order_created
from fiscal_bridge.services.fiscal_client import FiscalClient
from fiscal_bridge.services.stock_sync import handle_inventory_level_update

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks")


def _ack(status: str, **extra):
    return {"received": True, "status": status, **extra}


def _configured_shop(db: Session, delivery: WebhookDelivery) -> Shop | None:
    if not delivery.shop_domain:
        return None
    shop = db.execute(select(Shop).where(Shop.shop_domain == delivery.shop_domain)).scalar_one_or_none()
    if shop is None or not shop.is_fiscal_configured:
        return None
    return shop


def _order_payload(delivery: WebhookDelivery):
    payload = delivery.payload
    if not payload or not str(payload.get("id", "")).isdigit():
        return None
    return payload


@router.post("/orders/create")
def order_created(
    delivery: WebhookDelivery = Depends(verified_webhook),
    db: Session = Depends(get_db),
    fiscal_factory: Callable[[Shop], FiscalClient] = Depends(get_fiscal_client_factory),
):
    shop = _configured_shop(db, delivery)
    payload = _order_payload(delivery)
    if shop is None or payload is None:
        logger.info("orders/create from %s ignored", delivery.shop_domain)
        return _ack("ignored")

    try:
        outcome = handle_order_created(db, shop, payload, fiscal_factory)
    except Exception:
        logger.exception("orders/create %s not processed for %s", payload.get("id"), shop.shop_domain)
        return _ack("error")
    return _ack(outcome.status, event_id=outcome.event_id, document_id=outcome.document_id)


@router.post("/orders/cancelled")
def order_cancelled(
    delivery: WebhookDelivery = Depends(verified_webhook),
    db: Session = Depends(get_db),
    fiscal_factory: Callable[[Shop], FiscalClient] = Depends(get_fiscal_client_factory),
):
    shop = _configured_shop(db, delivery)
    payload = _order_payload(delivery)
    if shop is None or payload is None:
        logger.info("orders/cancelled from %s ignored", delivery.shop_domain)
        return _ack("ignored")

    try:
        outcome = handle_order_cancelled(db, shop, payload, fiscal_factory)
    except Exception:
        logger.exception("orders/cancelled %s not processed for %s", payload.get("id"), shop.shop_domain)
        return _ack("error")
    return _ack(outcome.status, event_id=outcome.event_id, document_id=outcome.document_id)


@router.post("/inventory_levels/update")
def inventory_level_updated(
    delivery: WebhookDelivery = Depends(verified_webhook),
    db: Session = Depends(get_db),
    fiscal_factory: Callable[[Shop], FiscalClient] = Depends(get_fiscal_client_factory),
    commerce_factory: Callable[[Shop], CommerceClient] = Depends(get_commerce_client_factory),
):
    shop = _configured_shop(db, delivery)
    if shop is None or delivery.payload is None:
        return _ack("ignored")

    try:
        level = InventoryLevelUpdate.model_validate(delivery.payload)
    except ValidationError as exc:
        logger.warning("Malformed inventory level from %s: %s", shop.shop_domain, exc)
        return _ack("ignored")

    try:
        with fiscal_factory(shop) as fiscal, commerce_factory(shop) as commerce:
            entry = handle_inventory_level_update(db, shop, level, fiscal, commerce)
    except Exception:
        logger.exception("inventory_levels/update not processed for %s", shop.shop_domain)
        return _ack("error")

    if entry is None:
        return _ack("ignored")
    return _ack(entry.status.value, sync_log_id=entry.id)
