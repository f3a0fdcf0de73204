from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Generator

from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_bridge.app import config
from fiscal_bridge.app.db.models.models_v1 import Shop
from fiscal_bridge.app.db.session import SessionLocal
from fiscal_bridge.services.commerce_client import (
    SHOP_DOMAIN_HEADER,
    SIGNATURE_HEADER,
    CommerceClient,
    commerce_client_for,
    verify_webhook_signature,
)
from fiscal_bridge.services.fiscal_client import FiscalClient, fiscal_client_for

logger = logging.getLogger(__name__)


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_shop(shop_domain: str, db: Session = Depends(get_db)) -> Shop:
    shop = db.execute(select(Shop).where(Shop.shop_domain == shop_domain)).scalar_one_or_none()
    if not shop:
        raise HTTPException(status_code=404, detail="Shop not found")
    return shop


# Client factories; overridden in tests
def get_fiscal_client_factory() -> Callable[[Shop], FiscalClient]:
    return fiscal_client_for


def get_commerce_client_factory() -> Callable[[Shop], CommerceClient]:
    return commerce_client_for


def get_webhook_secret() -> str:
    return config.COMMERCE_API_SECRET


@dataclass(frozen=True)
class WebhookDelivery:
    shop_domain: str | None
    payload: dict[str, Any] | None


async def verified_webhook(request: Request, secret: str = Depends(get_webhook_secret)) -> WebhookDelivery:
    """401 before any processing unless the raw body carries a valid signature."""
    raw = await request.body()
    if not verify_webhook_signature(raw, request.headers.get(SIGNATURE_HEADER), secret):
        logger.warning("Rejected webhook %s: invalid signature", request.url.path)
        raise HTTPException(status_code=401, detail="Invalid webhook signature")

    try:
        payload = json.loads(raw)
    except ValueError:
        payload = None
    if not isinstance(payload, dict):
        logger.warning("Webhook %s with a non-object body", request.url.path)
        payload = None

    return WebhookDelivery(shop_domain=request.headers.get(SHOP_DOMAIN_HEADER), payload=payload)
