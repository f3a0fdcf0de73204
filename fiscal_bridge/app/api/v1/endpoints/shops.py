from __future__ import annotations

import logging
from typing import Callable

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from fiscal_bridge.app.api.deps import get_commerce_client_factory, get_db, get_fiscal_client_factory, get_shop
from fiscal_bridge.app.db.models.core_types import DocumentType, SyncDirection
from fiscal_bridge.app.db.models.models_v1 import Shop
from fiscal_bridge.app.schemas.shop import DocumentTypesConfig, ShopSettings
from fiscal_bridge.services.commerce_client import CommerceClient
from fiscal_bridge.services.document_types import discover_document_type_ids, validate_document_type_ids
from fiscal_bridge.services.errors import ExternalApiError, InvalidInputError
from fiscal_bridge.services.fiscal_client import FiscalClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shops/{shop_domain}")


class SettingsUpdate(BaseModel):
    default_document_type: DocumentType | None = None
    sync_stock_enabled: bool | None = None
    sync_stock_direction: SyncDirection | None = None
    required_mapped_ratio: float | None = None


def _shop_view(shop: Shop) -> dict:
    return {
        "id": shop.id,
        "shop_domain": shop.shop_domain,
        "currency": shop.currency,
        "is_fiscal_configured": shop.is_fiscal_configured,
        "fiscal_branch_id": shop.fiscal_branch_id,
        "fiscal_warehouse_id": shop.fiscal_warehouse_id,
        "commerce_location_id": shop.commerce_location_id,
        "settings": ShopSettings.from_json(shop.settings).model_dump(mode="json"),
        "document_type_ids": shop.document_type_ids or {},
        "last_sync_at": shop.last_sync_at,
        "last_document_at": shop.last_document_at,
    }


@router.get("")
def read_shop(shop: Shop = Depends(get_shop)):
    return _shop_view(shop)


@router.patch("/settings")
def update_settings(payload: SettingsUpdate, shop: Shop = Depends(get_shop), db: Session = Depends(get_db)):
    merged = {**(shop.settings or {}), **payload.model_dump(exclude_none=True, mode="json")}
    try:
        settings = ShopSettings.from_json(merged)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if settings.default_document_type == DocumentType.credit_note:
        raise HTTPException(status_code=400, detail="credit_note cannot be the default document type")

    shop.settings = settings.model_dump(mode="json")
    db.commit()
    db.refresh(shop)
    return _shop_view(shop)


@router.put("/document-types")
def configure_document_types(
    payload: DocumentTypesConfig,
    shop: Shop = Depends(get_shop),
    db: Session = Depends(get_db),
    fiscal_factory: Callable[[Shop], FiscalClient] = Depends(get_fiscal_client_factory),
):
    """
    Store the explicit document class -> external type id map.
    - ids are checked against the external catalog
    - discover_missing fills gaps by name / code match, once, here
    """
    try:
        with fiscal_factory(shop) as fiscal:
            catalog = fiscal.list_document_types()
        ids = dict(payload.document_type_ids)
        if payload.discover_missing:
            for doc_type, type_id in discover_document_type_ids(catalog).items():
                ids.setdefault(doc_type, type_id)
        validate_document_type_ids(ids, catalog)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExternalApiError as e:
        raise HTTPException(status_code=502, detail=str(e))

    shop.document_type_ids = {doc_type.value: type_id for doc_type, type_id in ids.items()}
    db.commit()
    db.refresh(shop)
    logger.info("Document types configured for %s: %s", shop.shop_domain, shop.document_type_ids)
    return _shop_view(shop)


@router.get("/fiscal/branches")
def list_fiscal_branches(
    shop: Shop = Depends(get_shop),
    fiscal_factory: Callable[[Shop], FiscalClient] = Depends(get_fiscal_client_factory),
):
    try:
        with fiscal_factory(shop) as fiscal:
            return fiscal.list_branches()
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExternalApiError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/fiscal/warehouses")
def list_fiscal_warehouses(
    branch_id: int | None = None,
    shop: Shop = Depends(get_shop),
    fiscal_factory: Callable[[Shop], FiscalClient] = Depends(get_fiscal_client_factory),
):
    try:
        with fiscal_factory(shop) as fiscal:
            return fiscal.list_warehouses(branch_id)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExternalApiError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.get("/commerce/locations")
def list_commerce_locations(
    shop: Shop = Depends(get_shop),
    commerce_factory: Callable[[Shop], CommerceClient] = Depends(get_commerce_client_factory),
):
    """Candidates for shop.commerce_location_id."""
    try:
        with commerce_factory(shop) as commerce:
            return commerce.list_locations()
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExternalApiError as e:
        raise HTTPException(status_code=502, detail=str(e))
