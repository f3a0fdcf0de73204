"""
Stock reconciliation between the commerce platform and the fiscal service.

Every call to reconcile_stock() appends exactly one StockSyncLogEntry,
success or error. Errors are recorded (log entry, mapping.last_error,
errors counter) and never raised to the caller.

Bidirectional rule, both sides compared with mapping.last_synced_quantity:
  - never synced          -> commerce wins, pushed to the fiscal service
  - only commerce changed -> push to the fiscal service
  - only fiscal changed   -> push to the commerce platform
  - neither changed       -> nothing written, delta 0
  - both changed          -> StockConflictError, nothing written
"""
from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_bridge.app.db.base import utcnow
from fiscal_bridge.app.db.models.core_types import SyncDirection, SyncSource, SyncStatus
from fiscal_bridge.app.db.models.models_v1 import CatalogMapping, Shop, StockSyncLogEntry
from fiscal_bridge.app.schemas.commerce import InventoryLevelUpdate
from fiscal_bridge.app.schemas.shop import ShopSettings
from fiscal_bridge.services.commerce_client import CommerceClient
from fiscal_bridge.services.errors import (
    ConfigurationError,
    DataCompletenessError,
    InvalidInputError,
    StockConflictError,
)
from fiscal_bridge.services.fiscal_client import FiscalClient
from fiscal_bridge.services.usage import increment_usage

logger = logging.getLogger(__name__)


def allowed_direction(settings: ShopSettings, requested: SyncDirection) -> SyncDirection | None:
    """
    Narrow a requested direction to what the shop policy permits.

    None when the policy forbids it (sync disabled, or opposite one-way direction).
    """
    if not settings.sync_stock_enabled:
        return None
    policy = settings.sync_stock_direction
    if policy == SyncDirection.bidirectional or requested == policy:
        return requested
    if requested == SyncDirection.bidirectional:
        return policy
    return None


# ---------- Side readers / writers ----------
def _commerce_quantity(shop: Shop, mapping: CatalogMapping, commerce: CommerceClient) -> int:
    if not mapping.commerce_inventory_item_id:
        raise DataCompletenessError(f"Mapping {mapping.id} has no commerce inventory item")
    if not shop.commerce_location_id:
        raise ConfigurationError(f"Shop {shop.shop_domain} has no commerce location")
    quantity = commerce.get_inventory_level(mapping.commerce_inventory_item_id, shop.commerce_location_id)
    if quantity is None:
        raise DataCompletenessError(f"No commerce inventory level for item {mapping.commerce_inventory_item_id}")
    return quantity


def _fiscal_quantity(shop: Shop, mapping: CatalogMapping, fiscal: FiscalClient) -> int:
    quantity = fiscal.get_stock(mapping.fiscal_stock_variant_id, shop.fiscal_warehouse_id)
    if quantity is None:
        raise DataCompletenessError(f"No fiscal stock for variant {mapping.fiscal_stock_variant_id}")
    return quantity


def _push_fiscal(shop: Shop, mapping: CatalogMapping, fiscal: FiscalClient, quantity: int) -> None:
    if not shop.fiscal_warehouse_id:
        raise ConfigurationError(f"Shop {shop.shop_domain} has no fiscal warehouse")
    fiscal.set_stock(
        mapping.fiscal_stock_variant_id,
        shop.fiscal_warehouse_id,
        quantity,
        note=f"Stock sync from {shop.shop_domain}",
    )


def _push_commerce(shop: Shop, mapping: CatalogMapping, commerce: CommerceClient, quantity: int) -> None:
    if not mapping.commerce_inventory_item_id:
        raise DataCompletenessError(f"Mapping {mapping.id} has no commerce inventory item")
    if not shop.commerce_location_id:
        raise ConfigurationError(f"Shop {shop.shop_domain} has no commerce location")
    commerce.set_inventory_level(mapping.commerce_inventory_item_id, shop.commerce_location_id, quantity)


def _bidirectional(
    shop: Shop,
    mapping: CatalogMapping,
    fiscal: FiscalClient,
    commerce: CommerceClient,
    commerce_qty: int,
) -> tuple[SyncDirection, int]:
    previous = mapping.last_synced_quantity
    if previous is None:
        _push_fiscal(shop, mapping, fiscal, commerce_qty)
        return SyncDirection.to_external, commerce_qty

    fiscal_qty = _fiscal_quantity(shop, mapping, fiscal)
    commerce_changed = commerce_qty != previous
    fiscal_changed = fiscal_qty != previous

    if commerce_changed and fiscal_changed:
        if commerce_qty == fiscal_qty:
            # both sides moved to the same value
            return SyncDirection.bidirectional, commerce_qty
        raise StockConflictError(
            f"Both sides changed since last sync ({previous}): commerce={commerce_qty}, fiscal={fiscal_qty}"
        )
    if commerce_changed:
        _push_fiscal(shop, mapping, fiscal, commerce_qty)
        return SyncDirection.to_external, commerce_qty
    if fiscal_changed:
        _push_commerce(shop, mapping, commerce, fiscal_qty)
        return SyncDirection.to_commerce, fiscal_qty
    return SyncDirection.bidirectional, previous


# ---------- Engine ----------
def reconcile_stock(
    db: Session,
    shop: Shop,
    mapping: CatalogMapping,
    direction: SyncDirection,
    source: SyncSource,
    fiscal: FiscalClient,
    commerce: CommerceClient,
    *,
    source_id: str | None = None,
    commerce_quantity: int | None = None,
) -> StockSyncLogEntry:
    """
    Reconcile one mapping in the given direction and append its log entry.

    `commerce_quantity` is the value carried by an inventory signal; when
    absent the commerce platform is read.
    """
    mapping_id = mapping.id
    # row lock; serializes concurrent syncs of the same mapping
    mapping = db.execute(
        select(CatalogMapping)
        .where(CatalogMapping.id == mapping_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one()
    previous = mapping.last_synced_quantity

    try:
        if direction == SyncDirection.to_commerce:
            new = _fiscal_quantity(shop, mapping, fiscal)
            _push_commerce(shop, mapping, commerce, new)
            applied = SyncDirection.to_commerce
        else:
            commerce_qty = commerce_quantity
            if commerce_qty is None:
                commerce_qty = _commerce_quantity(shop, mapping, commerce)
            if direction == SyncDirection.to_external:
                _push_fiscal(shop, mapping, fiscal, commerce_qty)
                applied, new = SyncDirection.to_external, commerce_qty
            else:
                applied, new = _bidirectional(shop, mapping, fiscal, commerce, commerce_qty)
    except Exception as exc:
        logger.warning("Stock sync failed for mapping %s (%s): %s", mapping_id, direction.value, exc)
        return _record_error(db, shop, mapping_id, direction, source, source_id, previous, exc)

    now = utcnow()
    entry = StockSyncLogEntry(
        shop_id=shop.id,
        mapping_id=mapping_id,
        direction=applied,
        previous_quantity=previous,
        new_quantity=new,
        delta=new - (previous or 0),
        source=source,
        source_id=source_id,
        status=SyncStatus.success,
    )
    db.add(entry)
    mapping.last_synced_quantity = new
    mapping.last_stock_sync_at = now
    mapping.last_error = None
    shop.last_sync_at = now
    increment_usage(db, shop.id, stock_syncs_count=1)
    db.commit()
    db.refresh(entry)

    logger.info(
        "Stock sync mapping %s %s: %s -> %s (delta %s)",
        mapping_id,
        applied.value,
        previous,
        new,
        entry.delta,
    )
    return entry


def _record_error(
    db: Session,
    shop: Shop,
    mapping_id: int,
    direction: SyncDirection,
    source: SyncSource,
    source_id: str | None,
    previous: int | None,
    exc: BaseException,
) -> StockSyncLogEntry:
    db.rollback()
    entry = StockSyncLogEntry(
        shop_id=shop.id,
        mapping_id=mapping_id,
        direction=direction,
        previous_quantity=previous,
        source=source,
        source_id=source_id,
        status=SyncStatus.error,
        error_message=str(exc),
    )
    db.add(entry)
    mapping = db.get(CatalogMapping, mapping_id)
    mapping.last_error = str(exc)
    increment_usage(db, shop.id, errors_count=1)
    db.commit()
    db.refresh(entry)
    return entry


# ---------- Entry points ----------
def get_mapping(db: Session, shop_id: int, mapping_id: int) -> CatalogMapping | None:
    mapping = db.get(CatalogMapping, mapping_id)
    if mapping is None or mapping.shop_id != shop_id:
        return None
    return mapping


def sync_mapping(
    db: Session,
    shop: Shop,
    mapping: CatalogMapping,
    requested: SyncDirection,
    fiscal: FiscalClient,
    commerce: CommerceClient,
) -> StockSyncLogEntry:
    """Manual trigger: directions outside the shop policy are rejected."""
    settings = ShopSettings.from_json(shop.settings)
    direction = allowed_direction(settings, requested)
    if direction is None:
        raise InvalidInputError(
            f"Stock sync {requested.value} is not allowed by shop policy "
            f"(enabled={settings.sync_stock_enabled}, direction={settings.sync_stock_direction.value})"
        )
    if not mapping.is_active or not mapping.sync_stock:
        raise InvalidInputError(f"Stock sync is disabled for mapping {mapping.id}")
    return reconcile_stock(db, shop, mapping, direction, SyncSource.manual, fiscal, commerce)


def handle_inventory_level_update(
    db: Session,
    shop: Shop,
    level: InventoryLevelUpdate,
    fiscal: FiscalClient,
    commerce: CommerceClient,
) -> StockSyncLogEntry | None:
    """Commerce-originated signal; None when policy or mapping says to ignore it."""
    settings = ShopSettings.from_json(shop.settings)
    if not settings.sync_stock_enabled or settings.sync_stock_direction == SyncDirection.to_commerce:
        logger.debug("Inventory signal ignored by policy for %s", shop.shop_domain)
        return None
    if shop.commerce_location_id and level.location_id != shop.commerce_location_id:
        logger.debug("Inventory signal for untracked location %s", level.location_id)
        return None

    mapping = db.execute(
        select(CatalogMapping)
        .where(CatalogMapping.shop_id == shop.id)
        .where(CatalogMapping.commerce_inventory_item_id == level.inventory_item_id)
        .where(CatalogMapping.is_active.is_(True))
        .where(CatalogMapping.sync_stock.is_(True))
        .limit(1)
    ).scalar_one_or_none()
    if mapping is None:
        logger.debug("No stock mapping for inventory item %s", level.inventory_item_id)
        return None

    return reconcile_stock(
        db,
        shop,
        mapping,
        settings.sync_stock_direction,
        SyncSource.event,
        fiscal,
        commerce,
        source_id=str(level.inventory_item_id),
        commerce_quantity=level.available,
    )
