import pytest
from sqlalchemy import select

from fiscal_bridge.app.db.base import utcnow
from fiscal_bridge.app.db.models.core_types import SyncDirection, SyncSource, SyncStatus
from fiscal_bridge.app.db.models.models_v1 import StockSyncLogEntry
from fiscal_bridge.app.schemas.commerce import InventoryLevelUpdate
from fiscal_bridge.app.schemas.shop import ShopSettings
from fiscal_bridge.services.errors import InvalidInputError
from fiscal_bridge.services.stock_sync import (
    allowed_direction,
    handle_inventory_level_update,
    reconcile_stock,
    sync_mapping,
)
from fiscal_bridge.services.usage import get_usage

ITEM = 3001
LOCATION = 555
VARIANT = 900
WAREHOUSE = 2


@pytest.fixture
def stock_shop(db_session, shop):
    shop.settings = {"sync_stock_enabled": True, "sync_stock_direction": "bidirectional"}
    db_session.commit()
    return shop


@pytest.fixture
def mapping(make_mapping):
    return make_mapping(10, 100, fiscal_variant_id=VARIANT, commerce_inventory_item_id=ITEM, last_synced_quantity=10)


def _logs(db):
    return db.execute(select(StockSyncLogEntry).order_by(StockSyncLogEntry.id)).scalars().all()


def _usage(db, shop):
    now = utcnow()
    return get_usage(db, shop.id, now.year, now.month)


def test_push_to_external_records_negative_delta(db_session, stock_shop, mapping, fiscal, commerce):
    """
    GIVEN
    - last synced quantity 10
    - commerce now reports 7

    THEN
    - fiscal stock set to 7
    - one success entry, delta -3
    """
    # ---------- ARRANGE ----------
    commerce.levels[(ITEM, LOCATION)] = 7

    # ---------- ACT ----------
    entry = reconcile_stock(
        db_session, stock_shop, mapping, SyncDirection.to_external, SyncSource.manual, fiscal, commerce
    )

    # ---------- ASSERT ----------
    assert entry.status == SyncStatus.success
    assert entry.previous_quantity == 10
    assert entry.new_quantity == 7
    assert entry.delta == -3
    assert fiscal.stock_writes == [(VARIANT, WAREHOUSE, 7)]

    assert mapping.last_synced_quantity == 7
    assert mapping.last_error is None
    assert _logs(db_session) == [entry]
    assert _usage(db_session, stock_shop).stock_syncs_count == 1


def test_push_to_commerce(db_session, stock_shop, mapping, fiscal, commerce):
    fiscal.stocks[(VARIANT, WAREHOUSE)] = 15

    entry = reconcile_stock(
        db_session, stock_shop, mapping, SyncDirection.to_commerce, SyncSource.manual, fiscal, commerce
    )

    assert entry.delta == 5
    assert commerce.level_writes == [(ITEM, LOCATION, 15)]


def test_webhook_quantity_is_used_without_reading_commerce(db_session, stock_shop, mapping, fiscal, commerce):
    entry = reconcile_stock(
        db_session,
        stock_shop,
        mapping,
        SyncDirection.to_external,
        SyncSource.event,
        fiscal,
        commerce,
        source_id=str(ITEM),
        commerce_quantity=4,
    )

    assert entry.new_quantity == 4
    assert entry.source == SyncSource.event
    assert entry.source_id == str(ITEM)


def test_bidirectional_conflict_writes_nothing(db_session, stock_shop, mapping, fiscal, commerce):
    """
    GIVEN
    - last synced 10, commerce 7, fiscal 12

    THEN
    - error entry, no write on either side
    - last synced quantity untouched, error recorded on the mapping
    """
    commerce.levels[(ITEM, LOCATION)] = 7
    fiscal.stocks[(VARIANT, WAREHOUSE)] = 12

    entry = reconcile_stock(
        db_session, stock_shop, mapping, SyncDirection.bidirectional, SyncSource.manual, fiscal, commerce
    )

    assert entry.status == SyncStatus.error
    assert "Both sides changed" in entry.error_message
    assert fiscal.stock_writes == []
    assert commerce.level_writes == []
    assert mapping.last_synced_quantity == 10
    assert mapping.last_error == entry.error_message
    assert _usage(db_session, stock_shop).errors_count == 1


def test_bidirectional_follows_the_changed_side(db_session, stock_shop, mapping, fiscal, commerce):
    commerce.levels[(ITEM, LOCATION)] = 10
    fiscal.stocks[(VARIANT, WAREHOUSE)] = 4

    entry = reconcile_stock(
        db_session, stock_shop, mapping, SyncDirection.bidirectional, SyncSource.manual, fiscal, commerce
    )

    assert entry.direction == SyncDirection.to_commerce
    assert entry.delta == -6
    assert commerce.level_writes == [(ITEM, LOCATION, 4)]
    assert fiscal.stock_writes == []


def test_bidirectional_without_changes_is_a_noop(db_session, stock_shop, mapping, fiscal, commerce):
    commerce.levels[(ITEM, LOCATION)] = 10
    fiscal.stocks[(VARIANT, WAREHOUSE)] = 10

    entry = reconcile_stock(
        db_session, stock_shop, mapping, SyncDirection.bidirectional, SyncSource.manual, fiscal, commerce
    )

    assert entry.status == SyncStatus.success
    assert entry.delta == 0
    assert fiscal.stock_writes == []
    assert commerce.level_writes == []


def test_first_bidirectional_sync_takes_commerce_quantity(db_session, stock_shop, make_mapping, fiscal, commerce):
    never_synced = make_mapping(11, 110, fiscal_variant_id=VARIANT, commerce_inventory_item_id=ITEM)
    commerce.levels[(ITEM, LOCATION)] = 5
    fiscal.stocks[(VARIANT, WAREHOUSE)] = 99

    entry = reconcile_stock(
        db_session, stock_shop, never_synced, SyncDirection.bidirectional, SyncSource.manual, fiscal, commerce
    )

    assert entry.direction == SyncDirection.to_external
    assert entry.previous_quantity is None
    assert entry.delta == 5
    assert fiscal.stock_writes == [(VARIANT, WAREHOUSE, 5)]


def test_missing_level_is_logged_not_raised(db_session, stock_shop, mapping, fiscal, commerce):
    entry = reconcile_stock(
        db_session, stock_shop, mapping, SyncDirection.to_external, SyncSource.manual, fiscal, commerce
    )

    assert entry.status == SyncStatus.error
    assert "No commerce inventory level" in entry.error_message
    assert len(_logs(db_session)) == 1


@pytest.mark.parametrize(
    "settings, requested, expected",
    [
        ({}, SyncDirection.to_external, None),
        ({"sync_stock_enabled": True}, SyncDirection.to_commerce, SyncDirection.to_commerce),
        (
            {"sync_stock_enabled": True, "sync_stock_direction": "to_external"},
            SyncDirection.to_commerce,
            None,
        ),
        (
            {"sync_stock_enabled": True, "sync_stock_direction": "to_external"},
            SyncDirection.bidirectional,
            SyncDirection.to_external,
        ),
    ],
)
def test_allowed_direction(settings, requested, expected):
    assert allowed_direction(ShopSettings.from_json(settings), requested) == expected


def test_manual_sync_outside_policy_is_rejected(db_session, shop, mapping, fiscal, commerce):
    shop.settings = {"sync_stock_enabled": True, "sync_stock_direction": "to_external"}
    db_session.commit()

    with pytest.raises(InvalidInputError):
        sync_mapping(db_session, shop, mapping, SyncDirection.to_commerce, fiscal, commerce)
    assert _logs(db_session) == []


def test_inventory_signal_ignored_when_policy_is_to_commerce(db_session, shop, mapping, fiscal, commerce):
    shop.settings = {"sync_stock_enabled": True, "sync_stock_direction": "to_commerce"}
    db_session.commit()

    entry = handle_inventory_level_update(
        db_session,
        shop,
        InventoryLevelUpdate(inventory_item_id=ITEM, location_id=LOCATION, available=3),
        fiscal,
        commerce,
    )

    assert entry is None
    assert _logs(db_session) == []


def test_inventory_signal_reconciles_mapped_item(db_session, shop, mapping, fiscal, commerce):
    shop.settings = {"sync_stock_enabled": True, "sync_stock_direction": "to_external"}
    db_session.commit()

    entry = handle_inventory_level_update(
        db_session,
        shop,
        InventoryLevelUpdate(inventory_item_id=ITEM, location_id=LOCATION, available=3),
        fiscal,
        commerce,
    )
    unknown = handle_inventory_level_update(
        db_session,
        shop,
        InventoryLevelUpdate(inventory_item_id=4040, location_id=LOCATION, available=3),
        fiscal,
        commerce,
    )

    assert entry.delta == -7
    assert entry.source == SyncSource.event
    assert unknown is None
    assert fiscal.stock_writes == [(VARIANT, WAREHOUSE, 3)]
