from sqlalchemy import select

from fiscal_bridge.app.db.base import utcnow
from fiscal_bridge.app.db.models.core_types import EventStatus
from fiscal_bridge.app.db.models.models_v1 import EventRecord, FiscalDocument, Notification, StockSyncLogEntry
from fiscal_bridge.services.errors import ConfigurationError
from fiscal_bridge.services.usage import get_usage


def test_webhook_without_valid_signature_is_rejected(db_session, shop, make_mapping, post_webhook, order_payload, fiscal):
    make_mapping(10, 100)

    missing = post_webhook("orders/create", order_payload(), signature="")
    forged = post_webhook("orders/create", order_payload(), signature="bm90LWEtc2lnbmF0dXJl")

    assert missing.status_code == 401
    assert forged.status_code == 401
    assert db_session.execute(select(EventRecord)).scalars().all() == []
    assert fiscal.created == []


def test_order_webhook_issues_document(db_session, shop, make_mapping, post_webhook, order_payload):
    make_mapping(10, 100)

    r = post_webhook("orders/create", order_payload())
    again = post_webhook("orders/create", order_payload())

    assert r.status_code == 200
    body = r.json()
    assert body["received"] is True
    assert body["status"] == "completed"
    assert again.json()["status"] == "duplicate"
    assert again.json()["document_id"] == body["document_id"]
    assert len(db_session.execute(select(FiscalDocument)).scalars().all()) == 1


def test_processing_failure_is_still_acknowledged(db_session, shop, post_webhook, order_payload):
    """
    GIVEN
    - a correctly signed order with no mapped line item

    THEN
    - 200 (no redelivery storm)
    - failure recorded on the ledger
    """
    r = post_webhook("orders/create", order_payload())

    assert r.status_code == 200
    assert r.json()["status"] == "failed"
    record = db_session.execute(select(EventRecord)).scalar_one()
    assert record.status == EventStatus.failed


def test_unknown_shop_and_bad_payload_are_ignored(shop, post_webhook, order_payload):
    unknown = post_webhook("orders/create", order_payload(), shop_domain="nadie.myshopify.com")
    no_id = post_webhook("orders/create", {"name": "#1"})

    assert unknown.status_code == 200
    assert unknown.json()["status"] == "ignored"
    assert no_id.json()["status"] == "ignored"


def test_cancel_webhook_then_documents_listing(api_client, shop, make_mapping, post_webhook, order_payload):
    make_mapping(10, 100)
    post_webhook("orders/create", order_payload())

    r = post_webhook("orders/cancelled", order_payload())
    assert r.json()["status"] == "completed"

    docs = api_client.get(f"/v1/shops/{shop.shop_domain}/documents").json()
    assert [d["document_type"] for d in docs] == ["credit_note", "receipt"]
    assert docs[1]["status"] == "cancelled"

    credit_notes = api_client.get(
        f"/v1/shops/{shop.shop_domain}/documents", params={"document_type": "credit_note"}
    ).json()
    assert len(credit_notes) == 1
    assert credit_notes[0]["reference_document_id"] == docs[1]["id"]


def test_document_pdf(api_client, shop, make_mapping, post_webhook, order_payload):
    make_mapping(10, 100)
    document_id = post_webhook("orders/create", order_payload()).json()["document_id"]

    r = api_client.get(f"/v1/shops/{shop.shop_domain}/documents/{document_id}/pdf")
    missing = api_client.get(f"/v1/shops/{shop.shop_domain}/documents/999999")

    assert r.status_code == 200
    assert r.headers["content-type"] == "application/pdf"
    assert r.content.startswith(b"%PDF")
    assert missing.status_code == 404


def test_inventory_webhook_reconciles(db_session, shop, make_mapping, post_webhook, fiscal):
    shop.settings = {"sync_stock_enabled": True, "sync_stock_direction": "to_external"}
    db_session.commit()
    make_mapping(10, 100, fiscal_variant_id=900, commerce_inventory_item_id=3001, last_synced_quantity=10)

    r = post_webhook("inventory_levels/update", {"inventory_item_id": 3001, "location_id": 555, "available": 7})

    assert r.status_code == 200
    assert r.json()["status"] == "success"
    entry = db_session.execute(select(StockSyncLogEntry)).scalar_one()
    assert entry.delta == -3
    assert fiscal.stock_writes == [(900, 2, 7)]


def test_manual_stock_sync_respects_policy(api_client, db_session, shop, make_mapping, commerce):
    mapping = make_mapping(10, 100, commerce_inventory_item_id=3001, last_synced_quantity=10)
    url = f"/v1/shops/{shop.shop_domain}/stock-sync/sync"

    disabled = api_client.post(url, json={"mapping_id": mapping.id, "direction": "to_external"})

    shop.settings = {"sync_stock_enabled": True, "sync_stock_direction": "to_external"}
    db_session.commit()
    commerce.levels[(3001, 555)] = 12
    ok = api_client.post(url, json={"mapping_id": mapping.id, "direction": "to_external"})
    unknown = api_client.post(url, json={"mapping_id": 424242})

    assert disabled.status_code == 400
    assert ok.status_code == 200
    assert ok.json()["delta"] == 2
    assert unknown.status_code == 404

    logs = api_client.get(f"/v1/shops/{shop.shop_domain}/stock-sync/logs").json()
    assert len(logs) == 1


def test_usage_and_notifications(api_client, shop, post_webhook, order_payload):
    post_webhook("orders/create", order_payload())  # unmapped: fails, notifies

    usage = api_client.get(f"/v1/shops/{shop.shop_domain}/usage").json()
    notifications = api_client.get(f"/v1/shops/{shop.shop_domain}/notifications", params={"unread_only": True}).json()

    assert usage["errors_count"] == 1
    assert usage["documents_count"] == 0
    assert len(notifications) == 1

    read = api_client.post(f"/v1/shops/{shop.shop_domain}/notifications/{notifications[0]['id']}/read")
    assert read.json()["is_read"] is True
    assert api_client.get(f"/v1/shops/{shop.shop_domain}/notifications", params={"unread_only": True}).json() == []


def test_retry_endpoint(api_client, shop):
    r = api_client.post("/v1/events/retry")

    assert r.status_code == 200
    assert r.json() == {"retried": 0, "results": []}


def test_tax_id_validation_endpoint(api_client):
    ok = api_client.post("/v1/tax-ids/validate", json={"tax_id": "123456785"}).json()
    bad = api_client.post("/v1/tax-ids/validate", json={"tax_id": "12.345.678-9"}).json()
    junk = api_client.post("/v1/tax-ids/validate", json={"tax_id": "1234567²-5"})

    assert ok == {"tax_id": "123456785", "valid": True, "formatted": "12.345.678-5"}
    assert bad["valid"] is False
    assert bad["formatted"] is None
    assert junk.status_code == 200
    assert junk.json()["valid"] is False


def test_document_types_configuration(api_client, shop):
    url = f"/v1/shops/{shop.shop_domain}/document-types"

    discovered = api_client.put(url, json={"document_type_ids": {"invoice": 5}, "discover_missing": True})
    unknown = api_client.put(url, json={"document_type_ids": {"invoice": 404}})

    assert discovered.status_code == 200
    assert discovered.json()["document_type_ids"] == {"invoice": 5, "receipt": 1, "sales_note": 8, "credit_note": 9}
    assert unknown.status_code == 400


def test_settings_update_validates(api_client, shop):
    url = f"/v1/shops/{shop.shop_domain}/settings"

    ok = api_client.patch(url, json={"default_document_type": "invoice", "required_mapped_ratio": 0.5})
    bad_ratio = api_client.patch(url, json={"required_mapped_ratio": 2})
    credit = api_client.patch(url, json={"default_document_type": "credit_note"})

    assert ok.status_code == 200
    assert ok.json()["settings"]["default_document_type"] == "invoice"
    assert ok.json()["settings"]["required_mapped_ratio"] == 0.5
    assert bad_ratio.status_code == 400
    assert credit.status_code == 400


def test_health(api_client):
    r = api_client.get("/v1/health")

    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_configuration_lookups(api_client, shop):
    base = f"/v1/shops/{shop.shop_domain}"

    assert api_client.get(f"{base}/commerce/locations").json()[0]["id"] == 555
    assert api_client.get(f"{base}/fiscal/branches").json()[0]["id"] == 1
    assert api_client.get(f"{base}/fiscal/warehouses", params={"branch_id": 1}).json()[0]["id"] == 2
    assert api_client.get(f"{base}").json()["shop_domain"] == shop.shop_domain
    assert api_client.get("/v1/shops/nadie.myshopify.com").status_code == 404


def test_missing_fiscal_credentials_still_reach_the_ledger(db_session, shop, make_mapping, post_webhook, order_payload):
    """
    GIVEN
    - a configured shop whose fiscal client cannot be built

    THEN
    - the event is claimed and recorded as failed
    - one notification, one error counted
    """
    from fiscal_bridge.app.api import deps
    from fiscal_bridge.app.main import app

    def no_client(shop):
        raise ConfigurationError("no fiscal API token")

    app.dependency_overrides[deps.get_fiscal_client_factory] = lambda: no_client
    make_mapping(10, 100)

    r = post_webhook("orders/create", order_payload())

    assert r.status_code == 200
    assert r.json()["status"] == "failed"
    record = db_session.execute(select(EventRecord)).scalar_one()
    assert record.status == EventStatus.failed
    assert record.error_message == "no fiscal API token"
    assert len(db_session.execute(select(Notification)).scalars().all()) == 1
    now = utcnow()
    assert get_usage(db_session, shop.id, now.year, now.month).errors_count == 1
