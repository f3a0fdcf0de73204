import os

# before any fiscal_bridge import: the module-level engine must not need Postgres
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from fiscal_bridge.app.db.base import Base  # noqa: E402
from fiscal_bridge.app.db.models.models_v1 import CatalogMapping, Shop  # noqa: E402
from fiscal_bridge.services.errors import FiscalApiError  # noqa: E402

SHOP_DOMAIN = "tienda-test.myshopify.com"
WEBHOOK_SECRET = "test-webhook-secret"

DOCUMENT_TYPE_IDS = {"receipt": 1, "invoice": 5, "sales_note": 8, "credit_note": 9}


@pytest.fixture(scope="function")
def db_session() -> Session:
    """
    Fresh in-memory database per test.

    Services commit (ledger claims, terminal transitions), so isolation comes
    from dropping the whole database rather than from a wrapping transaction.
    """
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()

    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


# ---------- Fake external services ----------
class _FakeClient:
    """Context manager protocol of the real clients; counts closes."""

    closed = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.closed += 1


class FakeFiscalClient(_FakeClient):
    """In-memory stand-in for FiscalClient; records every write."""

    def __init__(self):
        self.document_types = [
            {"id": 1, "name": "BOLETA ELECTRONICA", "codeSii": 39},
            {"id": 5, "name": "FACTURA ELECTRONICA", "codeSii": 33},
            {"id": 8, "name": "NOTA DE VENTA", "codeSii": 41},
            {"id": 9, "name": "NOTA DE CREDITO ELECTRONICA", "codeSii": 61},
        ]
        self.created: list[dict] = []
        self.documents: dict[int, dict] = {}
        self.stocks: dict[tuple[int, int | None], int] = {}
        self.stock_writes: list[tuple[int, int, int]] = []
        self.fail_with: Exception | None = None
        self._next_id = 7000

    def list_document_types(self):
        return list(self.document_types)

    def create_document(self, payload):
        if self.fail_with is not None:
            raise self.fail_with
        self._next_id += 1
        code = {1: 39, 5: 33, 8: 41, 9: 61}.get(payload["documentTypeId"])
        doc = {"id": self._next_id, "number": str(self._next_id - 6000), "codeSii": code}
        self.created.append(payload)
        self.documents[doc["id"]] = doc
        return doc

    def get_document(self, document_id):
        if document_id not in self.documents:
            raise FiscalApiError(f"document {document_id} not found", status_code=404)
        return self.documents[document_id]

    def get_document_pdf(self, document_id):
        self.get_document(document_id)
        return b"%PDF-1.4 fake"

    def get_stock(self, variant_id, warehouse_id):
        return self.stocks.get((variant_id, warehouse_id))

    def set_stock(self, variant_id, warehouse_id, quantity, note=None):
        if self.fail_with is not None:
            raise self.fail_with
        self.stocks[(variant_id, warehouse_id)] = quantity
        self.stock_writes.append((variant_id, warehouse_id, quantity))
        return {"quantity": quantity}

    def list_branches(self):
        return [{"id": 1, "name": "Casa Matriz"}]

    def list_warehouses(self, branch_id=None):
        return [{"id": 2, "name": "Bodega"}]


class FakeCommerceClient(_FakeClient):
    def __init__(self):
        self.levels: dict[tuple[int, int], int] = {}
        self.level_writes: list[tuple[int, int, int]] = []

    def get_inventory_level(self, inventory_item_id, location_id):
        return self.levels.get((inventory_item_id, location_id))

    def set_inventory_level(self, inventory_item_id, location_id, available):
        self.levels[(inventory_item_id, location_id)] = available
        self.level_writes.append((inventory_item_id, location_id, available))
        return {"available": available}

    def list_locations(self):
        return [{"id": 555, "name": "Bodega Central", "active": True}]


@pytest.fixture
def fiscal():
    return FakeFiscalClient()


@pytest.fixture
def commerce():
    return FakeCommerceClient()


# ---------- Factories ----------
@pytest.fixture
def shop(db_session) -> Shop:
    shop = Shop(
        shop_domain=SHOP_DOMAIN,
        currency="CLP",
        commerce_access_token="shpat_test",
        commerce_location_id=555,
        fiscal_api_token="fiscal-token",
        fiscal_branch_id=1,
        fiscal_warehouse_id=2,
        is_fiscal_configured=True,
        settings={},
        document_type_ids=dict(DOCUMENT_TYPE_IDS),
    )
    db_session.add(shop)
    db_session.commit()
    return shop


@pytest.fixture
def make_mapping(db_session, shop):
    def _make(product_id, variant_id=None, fiscal_variant_id=900, **kwargs) -> CatalogMapping:
        kwargs.setdefault("fiscal_item_id", fiscal_variant_id - 100)
        mapping = CatalogMapping(
            shop_id=shop.id,
            commerce_product_id=product_id,
            commerce_variant_id=variant_id,
            fiscal_variant_id=fiscal_variant_id,
            **kwargs,
        )
        db_session.add(mapping)
        db_session.commit()
        return mapping

    return _make


def build_order_payload(order_id=1001, line_items=None, **overrides) -> dict:
    """Minimal commerce order as delivered by the orders/* webhooks."""
    payload = {
        "id": order_id,
        "name": f"#{order_id}",
        "order_number": order_id,
        "email": "cliente@example.cl",
        "currency": "CLP",
        "subtotal_price": "16807",
        "total_tax": "3193",
        "total_price": "20000",
        "customer": {"id": 42, "first_name": "Ana", "last_name": "Rojas", "email": "ana@example.cl"},
        "line_items": line_items
        if line_items is not None
        else [
            {"id": 1, "product_id": 10, "variant_id": 100, "sku": "SKU-10", "name": "Polera", "quantity": 2, "price": "10000"},
        ],
        "note_attributes": [],
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def order_payload():
    return build_order_payload


@pytest.fixture
def api_client(db_session, fiscal, commerce):
    """TestClient sharing the test session, fake clients and a known webhook secret."""
    from fastapi.testclient import TestClient

    from fiscal_bridge.app.api import deps
    from fiscal_bridge.app.main import app

    def _get_db():
        yield db_session

    app.dependency_overrides[deps.get_db] = _get_db
    app.dependency_overrides[deps.get_fiscal_client_factory] = lambda: (lambda shop: fiscal)
    app.dependency_overrides[deps.get_commerce_client_factory] = lambda: (lambda shop: commerce)
    app.dependency_overrides[deps.get_webhook_secret] = lambda: WEBHOOK_SECRET

    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def post_webhook(api_client):
    """POST a signed webhook; pass signature="" to send none."""
    import json

    from fiscal_bridge.services.commerce_client import (
        SHOP_DOMAIN_HEADER,
        SIGNATURE_HEADER,
        compute_webhook_signature,
    )

    def _post(topic, payload, *, shop_domain=SHOP_DOMAIN, signature=None):
        raw = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json", SHOP_DOMAIN_HEADER: shop_domain}
        if signature is None:
            signature = compute_webhook_signature(raw, WEBHOOK_SECRET)
        if signature:
            headers[SIGNATURE_HEADER] = signature
        return api_client.post(f"/v1/webhooks/{topic}", content=raw, headers=headers)

    return _post
