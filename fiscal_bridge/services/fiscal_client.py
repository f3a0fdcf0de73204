"""
Fiscal service (Bsale REST API) client.

Constructed per shop from its own API token; nothing here is module-level state.
"""
from __future__ import annotations

from typing import Any

import requests

from fiscal_bridge.app import config
from fiscal_bridge.app.db.models.models_v1 import Shop
from fiscal_bridge.services.errors import ConfigurationError, FiscalApiError
from fiscal_bridge.services.http_client import ApiClient


class FiscalClient(ApiClient):
    error_class = FiscalApiError

    def __init__(
        self,
        api_token: str,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__(
            base_url or config.FISCAL_API_URL,
            {"access_token": api_token},
            timeout=timeout,
            session=session,
        )

    # ---------- Documents ----------
    def list_document_types(self) -> list[dict[str, Any]]:
        return self.request_json("GET", "/document_types.json").get("items", [])

    def create_document(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self.request_json("POST", "/documents.json", json=payload)

    def get_document(self, document_id: int) -> dict[str, Any]:
        return self.request_json("GET", f"/documents/{document_id}.json")

    def get_document_pdf(self, document_id: int) -> bytes:
        return self.request_bytes("GET", f"/documents/{document_id}/pdf.json")

    # ---------- Stock ----------
    def get_stock(self, variant_id: int, warehouse_id: int | None) -> int | None:
        params: dict[str, Any] = {"variant_id": variant_id}
        if warehouse_id:
            params["warehouse_id"] = warehouse_id
        items = self.request_json("GET", "/stocks.json", params=params).get("items") or []
        if not items:
            return None
        stock = items[0]
        quantity = stock.get("quantityAvailable", stock.get("quantity"))
        return None if quantity is None else int(quantity)

    def set_stock(self, variant_id: int, warehouse_id: int, quantity: int, note: str | None = None) -> dict[str, Any]:
        data: dict[str, Any] = {"variant_id": variant_id, "warehouse_id": warehouse_id, "quantity": quantity}
        if note:
            data["note"] = note
        return self.request_json("POST", "/stocks.json", json=data)

    # ---------- Company ----------
    def list_branches(self) -> list[dict[str, Any]]:
        return self.request_json("GET", "/branches.json").get("items", [])

    def list_warehouses(self, branch_id: int | None = None) -> list[dict[str, Any]]:
        params = {"branch_id": branch_id} if branch_id else {}
        return self.request_json("GET", "/warehouses.json", params=params).get("items", [])


def fiscal_client_for(shop: Shop) -> FiscalClient:
    if not shop.fiscal_api_token:
        raise ConfigurationError(f"Shop {shop.shop_domain} has no fiscal API token")
    return FiscalClient(shop.fiscal_api_token)
