"""
Commerce platform (Shopify Admin REST) client and webhook signature check.
"""
from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Any

import requests

from fiscal_bridge.app import config
from fiscal_bridge.app.db.models.models_v1 import Shop
from fiscal_bridge.services.errors import CommerceApiError, ConfigurationError
from fiscal_bridge.services.http_client import ApiClient

SHOP_DOMAIN_HEADER = "X-Shopify-Shop-Domain"
SIGNATURE_HEADER = "X-Shopify-Hmac-Sha256"


def compute_webhook_signature(raw_body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(raw_body: bytes, signature: str | None, secret: str) -> bool:
    """Base64 HMAC-SHA256 of the raw request body, constant-time compare."""
    if not signature or not secret:
        return False
    return hmac.compare_digest(compute_webhook_signature(raw_body, secret), signature.strip())


class CommerceClient(ApiClient):
    error_class = CommerceApiError

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        *,
        api_version: str | None = None,
        timeout: float | None = None,
        session: requests.Session | None = None,
    ):
        version = api_version or config.COMMERCE_API_VERSION
        super().__init__(
            f"https://{shop_domain}/admin/api/{version}",
            {"X-Shopify-Access-Token": access_token},
            timeout=timeout,
            session=session,
        )

    def list_locations(self) -> list[dict[str, Any]]:
        return self.request_json("GET", "/locations.json").get("locations", [])

    def get_inventory_level(self, inventory_item_id: int, location_id: int) -> int | None:
        levels = self.request_json(
            "GET",
            "/inventory_levels.json",
            params={"inventory_item_ids": inventory_item_id, "location_ids": location_id},
        ).get("inventory_levels") or []
        if not levels or levels[0].get("available") is None:
            return None
        return int(levels[0]["available"])

    def set_inventory_level(self, inventory_item_id: int, location_id: int, available: int) -> dict[str, Any]:
        return self.request_json(
            "POST",
            "/inventory_levels/set.json",
            json={"location_id": location_id, "inventory_item_id": inventory_item_id, "available": available},
        ).get("inventory_level", {})


def commerce_client_for(shop: Shop) -> CommerceClient:
    if not shop.commerce_access_token:
        raise ConfigurationError(f"Shop {shop.shop_domain} has no commerce access token")
    return CommerceClient(shop.shop_domain, shop.commerce_access_token)
