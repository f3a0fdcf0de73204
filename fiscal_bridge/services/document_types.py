from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from fiscal_bridge.app.db.models.core_types import DocumentType
from fiscal_bridge.app.schemas.commerce import CommerceOrder
from fiscal_bridge.app.schemas.shop import ShopSettings
from fiscal_bridge.services.errors import ConfigurationError
from fiscal_bridge.services.tax_id import extract_tax_id, validate_tax_id

logger = logging.getLogger(__name__)

# document classes that cannot be issued without a valid tax id, and their fallback
TAX_ID_REQUIRED_FALLBACK = {
    DocumentType.invoice: DocumentType.receipt,
}

# name fragments / SII codes used only by discover_document_type_ids()
_CATALOG_MATCHERS: dict[DocumentType, tuple[str, int]] = {
    DocumentType.receipt: ("boleta", 39),
    DocumentType.invoice: ("factura", 33),
    DocumentType.sales_note: ("nota de venta", 41),
    DocumentType.credit_note: ("nota de credito", 61),
}


def resolve_document_type(settings: ShopSettings, order: CommerceOrder) -> DocumentType:
    """
    Document class to issue for an order.

    Pure: the same settings and order always resolve to the same class, so a
    replayed event issues the same kind of document.
    """
    default = settings.default_document_type
    if default == DocumentType.credit_note:
        raise ConfigurationError("credit_note cannot be the default document type")

    fallback = TAX_ID_REQUIRED_FALLBACK.get(default)
    if fallback is not None and not validate_tax_id(extract_tax_id(order)):
        return fallback

    return default


def discover_document_type_ids(catalog: Iterable[Mapping[str, Any]]) -> dict[DocumentType, int]:
    """
    Fuzzy name / SII code match against the external document type catalog.

    Only meant to pre-fill the explicit per-shop map once; issuance never
    calls this.
    """
    found: dict[DocumentType, int] = {}
    items = list(catalog)
    for doc_type, (fragment, code) in _CATALOG_MATCHERS.items():
        for item in items:
            name = str(item.get("name") or "").lower()
            if fragment in name or _as_int(item.get("codeSii")) == code:
                found[doc_type] = int(item["id"])
                break
        else:
            logger.warning("No catalog entry matches document type %s", doc_type.value)
    return found


def validate_document_type_ids(
    document_type_ids: Mapping[DocumentType, int],
    catalog: Iterable[Mapping[str, Any]],
) -> None:
    known = {int(item["id"]) for item in catalog if item.get("id") is not None}
    unknown = {dt.value: type_id for dt, type_id in document_type_ids.items() if type_id not in known}
    if unknown:
        raise ConfigurationError(f"Unknown external document type ids: {unknown}")


def _as_int(value: Any) -> int | None:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
