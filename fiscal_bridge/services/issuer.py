from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Mapping, Sequence

from fiscal_bridge.app.db.models.core_types import DocumentType
from fiscal_bridge.services.errors import ConfigurationError, FiscalApiError, InvalidInputError
from fiscal_bridge.services.fiscal_client import FiscalClient
from fiscal_bridge.services.orders import MappedItem, OrderData
from fiscal_bridge.services.tax_id import normalize_tax_id, validate_tax_id

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentReference:
    """Original document a credit note reverses."""

    external_id: int
    number: str
    type_code: int | None


@dataclass(frozen=True)
class IssuedDocument:
    external_id: int
    number: str
    type_code: int | None
    raw: dict[str, Any] = field(default_factory=dict, compare=False)


def _number(value: Decimal) -> int | float:
    # JSON has no decimal type; keep integers integral
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def _type_code(raw: Mapping[str, Any]) -> int | None:
    for key in ("codeSii", "siiCode"):
        if raw.get(key) is not None:
            return int(raw[key])
    doc_type = raw.get("document_type") or {}
    if isinstance(doc_type, Mapping) and doc_type.get("codeSii") is not None:
        return int(doc_type["codeSii"])
    return None


# ---------- Client blocks per document class ----------
def _minimal_client(order: OrderData) -> dict[str, Any]:
    return {
        "code": normalize_tax_id(order.tax_id) if validate_tax_id(order.tax_id) else "",
        "firstName": order.first_name,
        "lastName": order.last_name,
        "email": order.email,
    }


def _invoice_client(order: OrderData) -> dict[str, Any]:
    if not order.tax_id:
        raise InvalidInputError(f"Customer tax id is required for an invoice (order {order.order_name})")
    if not validate_tax_id(order.tax_id):
        raise InvalidInputError(f"Invalid customer tax id {order.tax_id!r} (order {order.order_name})")

    return {
        "code": normalize_tax_id(order.tax_id),
        "firstName": order.first_name,
        "lastName": order.last_name,
        "email": order.email,
        "company": order.company,
        "activity": order.activity,
        "address": order.address,
        "city": order.city,
        "phone": order.phone,
    }


CLIENT_BUILDERS: dict[DocumentType, Callable[[OrderData], dict[str, Any]]] = {
    DocumentType.receipt: _minimal_client,
    DocumentType.invoice: _invoice_client,
    DocumentType.sales_note: _minimal_client,
    DocumentType.credit_note: _minimal_client,
}


class FiscalDocumentIssuer:
    """
    Builds the per-class payload and creates / fetches documents on the fiscal service.

    External document type ids come from the shop's explicit configuration.
    Every validation error is raised before the first external call.
    """

    def __init__(
        self,
        client: FiscalClient,
        *,
        branch_id: int | None,
        document_type_ids: Mapping[str, int],
    ):
        self.client = client
        self.branch_id = branch_id
        self.document_type_ids = {str(k): int(v) for k, v in document_type_ids.items()}

    def type_id_for(self, doc_type: DocumentType) -> int:
        type_id = self.document_type_ids.get(doc_type.value)
        if type_id is None:
            raise ConfigurationError(f"No external document type configured for {doc_type.value}")
        return type_id

    def build_payload(
        self,
        doc_type: DocumentType,
        order: OrderData,
        items: Sequence[MappedItem],
        *,
        reference: DocumentReference | None = None,
        emission_date: int | None = None,
    ) -> dict[str, Any]:
        if not items:
            raise InvalidInputError(f"Document for order {order.order_name} has no line items")
        if self.branch_id is None:
            raise ConfigurationError("Fiscal branch id is not configured")
        if doc_type == DocumentType.credit_note and reference is None:
            raise InvalidInputError("A credit note requires a reference to the original document")
        if doc_type != DocumentType.credit_note and reference is not None:
            raise InvalidInputError(f"{doc_type.value} documents do not take a reference")

        payload: dict[str, Any] = {
            "documentTypeId": self.type_id_for(doc_type),
            "branchId": self.branch_id,
            "emissionDate": emission_date or int(time.time()),
            "client": CLIENT_BUILDERS[doc_type](order),
            "details": [
                {
                    "variantId": item.fiscal_variant_id,
                    "quantity": item.quantity,
                    "unitPrice": _number(item.unit_price),
                    "discount": _number(item.discount),
                    "comment": item.comment,
                }
                for item in items
            ],
            "note": f"Order {order.order_name}",
        }

        if reference is not None:
            payload["note"] = f"Refund for order {order.order_name}"
            payload["reference"] = {
                "documentId": reference.external_id,
                "number": reference.number,
                "codeSii": reference.type_code,
            }
        return payload

    def issue(
        self,
        doc_type: DocumentType,
        order: OrderData,
        items: Sequence[MappedItem],
        *,
        reference: DocumentReference | None = None,
    ) -> IssuedDocument:
        payload = self.build_payload(doc_type, order, items, reference=reference)
        raw = self.client.create_document(payload)

        if not raw.get("id"):
            raise FiscalApiError(f"create document returned no id for order {order.order_name}", retryable=False)

        issued = IssuedDocument(
            external_id=int(raw["id"]),
            number=str(raw.get("number") or raw["id"]),
            type_code=_type_code(raw),
            raw=raw,
        )
        logger.info(
            "Issued %s %s (external id %s) for order %s",
            doc_type.value,
            issued.number,
            issued.external_id,
            order.order_name,
        )
        return issued

    def issue_credit_note(
        self,
        reference: DocumentReference,
        order: OrderData,
        items: Sequence[MappedItem],
    ) -> IssuedDocument:
        return self.issue(DocumentType.credit_note, order, items, reference=reference)

    def fetch_reference(self, external_id: int) -> DocumentReference:
        raw = self.client.get_document(external_id)
        return DocumentReference(
            external_id=int(raw.get("id") or external_id),
            number=str(raw.get("number") or external_id),
            type_code=_type_code(raw),
        )
