from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_bridge.app.db.models.models_v1 import CatalogMapping
from fiscal_bridge.app.schemas.commerce import Address, CommerceOrder, LineItem
from fiscal_bridge.services.errors import DataCompletenessError
from fiscal_bridge.services.tax_id import extract_tax_id

logger = logging.getLogger(__name__)

NO_MAPPED_ITEMS = "no mapped items"


@dataclass(frozen=True)
class OrderData:
    order_name: str
    order_number: int | None
    tax_id: str
    first_name: str
    last_name: str
    email: str
    company: str
    address: str
    city: str
    phone: str
    currency: str
    net_amount: Decimal | None
    tax_amount: Decimal | None
    gross_amount: Decimal | None
    activity: str = ""

    @property
    def customer_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass(frozen=True)
class MappedItem:
    fiscal_variant_id: int
    quantity: int
    unit_price: Decimal
    discount: Decimal
    comment: str
    sku: str | None = None


@dataclass
class MappingResult:
    items: list[MappedItem] = field(default_factory=list)
    skipped: list[LineItem] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.items) + len(self.skipped)


def _first(*values: str | None) -> str:
    for value in values:
        if value:
            return value
    return ""


# ---------- Transformer ----------
def transform_order(order: CommerceOrder) -> OrderData:
    """Normalize a commerce order. Missing fields become "" and never None."""
    customer = order.customer
    billing: Address = order.billing_address or (customer.default_address if customer else None) or Address()

    return OrderData(
        order_name=_first(order.name, f"#{order.order_number}" if order.order_number else None, str(order.id)),
        order_number=order.order_number,
        tax_id=extract_tax_id(order) or "",
        first_name=_first(customer.first_name if customer else None, billing.first_name),
        last_name=_first(customer.last_name if customer else None, billing.last_name),
        email=_first(customer.email if customer else None, order.email),
        company=_first(billing.company),
        address=_first(billing.address1),
        city=_first(billing.city),
        phone=_first(customer.phone if customer else None, billing.phone),
        currency=order.currency,
        net_amount=order.subtotal_price,
        tax_amount=order.total_tax,
        gross_amount=order.total_price,
    )


# ---------- Line item mapper ----------
def lookup_mapping(
    db: Session,
    shop_id: int,
    product_id: int | None,
    variant_id: int | None,
) -> CatalogMapping | None:
    """Variant-level mapping first, product-level mapping (no variant) second."""
    if product_id is None:
        return None

    base = (
        select(CatalogMapping)
        .where(CatalogMapping.shop_id == shop_id)
        .where(CatalogMapping.commerce_product_id == product_id)
        .where(CatalogMapping.is_active.is_(True))
    )
    if variant_id is not None:
        mapping = db.execute(base.where(CatalogMapping.commerce_variant_id == variant_id)).scalars().first()
        if mapping:
            return mapping

    return db.execute(base.where(CatalogMapping.commerce_variant_id.is_(None))).scalars().first()


def _discount_percent(line: LineItem) -> Decimal:
    gross = line.price * line.quantity
    if line.total_discount <= 0 or gross <= 0:
        return Decimal("0")
    return (line.total_discount / gross * 100).quantize(Decimal("0.01"))


def map_line_items(db: Session, shop_id: int, line_items: Iterable[LineItem]) -> MappingResult:
    result = MappingResult()
    for line in line_items:
        mapping = lookup_mapping(db, shop_id, line.product_id, line.variant_id)
        if mapping is None:
            logger.warning(
                "Unmapped line item skipped (shop=%s product=%s variant=%s sku=%s)",
                shop_id,
                line.product_id,
                line.variant_id,
                line.sku,
            )
            result.skipped.append(line)
            continue

        result.items.append(
            MappedItem(
                fiscal_variant_id=mapping.fiscal_stock_variant_id,
                quantity=line.quantity,
                unit_price=line.price,
                discount=_discount_percent(line),
                comment=line.name or line.sku or "",
                sku=line.sku,
            )
        )
    return result


def ensure_mapped(result: MappingResult, required_ratio: float = 0.0) -> list[MappedItem]:
    """Abort the order when nothing (or too little) maps to the fiscal catalog."""
    if not result.items:
        raise DataCompletenessError(NO_MAPPED_ITEMS)

    if required_ratio > 0 and len(result.items) / result.total < required_ratio:
        raise DataCompletenessError(
            f"insufficient mapped items ({len(result.items)}/{result.total}, required ratio {required_ratio})"
        )
    return result.items
