from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

# Commerce payloads are consumed read-only; unknown keys are ignored.


class NoteAttribute(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str = ""
    value: str | None = None


class Address(BaseModel):
    model_config = ConfigDict(extra="ignore")

    first_name: str | None = None
    last_name: str | None = None
    company: str | None = None
    address1: str | None = None
    city: str | None = None
    phone: str | None = None


class Customer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    phone: str | None = None
    default_address: Address | None = None


class LineItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int | None = None
    product_id: int | None = None
    variant_id: int | None = None
    sku: str | None = None
    name: str | None = None
    quantity: int = Field(ge=0)
    price: Decimal
    total_discount: Decimal = Decimal("0")


class CommerceOrder(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    id: int
    name: str | None = None
    order_number: int | None = None
    email: str | None = None
    currency: str = "CLP"
    subtotal_price: Decimal | None = None
    total_tax: Decimal | None = None
    total_price: Decimal | None = None
    customer: Customer | None = None
    billing_address: Address | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    note_attributes: list[NoteAttribute] = Field(default_factory=list)
    note: str | None = None


class InventoryLevelUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    inventory_item_id: int
    location_id: int | None = None
    available: int | None = None
