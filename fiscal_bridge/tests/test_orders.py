from decimal import Decimal

import pytest

from fiscal_bridge.app.schemas.commerce import CommerceOrder
from fiscal_bridge.services.errors import DataCompletenessError
from fiscal_bridge.services.orders import (
    NO_MAPPED_ITEMS,
    ensure_mapped,
    lookup_mapping,
    map_line_items,
    transform_order,
)


def test_transform_order_fills_missing_fields_with_empty_strings(order_payload):
    order = CommerceOrder.model_validate(
        order_payload(customer=None, email=None, billing_address={"first_name": "Luis", "city": "Temuco"})
    )

    data = transform_order(order)

    assert data.first_name == "Luis"
    assert data.last_name == ""
    assert data.email == ""
    assert data.city == "Temuco"
    assert data.address == ""
    assert data.tax_id == ""
    assert data.gross_amount == Decimal("20000")


def test_transform_order_falls_back_to_customer_default_address(order_payload):
    order = CommerceOrder.model_validate(
        order_payload(
            customer={
                "id": 7,
                "first_name": "Ana",
                "email": "ana@example.cl",
                "default_address": {"company": "Comercial 12345678-5", "address1": "Av. Alemania 100"},
            }
        )
    )

    data = transform_order(order)

    assert data.order_name == "#1001"
    assert data.customer_name == "Ana"
    assert data.address == "Av. Alemania 100"
    assert data.tax_id == "12345678-5"


def test_lookup_prefers_variant_mapping(db_session, shop, make_mapping):
    product_level = make_mapping(10, None, fiscal_variant_id=500)
    variant_level = make_mapping(10, 100, fiscal_variant_id=600)

    assert lookup_mapping(db_session, shop.id, 10, 100).id == variant_level.id
    assert lookup_mapping(db_session, shop.id, 10, 999).id == product_level.id
    assert lookup_mapping(db_session, shop.id, None, 100) is None


def test_map_line_items_skips_unmapped_lines(db_session, shop, make_mapping, order_payload):
    """
    GIVEN
    - 2 line items, only the first one mapped
    - 2 units at 10000 with 2000 discount

    THEN
    - one mapped item with a 10% discount, one skipped line
    """
    make_mapping(10, 100, fiscal_variant_id=900)
    order = CommerceOrder.model_validate(
        order_payload(
            line_items=[
                {"product_id": 10, "variant_id": 100, "name": "Polera", "quantity": 2, "price": "10000", "total_discount": "2000"},
                {"product_id": 20, "variant_id": 200, "name": "Gorro", "quantity": 1, "price": "5000"},
            ]
        )
    )

    result = map_line_items(db_session, shop.id, order.line_items)

    assert [i.fiscal_variant_id for i in result.items] == [900]
    assert result.items[0].discount == Decimal("10.00")
    assert result.items[0].comment == "Polera"
    assert len(result.skipped) == 1
    assert result.total == 2


def test_inactive_mapping_is_ignored(db_session, shop, make_mapping):
    make_mapping(10, 100, is_active=False)

    assert lookup_mapping(db_session, shop.id, 10, 100) is None


def test_ensure_mapped_aborts_when_nothing_maps(db_session, shop, order_payload):
    order = CommerceOrder.model_validate(order_payload())
    result = map_line_items(db_session, shop.id, order.line_items)

    with pytest.raises(DataCompletenessError) as exc:
        ensure_mapped(result)

    assert str(exc.value) == NO_MAPPED_ITEMS


def test_ensure_mapped_ratio_threshold(db_session, shop, make_mapping, order_payload):
    make_mapping(10, 100)
    order = CommerceOrder.model_validate(
        order_payload(
            line_items=[
                {"product_id": 10, "variant_id": 100, "quantity": 1, "price": "100"},
                {"product_id": 20, "variant_id": 200, "quantity": 1, "price": "100"},
            ]
        )
    )
    result = map_line_items(db_session, shop.id, order.line_items)

    assert len(ensure_mapped(result)) == 1
    assert len(ensure_mapped(result, required_ratio=0.5)) == 1
    with pytest.raises(DataCompletenessError, match="insufficient"):
        ensure_mapped(result, required_ratio=1.0)
