"""
Chilean RUT style tax identifiers (modulo 11 check character).

All tax-id logic lives here: validation, display format, extraction from an order.
"""
from __future__ import annotations

import re

from fiscal_bridge.app.schemas.commerce import CommerceOrder

_SEPARATORS = re.compile(r"[\W_]")
_BODY = re.compile(r"[0-9]{7,8}")
_EMBEDDED_TAX_ID = re.compile(r"[0-9]{7,8}-[0-9Kk]")

TAX_ID_ATTRIBUTE_NAMES = {"rut", "tax_id"}


def _clean(value: str) -> str:
    return _SEPARATORS.sub("", value).upper()


def compute_check_character(body: str) -> str:
    total = 0
    multiplier = 2
    for digit in reversed(body):
        total += int(digit) * multiplier
        multiplier = 2 if multiplier == 7 else multiplier + 1

    expected = 11 - (total % 11)
    if expected == 11:
        return "0"
    if expected == 10:
        return "K"
    return str(expected)


def validate_tax_id(value: str | None) -> bool:
    if not value or not isinstance(value, str):
        return False

    clean = _clean(value)
    body, check = clean[:-1], clean[-1:]
    if not _BODY.fullmatch(body):
        return False

    return compute_check_character(body) == check


def format_tax_id(value: str | None) -> str:
    """12345678-5 / 123456785 -> 12.345.678-5 (no validation)."""
    clean = _clean(value or "")
    if len(clean) < 2:
        return clean
    body, check = clean[:-1], clean[-1]
    groups = []
    while body:
        groups.insert(0, body[-3:])
        body = body[:-3]
    return f"{'.'.join(groups)}-{check}"


def normalize_tax_id(value: str) -> str:
    """12.345.678-5 -> 12345678-5, the form the fiscal service expects."""
    clean = _clean(value or "")
    if len(clean) < 2:
        return clean
    return f"{clean[:-1]}-{clean[-1]}"


def extract_tax_id(order: CommerceOrder) -> str | None:
    """
    Tax id carried by a commerce order, first match wins:
      1. note attribute named rut / tax_id
      2. company field of the customer default address
      3. company field of the billing address
    """
    for attr in order.note_attributes:
        if attr.name.strip().lower() in TAX_ID_ATTRIBUTE_NAMES and attr.value:
            return attr.value.strip()

    default_address = order.customer.default_address if order.customer else None
    for address in (default_address, order.billing_address):
        if address is not None and address.company:
            match = _EMBEDDED_TAX_ID.search(address.company)
            if match:
                return match.group(0)

    return None
