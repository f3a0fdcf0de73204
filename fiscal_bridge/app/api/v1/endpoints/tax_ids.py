from __future__ import annotations

from fastapi import APIRouter
from pydantic import BaseModel, Field

from fiscal_bridge.services.tax_id import format_tax_id, validate_tax_id

router = APIRouter(prefix="/tax-ids")


class TaxIdCheck(BaseModel):
    tax_id: str = Field(max_length=32)


@router.post("/validate")
def validate(payload: TaxIdCheck):
    valid = validate_tax_id(payload.tax_id)
    return {
        "tax_id": payload.tax_id,
        "valid": valid,
        "formatted": format_tax_id(payload.tax_id) if valid else None,
    }
