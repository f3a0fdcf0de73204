from __future__ import annotations

from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field

from fiscal_bridge.app.db.models.core_types import DocumentType, SyncDirection


class ShopSettings(BaseModel):
    """Typed view over the `shops.settings` JSON column."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    default_document_type: DocumentType = DocumentType.receipt
    sync_stock_enabled: bool = False
    sync_stock_direction: SyncDirection = SyncDirection.bidirectional
    # 0 -> abort only when no line item is mapped
    required_mapped_ratio: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def from_json(cls, raw: Mapping[str, Any] | None) -> "ShopSettings":
        return cls.model_validate(dict(raw or {}))


class DocumentTypesConfig(BaseModel):
    """Explicit document class -> external type id map."""

    document_type_ids: dict[DocumentType, int] = Field(default_factory=dict)
    # one-time migration aid: fill the gaps by name/code match on the external catalog
    discover_missing: bool = False
