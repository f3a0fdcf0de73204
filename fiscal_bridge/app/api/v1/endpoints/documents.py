from __future__ import annotations

from typing import Callable

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy import select
from sqlalchemy.orm import Session

from fiscal_bridge.app.api.deps import get_db, get_fiscal_client_factory, get_shop
from fiscal_bridge.app.db.models.core_types import DocumentStatus, DocumentType
from fiscal_bridge.app.db.models.models_v1 import FiscalDocument, Shop
from fiscal_bridge.app.schemas.records import FiscalDocumentRead
from fiscal_bridge.services.errors import ExternalApiError, InvalidInputError
from fiscal_bridge.services.fiscal_client import FiscalClient

router = APIRouter(prefix="/documents")


def _get_document(db: Session, shop: Shop, document_id: int) -> FiscalDocument:
    doc = db.get(FiscalDocument, document_id)
    if not doc or doc.shop_id != shop.id:
        raise HTTPException(status_code=404, detail="Document not found")
    return doc


@router.get("", response_model=list[FiscalDocumentRead])
def list_documents(
    status: DocumentStatus | None = None,
    document_type: DocumentType | None = None,
    order_id: int | None = None,
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    shop: Shop = Depends(get_shop),
    db: Session = Depends(get_db),
):
    stmt = select(FiscalDocument).where(FiscalDocument.shop_id == shop.id)

    if status is not None:
        stmt = stmt.where(FiscalDocument.status == status)

    if document_type is not None:
        stmt = stmt.where(FiscalDocument.document_type == document_type)

    if order_id is not None:
        stmt = stmt.where(FiscalDocument.commerce_order_id == order_id)

    stmt = stmt.order_by(FiscalDocument.id.desc()).offset(offset).limit(limit)
    return db.execute(stmt).scalars().all()


@router.get("/{document_id}", response_model=FiscalDocumentRead)
def get_document(document_id: int, shop: Shop = Depends(get_shop), db: Session = Depends(get_db)):
    return _get_document(db, shop, document_id)


@router.get("/{document_id}/pdf")
def get_document_pdf(
    document_id: int,
    shop: Shop = Depends(get_shop),
    db: Session = Depends(get_db),
    fiscal_factory: Callable[[Shop], FiscalClient] = Depends(get_fiscal_client_factory),
):
    doc = _get_document(db, shop, document_id)
    if not doc.fiscal_document_id:
        raise HTTPException(status_code=409, detail="Document was never issued")

    try:
        with fiscal_factory(shop) as fiscal:
            content = fiscal.get_document_pdf(doc.fiscal_document_id)
    except InvalidInputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ExternalApiError as e:
        raise HTTPException(status_code=502, detail=str(e))

    filename = f"{doc.document_type.value}-{doc.fiscal_number or doc.id}.pdf"
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )
