"""Back-office order API endpoints."""

import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from orderdesk.api.deps import get_blob_storage, get_capabilities, get_db, get_renderer
from orderdesk.core.exceptions import OrderDeskError
from orderdesk.models.archive import ArchiveEntryRead, ArchiveMutationResponse
from orderdesk.models.documents import DocumentRead, OrderDocumentsResponse
from orderdesk.models.orders import (
    ItemsEditRequest,
    OrderDetailsUpdate,
    OrderRead,
    StatusUpdateRequest,
    TotalsResponse,
)
from orderdesk.services import ArchiveService, DocumentService, OrderService, SchemaCapabilities
from orderdesk.services.blob_storage import BlobStorage
from orderdesk.services.document_renderer import DocumentRenderer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/orders", tags=["admin"])


def _http_error(e: Exception, action: str) -> HTTPException:
    if isinstance(e, OrderDeskError):
        return HTTPException(status_code=e.status_code, detail=e.message)
    logger.error("%s failed: %s", action, e, exc_info=True)
    return HTTPException(status_code=500, detail="Internal server error")


@router.get("/", response_model=List[OrderRead])
def list_orders(
    status: Optional[str] = None,
    customer_type: Optional[str] = None,
    date_from: Optional[date] = Query(default=None, alias="from"),
    date_to: Optional[date] = Query(default=None, alias="to"),
    search: Optional[str] = None,
    include_drafts: bool = False,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> List[OrderRead]:
    """
    List orders, newest first.
    """
    try:
        service = OrderService(session, capabilities)
        orders = service.fetch_orders(
            status=status,
            customer_type=customer_type,
            date_from=date_from,
            date_to=date_to,
            search=search,
            include_drafts=include_drafts,
        )
        return [service.to_read(order) for order in orders]
    except Exception as e:
        raise _http_error(e, "Order listing")


@router.post("/draft", response_model=OrderRead)
def create_draft(
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> OrderRead:
    """
    Create an empty draft order for manual entry.
    """
    try:
        service = OrderService(session, capabilities)
        return service.to_read(service.create_draft_order())
    except Exception as e:
        raise _http_error(e, "Draft creation")


@router.get("/{order_id}", response_model=OrderRead)
def get_order(
    order_id: int,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> OrderRead:
    try:
        service = OrderService(session, capabilities)
        order = service.get_order(order_id)
        return service.to_read(order, service.get_order_items(order_id))
    except Exception as e:
        raise _http_error(e, "Order lookup")


@router.post("/{order_id}/details", response_model=OrderRead)
def update_details(
    order_id: int,
    request: OrderDetailsUpdate,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> OrderRead:
    """
    Update buyer, delivery and reference fields. Blank fields are left unchanged.
    """
    try:
        service = OrderService(session, capabilities)
        order = service.update_order_details(order_id, request)
        return service.to_read(order, service.get_order_items(order_id))
    except Exception as e:
        raise _http_error(e, "Details update")


@router.post("/{order_id}/items", response_model=TotalsResponse)
def replace_items(
    order_id: int,
    request: ItemsEditRequest,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> TotalsResponse:
    """
    Replace all items of an order and return the recomputed totals.
    """
    try:
        totals = OrderService(session, capabilities).replace_order_items(
            order_id, request.items, request.shipping
        )
        return TotalsResponse(**totals.as_dict())
    except Exception as e:
        raise _http_error(e, "Item replacement")


@router.post("/{order_id}/status", response_model=OrderRead)
def update_status(
    order_id: int,
    request: StatusUpdateRequest,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> OrderRead:
    try:
        service = OrderService(session, capabilities)
        return service.to_read(service.update_status(order_id, request.status, request.note))
    except Exception as e:
        raise _http_error(e, "Status update")


@router.post("/{order_id}/payment-status", response_model=OrderRead)
def update_payment_status(
    order_id: int,
    request: StatusUpdateRequest,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> OrderRead:
    try:
        service = OrderService(session, capabilities)
        return service.to_read(service.update_payment_status(order_id, request.status, request.note))
    except Exception as e:
        raise _http_error(e, "Payment status update")


@router.delete("/{order_id}", response_model=ArchiveEntryRead)
def delete_order(
    order_id: int,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> ArchiveEntryRead:
    """
    Move an order to the archive. It can be restored until the entry expires.
    """
    try:
        entry = OrderService(session, capabilities).delete_order(order_id)
        return ArchiveService.to_read(entry)
    except Exception as e:
        raise _http_error(e, "Order deletion")


@router.get("/{order_id}/documents", response_model=OrderDocumentsResponse)
def list_documents(
    order_id: int,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> OrderDocumentsResponse:
    """
    Latest version of each document type, full history and attachments.
    """
    try:
        OrderService(session, capabilities).get_order(order_id, include_deleted=True)
        return DocumentService(session, capabilities=capabilities).overview(order_id)
    except Exception as e:
        raise _http_error(e, "Document listing")


@router.post("/{order_id}/documents/{doc_type}", response_model=DocumentRead)
def generate_document(
    order_id: int,
    doc_type: str,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
    blob_storage: BlobStorage = Depends(get_blob_storage),
    renderer: DocumentRenderer = Depends(get_renderer),
) -> DocumentRead:
    """
    Generate a new numbered version of a document.
    """
    try:
        service = DocumentService(session, blob_storage, renderer, capabilities)
        return service.to_read(service.generate_document(order_id, doc_type))
    except Exception as e:
        raise _http_error(e, "Document generation")


@router.delete("/{order_id}/documents/{document_id}", response_model=ArchiveMutationResponse)
def delete_document(
    order_id: int,
    document_id: int,
    permanent: bool = False,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
    blob_storage: BlobStorage = Depends(get_blob_storage),
) -> ArchiveMutationResponse:
    """
    Archive one document version, or remove it for good with ``permanent=true``.
    """
    try:
        service = DocumentService(session, blob_storage, capabilities=capabilities)
        if permanent:
            service.delete_version(document_id, order_id)
        else:
            service.get_document(document_id, order_id)
            ArchiveService(session, blob_storage, capabilities).soft_delete("pdf", document_id)
        return ArchiveMutationResponse(success=True, count=1)
    except Exception as e:
        raise _http_error(e, "Document deletion")
