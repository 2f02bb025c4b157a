"""Public checkout API endpoints."""

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlmodel import Session

from orderdesk.api.deps import get_blob_storage, get_capabilities, get_db, get_renderer
from orderdesk.core.exceptions import OrderDeskError
from orderdesk.models.documents import AttachmentRead
from orderdesk.models.orders import CheckoutRequest, CheckoutResponse
from orderdesk.services import CheckoutService, DocumentService, SchemaCapabilities
from orderdesk.services.blob_storage import BlobStorage
from orderdesk.services.document_renderer import DocumentRenderer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("/", response_model=CheckoutResponse)
def submit_order(
    request: CheckoutRequest,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
    blob_storage: BlobStorage = Depends(get_blob_storage),
    renderer: DocumentRenderer = Depends(get_renderer),
) -> CheckoutResponse:
    """
    Place an order and generate its first document in one transaction.
    """
    try:
        order, document = CheckoutService(
            session, blob_storage, renderer, capabilities
        ).submit(request, request.items)

        return CheckoutResponse(
            order_id=order.id,
            order_number=order.order_number,
            document_url=document.blob_url,
            document_type=document.type,
        )

    except OrderDeskError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Checkout failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/{order_id}/purchase-order", response_model=AttachmentRead)
def upload_purchase_order(
    order_id: int,
    file: UploadFile = File(...),
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
    blob_storage: BlobStorage = Depends(get_blob_storage),
) -> AttachmentRead:
    """
    Attach a signed purchase order PDF to an order.
    """
    try:
        data = file.file.read()
        attachment = DocumentService(session, blob_storage, capabilities=capabilities).upload_attachment(
            order_id, file.filename, data, file.content_type
        )
        return DocumentService.attachment_to_read(attachment)

    except OrderDeskError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Purchase order upload failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")
