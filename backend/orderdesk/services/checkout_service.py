"""Checkout: an order and its first document, stored together or not at all."""

import logging
from typing import Any, Callable, Optional, Sequence, Tuple

from sqlmodel import Session

from orderdesk.models.documents import OrderDocument
from orderdesk.models.orders import Order
from orderdesk.services.blob_storage import BlobStorage
from orderdesk.services.document_renderer import DocumentRenderer
from orderdesk.services.document_service import DocumentService, first_document_type
from orderdesk.services.order_service import OrderService
from orderdesk.services.schema_capabilities import SchemaCapabilities

logger = logging.getLogger(__name__)


class CheckoutService:
    """Service for placing orders from the public checkout."""

    def __init__(
        self,
        session: Session,
        blob_storage: BlobStorage,
        renderer: Optional[DocumentRenderer] = None,
        capabilities: Optional[SchemaCapabilities] = None,
        number_factory: Optional[Callable[[], str]] = None,
    ):
        self.session = session
        self.orders = OrderService(session, capabilities, number_factory)
        self.documents = DocumentService(session, blob_storage, renderer, capabilities)

    def submit(
        self,
        buyer: Any,
        items: Sequence[Any],
        shipping: Any = 0,
    ) -> Tuple[Order, OrderDocument]:
        """
        Persist the order, its items and its first document in one commit.

        Schools receive an offer they can answer with a purchase order, other
        buyers a pro-forma invoice. When any step fails nothing is stored and
        an uploaded file is removed again.
        """
        try:
            order = self.orders.create_order(buyer, items, shipping, commit=False)
            order_id = order.id
            document = self.documents.generate_document(
                order_id, first_document_type(order.customer_type)
            )
        except Exception:
            self.session.rollback()
            raise

        logger.info("Checkout stored order %s with %s %s", order_id, document.type, document.document_number)
        return self.orders.get_order(order_id), document
