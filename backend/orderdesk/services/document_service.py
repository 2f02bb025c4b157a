"""Versioned document registry and document generation."""

import logging
import re
import secrets
from datetime import datetime
from pathlib import PurePosixPath
from typing import Dict, List, Optional

from sqlalchemy import delete, func, insert
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlmodel import Session, select

from orderdesk.core.exceptions import NotFound, ValidationFailed
from orderdesk.models.archive import ArchiveEntry
from orderdesk.models.documents import (
    DOCUMENT_FILE_CODES,
    DOCUMENT_NUMBER_PREFIXES,
    DOCUMENT_TITLES,
    DOCUMENT_TYPES,
    GENERATED_DOCUMENT_TYPES,
    AttachmentRead,
    DocumentCounter,
    DocumentRead,
    OrderAttachment,
    OrderDocument,
    OrderDocumentsResponse,
)
from orderdesk.models.orders import utcnow
from orderdesk.services.blob_storage import BlobStorage, StoredBlob, delete_blobs_best_effort
from orderdesk.services.document_renderer import DocumentRenderer, PlainTextRenderer
from orderdesk.services.order_service import OrderService
from orderdesk.services.schema_capabilities import SchemaCapabilities

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = "application/pdf"


def first_document_type(customer_type: str) -> str:
    """Schools get an offer first, everyone else a pro-forma invoice."""
    return "order_summary" if customer_type == "school" else "pro_forma"


def build_filename(
    doc_type: str,
    order_number: str,
    version: int,
    extension: str = "pdf",
    now: Optional[datetime] = None,
    suffix: Optional[str] = None,
) -> str:
    stamp = (now or utcnow()).strftime("%Y%m%d")
    suffix = suffix or secrets.token_hex(3)
    return f"{DOCUMENT_FILE_CODES[doc_type]}-{order_number}-{version}-{stamp}-{suffix}.{extension}"


class DocumentService:
    """Service for document versions, numbering and attachments."""

    def __init__(
        self,
        session: Session,
        blob_storage: Optional[BlobStorage] = None,
        renderer: Optional[DocumentRenderer] = None,
        capabilities: Optional[SchemaCapabilities] = None,
    ):
        self.session = session
        self.blob_storage = blob_storage
        self.renderer = renderer or PlainTextRenderer()
        self.capabilities = capabilities or SchemaCapabilities.full()

    def allocate_document_number(self, doc_type: str) -> str:
        """Next global number for a document type, e.g. ``DOB-00042``.

        Runs inside the caller's transaction; the counter row stays locked
        until that transaction ends.
        """
        prefix = DOCUMENT_NUMBER_PREFIXES.get(doc_type)
        if prefix is None:
            raise ValidationFailed("Document type has no numbering.")

        counter = self._lock_counter(doc_type)
        if counter is None:
            self._seed_counter(doc_type)
            counter = self._lock_counter(doc_type)
        number = counter.next_number
        counter.next_number = number + 1
        self.session.add(counter)
        self.session.flush()
        return f"{prefix}-{number:05d}"

    def _lock_counter(self, doc_type: str) -> Optional[DocumentCounter]:
        return self.session.exec(
            select(DocumentCounter)
            .where(DocumentCounter.counter_name == doc_type)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).first()

    def _seed_counter(self, doc_type: str) -> None:
        """Create a missing counter row; a concurrent creator wins silently."""
        if self.session.get_bind().dialect.name == "postgresql":
            statement = postgresql_insert(DocumentCounter.__table__)
        else:
            statement = sqlite_insert(DocumentCounter.__table__)
        self.session.exec(
            statement.values(counter_name=doc_type, next_number=1).on_conflict_do_nothing(
                index_elements=["counter_name"]
            )
        )

    # Registry

    def _load_document(self, document_id: int) -> Optional[OrderDocument]:
        return self.session.exec(
            select(OrderDocument)
            .options(*self.capabilities.document_load_options())
            .where(OrderDocument.id == document_id)
            .execution_options(populate_existing=True)
        ).first()

    def _live_version_count(self, order_id: int, doc_type: str) -> int:
        return self.session.exec(
            select(func.count(OrderDocument.id)).where(
                OrderDocument.order_id == order_id,
                OrderDocument.type == doc_type,
                OrderDocument.deleted_at.is_(None),
            )
        ).one()

    def record_document(
        self,
        order_id: int,
        doc_type: str,
        url: str,
        filename: str,
        document_number: Optional[str] = None,
        pathname: Optional[str] = None,
        commit: bool = True,
    ) -> OrderDocument:
        """Append a document version; earlier versions are left as they are."""
        if doc_type not in DOCUMENT_TYPES:
            raise ValidationFailed("Unknown document type.")

        values = self.capabilities.writable(
            "order_documents",
            {
                "order_id": order_id,
                "type": doc_type,
                "filename": filename,
                "blob_url": url,
                "blob_pathname": pathname,
                "document_number": document_number,
                "created_at": utcnow(),
            },
        )
        result = self.session.exec(
            insert(self.capabilities.insert_table(OrderDocument.__table__)).values(**values)
        )
        document_id = result.inserted_primary_key[0]
        if commit:
            self.session.commit()
        return self._load_document(document_id)

    def list_versions(
        self,
        order_id: int,
        doc_type: Optional[str] = None,
        include_deleted: bool = False,
    ) -> List[OrderDocument]:
        """Full history, newest first."""
        query = (
            select(OrderDocument)
            .options(*self.capabilities.document_load_options())
            .where(OrderDocument.order_id == order_id)
        )
        if doc_type:
            query = query.where(OrderDocument.type == doc_type)
        if not include_deleted:
            query = query.where(OrderDocument.deleted_at.is_(None))
        query = query.order_by(OrderDocument.created_at.desc(), OrderDocument.id.desc())
        return list(self.session.exec(query).all())

    def list_latest_by_type(self, order_id: int) -> Dict[str, OrderDocument]:
        latest: Dict[str, OrderDocument] = {}
        for document in self.list_versions(order_id):
            latest.setdefault(document.type, document)
        return latest

    def blob_target(self, document: OrderDocument) -> str:
        if self.capabilities.supports_blob_pathname() and document.blob_pathname:
            return document.blob_pathname
        return document.blob_url

    def get_document(self, document_id: int, order_id: Optional[int] = None) -> OrderDocument:
        document = self._load_document(document_id)
        if document is None or (order_id is not None and document.order_id != order_id):
            raise NotFound("Document does not exist.")
        return document

    def delete_version(self, document_id: int, order_id: Optional[int] = None) -> None:
        """Hard-delete one version, then remove its blob on a best-effort basis."""
        document = self.get_document(document_id, order_id)
        target = self.blob_target(document)
        owner_id = document.order_id

        try:
            if self.capabilities.supports_archive():
                self.session.exec(delete(ArchiveEntry).where(ArchiveEntry.document_id == document_id))
            self.session.exec(delete(OrderDocument).where(OrderDocument.id == document_id))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Deleted document %s of order %s", document_id, owner_id)
        if self.blob_storage is not None:
            delete_blobs_best_effort(self.blob_storage, [target])

    # Generation

    def generate_document(self, order_id: int, doc_type: str) -> OrderDocument:
        """Render, store and register a new numbered version in one commit."""
        if doc_type not in GENERATED_DOCUMENT_TYPES:
            raise ValidationFailed("Documents of this type cannot be generated.")
        if self.blob_storage is None:
            raise RuntimeError("Document generation requires blob storage")

        orders = OrderService(self.session, capabilities=self.capabilities)
        order = orders.get_order(order_id)
        order_data = orders.to_read(order, orders.get_order_items(order_id)).model_dump()

        stored: Optional[StoredBlob] = None
        try:
            document_number = self.allocate_document_number(doc_type)
            version = self._live_version_count(order_id, doc_type) + 1
            filename = build_filename(doc_type, order_data["order_number"], version, self.renderer.extension)
            data = self.renderer.render(
                DOCUMENT_TITLES[doc_type], order_data, order_data["items"], document_number
            )
            stored = self.blob_storage.put(
                f"orders/{order_data['order_number']}/{filename}", data, self.renderer.content_type
            )
            document = self.record_document(
                order_id,
                doc_type,
                stored.url,
                filename,
                document_number=document_number,
                pathname=stored.pathname,
                commit=False,
            )
            document_id = document.id
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("Generating %s for order %s failed", doc_type, order_id)
            if stored is not None:
                delete_blobs_best_effort(self.blob_storage, [stored.pathname])
            raise

        logger.info("Generated %s %s for order %s", doc_type, document_number, order_id)
        return self._load_document(document_id)

    # Attachments

    def record_attachment(
        self,
        order_id: int,
        url: str,
        filename: str,
        pathname: Optional[str] = None,
        attachment_type: str = "purchase_order",
    ) -> OrderAttachment:
        attachment = OrderAttachment(
            order_id=order_id,
            attachment_type=attachment_type,
            filename=filename,
            blob_url=url,
            blob_pathname=pathname,
        )
        self.session.add(attachment)
        self.session.commit()
        self.session.refresh(attachment)
        return attachment

    def upload_attachment(
        self,
        order_id: int,
        filename: str,
        data: bytes,
        content_type: Optional[str] = None,
    ) -> OrderAttachment:
        """Store a buyer-supplied purchase order PDF as a new attachment version."""
        is_pdf = content_type == PDF_CONTENT_TYPE or (filename or "").lower().endswith(".pdf")
        if not is_pdf:
            raise ValidationFailed("Only PDF files are accepted.")
        if not data:
            raise ValidationFailed("Uploaded file is empty.")
        if self.blob_storage is None:
            raise RuntimeError("Attachment upload requires blob storage")

        order = OrderService(self.session, capabilities=self.capabilities).get_order(order_id)
        version = len(self.list_attachments(order_id)) + 1
        stored_name = build_filename("purchase_order", order.order_number, version)
        original_name = re.sub(r"[^A-Za-z0-9._-]", "_", PurePosixPath(filename or "upload.pdf").name)

        stored = self.blob_storage.put(
            f"orders/{order.order_number}/{stored_name}", data, PDF_CONTENT_TYPE
        )
        try:
            attachment = self.record_attachment(
                order_id, stored.url, original_name, pathname=stored.pathname
            )
        except Exception:
            self.session.rollback()
            delete_blobs_best_effort(self.blob_storage, [stored.pathname])
            raise

        logger.info("Stored purchase order %s for order %s", stored.pathname, order_id)
        return attachment

    def list_attachments(self, order_id: int) -> List[OrderAttachment]:
        return list(
            self.session.exec(
                select(OrderAttachment)
                .where(OrderAttachment.order_id == order_id)
                .order_by(OrderAttachment.created_at.desc(), OrderAttachment.id.desc())
            ).all()
        )

    # Response shapes

    @staticmethod
    def to_read(document: OrderDocument) -> DocumentRead:
        return DocumentRead(
            id=document.id,
            order_id=document.order_id,
            type=document.type,
            filename=document.filename,
            url=document.blob_url,
            document_number=document.document_number,
            created_at=document.created_at,
        )

    @staticmethod
    def attachment_to_read(attachment: OrderAttachment) -> AttachmentRead:
        return AttachmentRead(
            id=attachment.id,
            order_id=attachment.order_id,
            attachment_type=attachment.attachment_type,
            filename=attachment.filename,
            url=attachment.blob_url,
            created_at=attachment.created_at,
        )

    def overview(self, order_id: int) -> OrderDocumentsResponse:
        versions = self.list_versions(order_id)
        latest: Dict[str, DocumentRead] = {}
        for document in versions:
            if document.type not in latest:
                latest[document.type] = self.to_read(document)
        return OrderDocumentsResponse(
            latest=latest,
            versions=[self.to_read(document) for document in versions],
            attachments=[self.attachment_to_read(a) for a in self.list_attachments(order_id)],
        )
