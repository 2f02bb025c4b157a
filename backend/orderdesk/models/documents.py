"""Generated documents, uploaded attachments and document numbering."""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from orderdesk.models.orders import utcnow

DOCUMENT_TYPES = ("order_summary", "pro_forma", "delivery_note", "invoice", "purchase_order")

# Types produced by the renderer; purchase orders only arrive as uploads
GENERATED_DOCUMENT_TYPES = ("order_summary", "pro_forma", "delivery_note", "invoice")

DOCUMENT_TITLES = {
    "order_summary": "Ponudba",
    "pro_forma": "Predračun",
    "delivery_note": "Dobavnica",
    "invoice": "Račun",
}

# Prefix of the global document number, e.g. DOB-00001
DOCUMENT_NUMBER_PREFIXES = {
    "order_summary": "PON",
    "pro_forma": "PRE",
    "delivery_note": "DOB",
    "invoice": "RAC",
}

# Short code leading generated filenames
DOCUMENT_FILE_CODES = {
    "order_summary": "PN",
    "purchase_order": "N",
    "delivery_note": "D",
    "pro_forma": "P",
    "invoice": "R",
}


class OrderDocument(SQLModel, table=True):
    """One immutable version of a document; rows are appended, never updated."""

    __tablename__ = "order_documents"
    __table_args__ = (
        Index("idx_order_documents_order_type_created", "order_id", "type", "created_at"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id")
    type: str
    filename: str
    blob_url: str
    blob_pathname: Optional[str] = None
    document_number: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = Field(default=None)


class OrderAttachment(SQLModel, table=True):
    """Buyer-uploaded file such as a school purchase order."""

    __tablename__ = "order_attachments"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    attachment_type: str = Field(default="purchase_order")
    filename: str
    blob_url: str
    blob_pathname: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class DocumentCounter(SQLModel, table=True):
    """Global per-type counter for document numbers."""

    __tablename__ = "document_counters"

    counter_name: str = Field(primary_key=True)
    next_number: int = Field(default=1)


# Pydantic models for API requests/responses
class DocumentRead(SQLModel):
    id: int
    order_id: int
    type: str
    filename: str
    url: str
    document_number: Optional[str] = None
    created_at: datetime


class AttachmentRead(SQLModel):
    id: int
    order_id: int
    attachment_type: str
    filename: str
    url: str
    created_at: datetime


class OrderDocumentsResponse(SQLModel):
    """Latest version per type plus the full history."""
    latest: Dict[str, DocumentRead] = Field(default_factory=dict)
    versions: List[DocumentRead] = Field(default_factory=list)
    attachments: List[AttachmentRead] = Field(default_factory=list)
