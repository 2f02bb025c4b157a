"""Recovery ledger for soft-deleted orders and documents."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlmodel import JSON, Column, Field, SQLModel

from orderdesk.models.orders import utcnow

ARCHIVE_ITEM_TYPES = ("order", "pdf")


class ArchiveEntry(SQLModel, table=True):
    """One soft-deleted order or document, restorable until expires_at."""

    __tablename__ = "deleted_archive_entries"

    id: Optional[int] = Field(default=None, primary_key=True)
    item_type: str
    order_id: Optional[int] = Field(default=None, index=True)
    document_id: Optional[int] = Field(default=None, index=True)
    parent_entry_id: Optional[int] = Field(default=None, foreign_key="deleted_archive_entries.id")
    label: str
    payload: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    deleted_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime = Field(index=True)


# Pydantic models for API requests/responses
class ArchiveTarget(SQLModel):
    """Restore target for rows that have no archive entry id."""
    item_type: str
    order_id: Optional[int] = None
    document_id: Optional[int] = None


class ArchiveRestoreRequest(SQLModel):
    ids: List[int] = Field(default_factory=list)
    targets: List[ArchiveTarget] = Field(default_factory=list)
    include_children: bool = False


class ArchivePurgeRequest(SQLModel):
    ids: List[int] = Field(default_factory=list)


class ArchiveEntryRead(SQLModel):
    id: Optional[int] = None
    item_type: str
    order_id: Optional[int] = None
    document_id: Optional[int] = None
    parent_entry_id: Optional[int] = None
    label: str
    payload: Optional[Dict[str, Any]] = None
    deleted_at: datetime
    expires_at: datetime
    children: List["ArchiveEntryRead"] = Field(default_factory=list)


class ArchiveListResponse(SQLModel):
    entries: List[ArchiveEntryRead] = Field(default_factory=list)


class ArchiveMutationResponse(SQLModel):
    success: bool = True
    count: int = 0


ArchiveEntryRead.model_rebuild()
