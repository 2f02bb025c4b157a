"""Soft-delete archive with a bounded recovery window."""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import delete, update
from sqlmodel import Session, select

from orderdesk.core.config import settings
from orderdesk.core.exceptions import NotFound, ValidationFailed
from orderdesk.models.archive import ARCHIVE_ITEM_TYPES, ArchiveEntry, ArchiveEntryRead
from orderdesk.models.documents import OrderAttachment, OrderDocument
from orderdesk.models.orders import Order, OrderItem, PaymentLog, utcnow
from orderdesk.services.blob_storage import BlobStorage, delete_blobs_best_effort
from orderdesk.services.schema_capabilities import SchemaCapabilities

logger = logging.getLogger(__name__)


def _target_value(target: Any, name: str) -> Any:
    if isinstance(target, dict):
        return target.get(name)
    return getattr(target, name, None)


class ArchiveService:
    """Service for archiving, restoring and purging orders and documents."""

    def __init__(
        self,
        session: Session,
        blob_storage: Optional[BlobStorage] = None,
        capabilities: Optional[SchemaCapabilities] = None,
    ):
        self.session = session
        self.blob_storage = blob_storage
        self.capabilities = capabilities or SchemaCapabilities.full()
        self.retention = timedelta(days=settings.ARCHIVE_RETENTION_DAYS)

    def find_entry(
        self,
        item_type: str,
        order_id: Optional[int] = None,
        document_id: Optional[int] = None,
    ) -> Optional[ArchiveEntry]:
        if not self.capabilities.supports_archive():
            return None
        query = select(ArchiveEntry).where(ArchiveEntry.item_type == item_type)
        if item_type == "order":
            query = query.where(ArchiveEntry.order_id == order_id)
        else:
            query = query.where(ArchiveEntry.document_id == document_id)
        return self.session.exec(query.order_by(ArchiveEntry.id.desc())).first()

    # Soft delete

    def soft_delete(self, item_type: str, item_id: int, now: Optional[datetime] = None) -> ArchiveEntry:
        """Mark a row deleted and record an archive entry for it.

        Deleting an already deleted row returns its existing entry. Without an
        archive table the row is still marked deleted and the returned entry
        is not stored.
        """
        if item_type not in ARCHIVE_ITEM_TYPES:
            raise ValidationFailed("Unknown archive item type.")
        now = now or utcnow()

        try:
            if item_type == "order":
                entry = self._archive_order(item_id, now)
            else:
                entry = self._archive_document(item_id, now)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        if not self.capabilities.supports_archive():
            logger.warning("No archive table, %s %s marked deleted without an entry", item_type, item_id)
            return entry

        self.session.refresh(entry)
        logger.info("Archived %s %s as entry %s", item_type, item_id, entry.id)
        return entry

    def _archive_order(self, order_id: int, now: datetime) -> ArchiveEntry:
        order = self.session.exec(
            select(Order).options(*self.capabilities.order_load_options()).where(Order.id == order_id)
        ).first()
        if order is None:
            raise NotFound("Order does not exist.")

        if order.deleted_at is not None:
            existing = self.find_entry("order", order_id=order_id)
            if existing is not None:
                return existing
        else:
            order.deleted_at = now
            self.session.add(order)

        buyer = order.organization_name or order.institution_name or order.contact_name
        entry = ArchiveEntry(
            item_type="order",
            order_id=order_id,
            label=f"{order.order_number} - {buyer}" if buyer else order.order_number,
            payload={
                "order_number": order.order_number,
                "customer_type": order.customer_type,
                "contact_name": order.contact_name,
                "email": order.email,
                "total": str(order.total),
                "status": order.status,
            },
            deleted_at=now,
            expires_at=now + self.retention,
        )
        if not self.capabilities.supports_archive():
            return entry
        self.session.add(entry)
        self.session.flush()

        # Documents already in the archive move under the order entry
        self.session.exec(
            update(ArchiveEntry)
            .where(
                ArchiveEntry.item_type == "pdf",
                ArchiveEntry.order_id == order_id,
                ArchiveEntry.parent_entry_id.is_(None),
            )
            .values(parent_entry_id=entry.id)
        )
        return entry

    def _archive_document(self, document_id: int, now: datetime) -> ArchiveEntry:
        document = self.session.exec(
            select(OrderDocument)
            .options(*self.capabilities.document_load_options())
            .where(OrderDocument.id == document_id)
        ).first()
        if document is None:
            raise NotFound("Document does not exist.")

        if document.deleted_at is not None:
            existing = self.find_entry("pdf", document_id=document_id)
            if existing is not None:
                return existing
        else:
            document.deleted_at = now
            self.session.add(document)

        parent = self.find_entry("order", order_id=document.order_id)
        entry = ArchiveEntry(
            item_type="pdf",
            order_id=document.order_id,
            document_id=document_id,
            parent_entry_id=parent.id if parent else None,
            label=document.filename,
            payload={
                "type": document.type,
                "filename": document.filename,
                "blob_url": document.blob_url,
                "document_number": document.document_number,
            },
            deleted_at=now,
            expires_at=now + self.retention,
        )
        if self.capabilities.supports_archive():
            self.session.add(entry)
            self.session.flush()
        return entry

    # Restore

    def restore(
        self,
        ids: Iterable[int] = (),
        targets: Iterable[Any] = (),
        include_children: bool = False,
    ) -> int:
        """Bring archived rows back; returns how many rows were restored.

        Child document entries of a restored order are detached and stay in
        the archive unless include_children is set. Targets restore rows by
        item type and id when they have no archive entry.
        """
        restored = 0
        # Entry ids cannot exist without the archive table
        entry_ids = ids if self.capabilities.supports_archive() else ()
        try:
            for entry_id in entry_ids:
                entry = self.session.get(ArchiveEntry, entry_id)
                if entry is None:
                    continue
                restored += self._restore_entry(entry, include_children)

            for target in targets:
                item_type = _target_value(target, "item_type")
                order_id = _target_value(target, "order_id")
                document_id = _target_value(target, "document_id")
                if item_type not in ARCHIVE_ITEM_TYPES:
                    raise ValidationFailed("Unknown archive item type.")
                entry = self.find_entry(item_type, order_id=order_id, document_id=document_id)
                if entry is not None:
                    restored += self._restore_entry(entry, include_children)
                elif self._clear_deleted_at(item_type, order_id, document_id):
                    restored += 1

            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("Restored %d archived rows", restored)
        return restored

    def _restore_entry(self, entry: ArchiveEntry, include_children: bool) -> int:
        restored = 0
        children = self.session.exec(
            select(ArchiveEntry).where(ArchiveEntry.parent_entry_id == entry.id)
        ).all()
        for child in children:
            if include_children:
                restored += self._restore_entry(child, include_children=False)
            else:
                child.parent_entry_id = None
                self.session.add(child)
        self.session.flush()

        if self._clear_deleted_at(entry.item_type, entry.order_id, entry.document_id):
            restored += 1
        self.session.delete(entry)
        self.session.flush()
        return restored

    def _clear_deleted_at(
        self,
        item_type: str,
        order_id: Optional[int],
        document_id: Optional[int],
    ) -> bool:
        if item_type == "order":
            statement = update(Order).where(Order.id == order_id, Order.deleted_at.is_not(None))
        else:
            statement = update(OrderDocument).where(
                OrderDocument.id == document_id, OrderDocument.deleted_at.is_not(None)
            )
        result = self.session.exec(statement.values(deleted_at=None))
        return result.rowcount > 0

    # Purge

    def purge(self, ids: Iterable[int]) -> int:
        """Permanently remove archived rows, one transaction per entry.

        Blob deletion follows each commit and never undoes it. Unknown ids
        are skipped.
        """
        if not self.capabilities.supports_archive():
            return 0

        purged = 0
        for entry_id in ids:
            entry = self.session.get(ArchiveEntry, entry_id)
            if entry is None:
                continue
            try:
                blob_targets = self._purge_entry(entry)
                self.session.commit()
            except Exception:
                self.session.rollback()
                logger.exception("Purge of archive entry %s rolled back", entry_id)
                raise

            purged += 1
            if blob_targets and self.blob_storage is not None:
                delete_blobs_best_effort(self.blob_storage, blob_targets)

        logger.info("Purged %d archive entries", purged)
        return purged

    def _blob_target(self, row: Any) -> str:
        if isinstance(row, OrderDocument) and not self.capabilities.supports_blob_pathname():
            return row.blob_url
        return row.blob_pathname or row.blob_url

    def _purge_entry(self, entry: ArchiveEntry) -> List[str]:
        entry_id = entry.id
        order_id = entry.order_id

        if entry.item_type == "order":
            documents = self.session.exec(
                select(OrderDocument)
                .options(*self.capabilities.document_load_options())
                .where(OrderDocument.order_id == order_id)
            ).all()
            attachments = self.session.exec(
                select(OrderAttachment).where(OrderAttachment.order_id == order_id)
            ).all()
            blob_targets = [self._blob_target(row) for row in list(documents) + list(attachments)]

            self.session.exec(delete(OrderItem).where(OrderItem.order_id == order_id))
            self.session.exec(delete(OrderAttachment).where(OrderAttachment.order_id == order_id))
            self.session.exec(delete(OrderDocument).where(OrderDocument.order_id == order_id))
            if self.capabilities.supports_payment_log():
                self.session.exec(delete(PaymentLog).where(PaymentLog.order_id == order_id))
            self.session.exec(delete(ArchiveEntry).where(ArchiveEntry.parent_entry_id == entry_id))
            self.session.exec(
                delete(ArchiveEntry).where(ArchiveEntry.order_id == order_id, ArchiveEntry.id != entry_id)
            )
            self.session.exec(delete(ArchiveEntry).where(ArchiveEntry.id == entry_id))
            self.session.exec(delete(Order).where(Order.id == order_id))
            return blob_targets

        document = self.session.exec(
            select(OrderDocument)
            .options(*self.capabilities.document_load_options())
            .where(OrderDocument.id == entry.document_id)
        ).first()
        blob_targets = [self._blob_target(document)] if document is not None else []
        if document is not None:
            self.session.exec(delete(OrderDocument).where(OrderDocument.id == document.id))
        self.session.exec(delete(ArchiveEntry).where(ArchiveEntry.id == entry_id))
        return blob_targets

    def sweep_expired(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """Purge entries whose recovery window has passed."""
        if not self.capabilities.supports_archive():
            return 0
        now = now or utcnow()
        limit = limit or settings.ARCHIVE_SWEEP_LIMIT
        expired_ids = self.session.exec(
            select(ArchiveEntry.id)
            .where(ArchiveEntry.expires_at <= now)
            .order_by(ArchiveEntry.expires_at, ArchiveEntry.id)
            .limit(limit)
        ).all()
        if not expired_ids:
            return 0
        logger.info("Sweeping %d expired archive entries", len(expired_ids))
        return self.purge(list(expired_ids))

    # Listing

    def list_entries(self, item_type: Optional[str] = None) -> List[ArchiveEntry]:
        if not self.capabilities.supports_archive():
            return []
        query = select(ArchiveEntry)
        if item_type:
            query = query.where(ArchiveEntry.item_type == item_type)
        query = query.order_by(ArchiveEntry.deleted_at.desc(), ArchiveEntry.id.desc())
        return list(self.session.exec(query).all())

    def list_grouped(self, item_type: Optional[str] = None) -> List[ArchiveEntryRead]:
        """Entries newest first, with document entries nested under their order."""
        entries = self.list_entries(item_type)
        listed_ids = {entry.id for entry in entries}

        children: Dict[int, List[ArchiveEntryRead]] = {}
        for entry in entries:
            if entry.parent_entry_id in listed_ids:
                children.setdefault(entry.parent_entry_id, []).append(self.to_read(entry))

        return [
            self.to_read(entry, children.get(entry.id, []))
            for entry in entries
            if entry.parent_entry_id not in listed_ids
        ]

    @staticmethod
    def to_read(entry: ArchiveEntry, children: Optional[List[ArchiveEntryRead]] = None) -> ArchiveEntryRead:
        return ArchiveEntryRead(
            id=entry.id,
            item_type=entry.item_type,
            order_id=entry.order_id,
            document_id=entry.document_id,
            parent_entry_id=entry.parent_entry_id,
            label=entry.label,
            payload=entry.payload,
            deleted_at=entry.deleted_at,
            expires_at=entry.expires_at,
            children=children or [],
        )
