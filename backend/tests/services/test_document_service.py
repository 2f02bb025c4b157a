import re
from datetime import datetime

import pytest
from sqlmodel import Session, select

from orderdesk.core.db import init_db
from orderdesk.core.exceptions import NotFound, ValidationFailed
from orderdesk.models.documents import DocumentCounter, OrderDocument
from orderdesk.models.orders import utcnow
from orderdesk.services.document_service import (
    DocumentService,
    build_filename,
    first_document_type,
)

from tests.utils.test_utils import create_test_order


class FailingRenderer:
    content_type = "application/pdf"
    extension = "pdf"

    def render(self, title, order, items, document_number=None):
        raise RuntimeError("renderer crashed")


class TestDocumentHelpers:
    """Test cases for naming helpers."""

    def test_first_document_type(self):
        assert first_document_type("school") == "order_summary"
        assert first_document_type("company") == "pro_forma"
        assert first_document_type("individual") == "pro_forma"

    def test_build_filename(self):
        filename = build_filename(
            "delivery_note", "ORD-20250101-000001", 2, now=datetime(2025, 2, 3), suffix="abc123"
        )
        assert filename == "D-ORD-20250101-000001-2-20250203-abc123.pdf"


class TestDocumentRegistry:
    """Test cases for document versions."""

    def test_versions_append_and_latest_per_type(self, db: Session):
        order = create_test_order(db)
        service = DocumentService(db)

        first = service.record_document(order.id, "invoice", "http://x/1", "R-1.pdf")
        second = service.record_document(order.id, "invoice", "http://x/2", "R-2.pdf")
        note = service.record_document(order.id, "delivery_note", "http://x/3", "D-1.pdf")

        versions = service.list_versions(order.id, "invoice")
        assert [doc.id for doc in versions] == [second.id, first.id]

        latest = service.list_latest_by_type(order.id)
        assert latest["invoice"].id == second.id
        assert latest["delivery_note"].id == note.id

    def test_latest_ignores_soft_deleted(self, db: Session):
        order = create_test_order(db)
        service = DocumentService(db)
        first = service.record_document(order.id, "invoice", "http://x/1", "R-1.pdf")
        second = service.record_document(order.id, "invoice", "http://x/2", "R-2.pdf")

        second.deleted_at = utcnow()
        db.add(second)
        db.commit()

        assert service.list_latest_by_type(order.id)["invoice"].id == first.id

    def test_unknown_type_rejected(self, db: Session):
        order = create_test_order(db)
        with pytest.raises(ValidationFailed):
            DocumentService(db).record_document(order.id, "receipt", "http://x/1", "X.pdf")

    def test_delete_version_removes_only_that_row(self, db: Session, blob_storage):
        order = create_test_order(db)
        service = DocumentService(db, blob_storage)
        stored = blob_storage.put("orders/test/R-1.pdf", b"%PDF-1.4", "application/pdf")
        first = service.record_document(
            order.id, "invoice", stored.url, "R-1.pdf", pathname=stored.pathname
        )
        second = service.record_document(order.id, "invoice", "http://x/2", "R-2.pdf")

        service.delete_version(first.id, order.id)

        remaining = db.exec(select(OrderDocument)).all()
        assert [doc.id for doc in remaining] == [second.id]
        assert not (blob_storage.root_dir / stored.pathname).exists()

    def test_delete_version_checks_order(self, db: Session):
        order = create_test_order(db)
        other = create_test_order(db)
        service = DocumentService(db)
        document = service.record_document(order.id, "invoice", "http://x/1", "R-1.pdf")

        with pytest.raises(NotFound):
            service.delete_version(document.id, other.id)

    def test_delete_version_survives_blob_failure(self, db: Session):
        class BrokenStorage:
            def put(self, path, data, content_type):
                raise AssertionError("not used")

            def delete(self, path_or_url):
                raise OSError("storage offline")

        order = create_test_order(db)
        service = DocumentService(db, BrokenStorage())
        document = service.record_document(order.id, "invoice", "http://x/1", "R-1.pdf")

        service.delete_version(document.id)

        assert db.exec(select(OrderDocument)).first() is None


class TestDocumentNumbering:
    """Test cases for the per-type counters."""

    def test_numbers_increase_per_type(self, db: Session):
        service = DocumentService(db)

        assert service.allocate_document_number("delivery_note") == "DOB-00001"
        assert service.allocate_document_number("delivery_note") == "DOB-00002"
        assert service.allocate_document_number("invoice") == "RAC-00001"
        db.commit()

        counter = db.get(DocumentCounter, "delivery_note")
        assert counter.next_number == 3

    def test_seeded_counters_are_used(self, db: Session):
        init_db(db)

        assert db.get(DocumentCounter, "invoice").next_number == 1
        assert DocumentService(db).allocate_document_number("invoice") == "RAC-00001"
        db.commit()

        init_db(db)
        assert db.get(DocumentCounter, "invoice").next_number == 2

    def test_existing_counter_continues(self, db: Session):
        db.add(DocumentCounter(counter_name="pro_forma", next_number=41))
        db.commit()

        assert DocumentService(db).allocate_document_number("pro_forma") == "PRE-00041"

    def test_purchase_orders_are_not_numbered(self, db: Session):
        with pytest.raises(ValidationFailed):
            DocumentService(db).allocate_document_number("purchase_order")


class TestDocumentGeneration:
    """Test cases for rendering and storing documents."""

    def test_generate_document(self, db: Session, blob_storage):
        order = create_test_order(db)
        service = DocumentService(db, blob_storage)

        document = service.generate_document(order.id, "pro_forma")

        assert document.document_number == "PRE-00001"
        assert re.fullmatch(rf"P-{order.order_number}-1-\d{{8}}-[0-9a-f]{{6}}\.txt", document.filename)
        assert document.blob_url.startswith("http://testserver/uploads/orders/")
        content = (blob_storage.root_dir / document.blob_pathname).read_text(encoding="utf-8")
        assert order.order_number in content
        assert "Predračun PRE-00001" in content

    def test_version_counts_live_documents(self, db: Session, blob_storage):
        order = create_test_order(db)
        service = DocumentService(db, blob_storage)

        service.generate_document(order.id, "invoice")
        second = service.generate_document(order.id, "invoice")

        assert f"-{order.order_number}-2-" in second.filename
        assert second.document_number == "RAC-00002"

    def test_generation_failure_leaves_no_trace(self, db: Session, blob_storage):
        order = create_test_order(db)
        service = DocumentService(db, blob_storage, FailingRenderer())

        with pytest.raises(RuntimeError):
            service.generate_document(order.id, "invoice")

        assert db.exec(select(OrderDocument)).first() is None
        assert db.get(DocumentCounter, "invoice") is None

    def test_purchase_orders_cannot_be_generated(self, db: Session, blob_storage):
        order = create_test_order(db)
        with pytest.raises(ValidationFailed):
            DocumentService(db, blob_storage).generate_document(order.id, "purchase_order")

    def test_generate_for_missing_order(self, db: Session, blob_storage):
        with pytest.raises(NotFound):
            DocumentService(db, blob_storage).generate_document(404, "invoice")


class TestAttachments:
    """Test cases for uploaded purchase orders."""

    def test_upload_attachment(self, db: Session, blob_storage):
        order = create_test_order(db, customer_type="school")
        service = DocumentService(db, blob_storage)

        attachment = service.upload_attachment(
            order.id, "narocilnica 12.pdf", b"%PDF-1.7 data", "application/pdf"
        )

        assert attachment.attachment_type == "purchase_order"
        assert attachment.filename == "narocilnica_12.pdf"
        assert attachment.blob_pathname.split("/")[-1].startswith(f"N-{order.order_number}-1-")
        assert (blob_storage.root_dir / attachment.blob_pathname).read_bytes() == b"%PDF-1.7 data"

    def test_attachments_are_versioned(self, db: Session, blob_storage):
        order = create_test_order(db, customer_type="school")
        service = DocumentService(db, blob_storage)

        first = service.upload_attachment(order.id, "a.pdf", b"%PDF-1", "application/pdf")
        second = service.upload_attachment(order.id, "b.pdf", b"%PDF-2", "application/pdf")

        assert [a.id for a in service.list_attachments(order.id)] == [second.id, first.id]

    def test_non_pdf_rejected(self, db: Session, blob_storage):
        order = create_test_order(db)
        with pytest.raises(ValidationFailed):
            DocumentService(db, blob_storage).upload_attachment(
                order.id, "photo.png", b"\x89PNG", "image/png"
            )
