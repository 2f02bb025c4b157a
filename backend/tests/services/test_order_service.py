import re
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import update
from sqlmodel import Session, select

from orderdesk.core.exceptions import CreationFailed, NotFound, ValidationFailed
from orderdesk.models.archive import ArchiveEntry
from orderdesk.models.orders import CheckoutRequest, Order, OrderItem, PaymentLog, utcnow
from orderdesk.services.order_service import (
    OrderService,
    generate_order_number,
    order_number_suffix,
)

from tests.utils.test_utils import create_test_buyer, create_test_item, create_test_order


def sequence(*numbers):
    remaining = iter(numbers)
    return lambda: next(remaining)


class TestOrderNumbers:
    """Test cases for order number helpers."""

    def test_generated_format(self):
        number = generate_order_number(datetime(2025, 3, 7, 12, 0))
        assert re.fullmatch(r"ORD-20250307-\d{6}", number)

    def test_suffix(self):
        assert order_number_suffix("ORD-20250307-000123") == 123
        assert order_number_suffix("manual") == -1


class TestCheckoutPayload:
    """Test cases for the public field names."""

    def test_camel_case_fields_validate(self):
        request = CheckoutRequest.model_validate(
            {
                "customerType": "company",
                "organizationName": "Pisarna d.o.o.",
                "contactName": "Ana Novak",
                "email": "ana@example.com",
                "postalCode": "1000",
                "items": [{"sku": "A", "name": "Pen", "quantity": 2, "unitPrice": "1.50"}],
            }
        )

        assert request.customer_type == "company"
        assert request.organization_name == "Pisarna d.o.o."
        assert request.postal_code == "1000"
        assert request.items[0].unit_price == Decimal("1.50")

    def test_naive_utc_timestamps_are_stored(self, db: Session):
        order = create_test_order(db)

        assert order.created_at.tzinfo is None
        assert abs((utcnow() - order.created_at).total_seconds()) < 60


class TestOrderServiceCreate:
    """Test cases for order creation."""

    def test_create_order_persists_items_and_totals(self, db: Session, order_numbers):
        service = OrderService(db, number_factory=order_numbers)
        items = [
            create_test_item(sku="A", quantity=2, unit_price="10.00"),
            create_test_item(sku="B", quantity=1, unit_price="5.00", discount_percentage="10"),
        ]

        order = service.create_order(create_test_buyer("company"), items, shipping="3.00")

        assert order.order_number == "ORD-20250101-000001"
        assert order.subtotal == Decimal("24.50")
        assert order.tax == Decimal("5.39")
        assert order.shipping == Decimal("3.00")
        assert order.total == Decimal("32.89")
        assert order.status == "awaiting_payment"
        assert order.payment_status == "unpaid"
        assert order.is_draft is False
        stored_items = service.get_order_items(order.id)
        assert [item.line_total for item in stored_items] == [Decimal("20.00"), Decimal("4.50")]

    def test_school_orders_wait_for_purchase_order(self, db: Session):
        order = create_test_order(db, customer_type="school")
        assert order.status == "awaiting_purchase_order"

    def test_retries_on_order_number_collision(self, db: Session):
        OrderService(db, number_factory=sequence("ORD-20250101-000001")).create_order(
            create_test_buyer(), [create_test_item()]
        )

        service = OrderService(
            db, number_factory=sequence("ORD-20250101-000001", "ORD-20250101-000002")
        )
        order = service.create_order(create_test_buyer(), [create_test_item()])

        assert order.order_number == "ORD-20250101-000002"
        assert len(db.exec(select(Order)).all()) == 2

    def test_collision_retries_exhausted(self, db: Session):
        OrderService(db, number_factory=sequence("ORD-20250101-000001")).create_order(
            create_test_buyer(), [create_test_item()]
        )
        service = OrderService(db, number_factory=lambda: "ORD-20250101-000001")

        with pytest.raises(CreationFailed):
            service.create_order(create_test_buyer(), [create_test_item(sku="NEW")])

        assert len(db.exec(select(Order)).all()) == 1
        assert db.exec(select(OrderItem).where(OrderItem.sku == "NEW")).first() is None

    @pytest.mark.parametrize(
        "changes",
        [
            {"customer_type": "company", "organization_name": None},
            {"customer_type": "school", "institution_name": None},
            {"contact_name": " "},
            {"email": ""},
            {"email": "not-an-address"},
            {"customer_type": "martian"},
        ],
    )
    def test_invalid_buyer_rejected(self, db: Session, changes):
        buyer = create_test_buyer(changes.get("customer_type", "company"))
        buyer.update(changes)

        with pytest.raises(ValidationFailed):
            OrderService(db).create_order(buyer, [create_test_item()])
        assert db.exec(select(Order)).first() is None

    def test_invalid_items_write_nothing(self, db: Session):
        with pytest.raises(ValidationFailed):
            OrderService(db).create_order(create_test_buyer(), [create_test_item(quantity=0)])
        assert db.exec(select(Order)).first() is None

    def test_create_draft_order(self, db: Session, order_numbers):
        service = OrderService(db, number_factory=order_numbers)
        draft = service.create_draft_order()

        assert draft.is_draft is True
        assert draft.status == "received"
        assert draft.total == Decimal("0.00")
        assert service.get_order_items(draft.id) == []


class TestOrderServiceEdit:
    """Test cases for editing orders."""

    def test_replace_items_recomputes_totals(self, db: Session):
        order = create_test_order(db)
        service = OrderService(db)

        totals = service.replace_order_items(
            order.id,
            [
                create_test_item(sku="A", quantity=2, unit_price="10.00"),
                create_test_item(sku="B", quantity=1, unit_price="5.00", discount_percentage="10"),
            ],
            shipping="3.00",
        )

        assert totals.total == Decimal("32.89")
        reloaded = service.get_order(order.id)
        assert reloaded.subtotal == Decimal("24.50")
        assert reloaded.total == Decimal("32.89")
        assert [item.sku for item in service.get_order_items(order.id)] == ["A", "B"]

    def test_replace_items_rolls_back_on_failure(self, db: Session, monkeypatch):
        order = create_test_order(db, items=[create_test_item(sku="KEEP", unit_price="7.00")])
        service = OrderService(db)

        def fail(order_id, lines):
            raise RuntimeError("insert failed")

        monkeypatch.setattr(service, "_insert_items", fail)

        with pytest.raises(RuntimeError):
            service.replace_order_items(order.id, [create_test_item(sku="NEW", unit_price="99.00")])

        items = service.get_order_items(order.id)
        assert [item.sku for item in items] == ["KEEP"]
        reloaded = service.get_order(order.id)
        assert reloaded.subtotal == Decimal("7.00")
        assert reloaded.total == Decimal("8.54")

    def test_replace_items_validates_before_writing(self, db: Session):
        order = create_test_order(db)
        service = OrderService(db)

        with pytest.raises(ValidationFailed):
            service.replace_order_items(order.id, [create_test_item(discount_percentage="120")])
        assert len(service.get_order_items(order.id)) == 1

    def test_replace_items_unknown_order(self, db: Session):
        with pytest.raises(NotFound):
            OrderService(db).replace_order_items(999, [create_test_item()])

    def test_update_details_ignores_blank_values(self, db: Session):
        order = create_test_order(db)
        service = OrderService(db)

        updated = service.update_order_details(
            order.id, {"contact_name": "  ", "city": "Maribor", "reference": "PO-77"}
        )

        assert updated.contact_name == "Ana Novak"
        assert updated.city == "Maribor"
        assert updated.reference == "PO-77"

    def test_update_details_finalizes_draft(self, db: Session, order_numbers):
        service = OrderService(db, number_factory=order_numbers)
        draft = service.create_draft_order()

        updated = service.update_order_details(draft.id, create_test_buyer("individual"))

        assert updated.is_draft is False
        assert updated.email == "ana@example.com"

    def test_update_details_rejects_taken_order_number(self, db: Session, order_numbers):
        service = OrderService(db, number_factory=order_numbers)
        first = service.create_order(create_test_buyer(), [create_test_item()])
        second = service.create_order(create_test_buyer(), [create_test_item()])

        with pytest.raises(ValidationFailed):
            service.update_order_details(second.id, {"order_number": first.order_number})

        renamed = service.update_order_details(second.id, {"order_number": "ORD-CUSTOM-1"})
        assert renamed.order_number == "ORD-CUSTOM-1"
        assert len(db.exec(select(Order)).all()) == 2

    def test_update_status(self, db: Session):
        order = create_test_order(db)
        service = OrderService(db)

        updated = service.update_status(order.id, "in_progress", note="Packed by Maja")

        assert updated.status == "in_progress"
        assert "[ADMIN] Packed by Maja" in updated.notes

    def test_update_status_rejects_unknown(self, db: Session):
        order = create_test_order(db)
        with pytest.raises(ValidationFailed):
            OrderService(db).update_status(order.id, "lost")

    def test_update_payment_status_logs_transition(self, db: Session):
        order = create_test_order(db)
        service = OrderService(db)

        updated = service.update_payment_status(order.id, "paid", note="Bank transfer")

        assert updated.payment_status == "paid"
        assert updated.payment_notes == "Bank transfer"
        log = db.exec(select(PaymentLog).where(PaymentLog.order_id == order.id)).one()
        assert log.previous_status == "unpaid"
        assert log.new_status == "paid"


class TestOrderServiceQueries:
    """Test cases for listing and lookup."""

    def test_fetch_orders_breaks_ties_by_number_suffix(self, db: Session):
        service = OrderService(
            db, number_factory=sequence("ORD-20250101-000009", "ORD-20250101-000010")
        )
        service.create_order(create_test_buyer(), [create_test_item()])
        service.create_order(create_test_buyer(), [create_test_item()])
        db.exec(update(Order).values(created_at=datetime(2025, 1, 1, 9, 0)))
        db.commit()

        numbers = [order.order_number for order in service.fetch_orders()]

        assert numbers == ["ORD-20250101-000010", "ORD-20250101-000009"]

    def test_fetch_orders_filters(self, db: Session):
        create_test_order(db, customer_type="school")
        create_test_order(db, customer_type="company")
        service = OrderService(db)
        service.create_draft_order()

        assert len(service.fetch_orders()) == 2
        assert len(service.fetch_orders(include_drafts=True)) == 3
        assert [o.customer_type for o in service.fetch_orders(customer_type="school")] == ["school"]
        assert len(service.fetch_orders(search="pisarna")) == 1
        assert service.fetch_orders(status="finished") == []

    def test_delete_order_archives_it(self, db: Session):
        order = create_test_order(db)
        service = OrderService(db)

        entry = service.delete_order(order.id)

        assert entry.item_type == "order"
        assert entry.order_id == order.id
        with pytest.raises(NotFound):
            service.get_order(order.id)
        assert service.get_order(order.id, include_deleted=True).deleted_at is not None
        assert service.fetch_orders() == []
        assert db.exec(select(ArchiveEntry)).one().id == entry.id
