"""Order ledger service: orders, line items and stored totals."""

import logging
import re
import secrets
from datetime import date, datetime, time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from sqlalchemy import delete, insert, or_, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from orderdesk.core.config import settings
from orderdesk.core.exceptions import CreationFailed, NotFound, ValidationFailed
from orderdesk.models.archive import ArchiveEntry
from orderdesk.models.orders import (
    CUSTOMER_TYPES,
    ORDER_STATUSES,
    PAYMENT_STATUSES,
    ZERO,
    Order,
    OrderItem,
    OrderItemRead,
    OrderRead,
    PaymentLog,
    utcnow,
)
from orderdesk.services.archive_service import ArchiveService
from orderdesk.services.item_recalculator import PricedLine, Totals, recalculate
from orderdesk.services.schema_capabilities import SchemaCapabilities

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "ORD"

BUYER_FIELDS = (
    "customer_type",
    "organization_name",
    "institution_name",
    "tax_id",
    "contact_name",
    "email",
    "phone",
    "delivery_address",
    "postal_code",
    "city",
    "reference",
    "notes",
)

DETAIL_FIELDS = ("order_number",) + BUYER_FIELDS

_SUFFIX_PATTERN = re.compile(r"(\d+)$")


def generate_order_number(now: Optional[datetime] = None) -> str:
    """Date-stamped order number with a random numeric suffix."""
    stamp = (now or utcnow()).strftime("%Y%m%d")
    return f"{ORDER_NUMBER_PREFIX}-{stamp}-{secrets.randbelow(900000) + 100000}"


def order_number_suffix(order_number: str) -> int:
    """Trailing digits of an order number, -1 when there are none."""
    match = _SUFFIX_PATTERN.search(order_number or "")
    return int(match.group(1)) if match else -1


def _clean(value: Any) -> Any:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


def _as_dict(data: Any) -> Dict[str, Any]:
    if data is None:
        return {}
    if isinstance(data, dict):
        return dict(data)
    return data.model_dump()


def validate_buyer(buyer: Any) -> Dict[str, Any]:
    """Normalize buyer fields and enforce the per-type requirements."""
    data = _as_dict(buyer)
    values = {field_name: _clean(data.get(field_name)) for field_name in BUYER_FIELDS}

    customer_type = values["customer_type"]
    if customer_type not in CUSTOMER_TYPES:
        raise ValidationFailed("Unknown customer type.")
    if not values["contact_name"] or not values["email"]:
        raise ValidationFailed("Contact name and email are required.")
    if "@" not in values["email"]:
        raise ValidationFailed("Email address is not valid.")
    if customer_type == "company" and not values["organization_name"]:
        raise ValidationFailed("Company orders require an organization name.")
    if customer_type == "school" and not values["institution_name"]:
        raise ValidationFailed("School orders require an institution name.")
    return values


def _day_start(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _day_end(value: Union[date, datetime]) -> datetime:
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.max)


class OrderService:
    """Service for creating, editing and listing orders."""

    def __init__(
        self,
        session: Session,
        capabilities: Optional[SchemaCapabilities] = None,
        number_factory: Optional[Callable[[], str]] = None,
    ):
        self.session = session
        self.capabilities = capabilities or SchemaCapabilities.full()
        self.number_factory = number_factory or generate_order_number
        self.max_attempts = settings.ORDER_NUMBER_RETRIES

    # Creation

    def create_order(
        self,
        buyer: Any,
        items: Sequence[Any],
        shipping: Any = 0,
        commit: bool = True,
    ) -> Order:
        """Validate, price and persist an order with its items atomically.

        With ``commit=False`` the rows are flushed and the caller owns the
        transaction; the order must then be the first write in it.
        """
        values = validate_buyer(buyer)
        totals = recalculate(items, shipping)

        if values["customer_type"] == "school":
            values["status"] = "awaiting_purchase_order"
        else:
            values["status"] = "awaiting_payment"
        values["is_draft"] = False

        order_id = self._insert_with_unique_number(values, totals, commit)
        logger.info("Created order %s with %d items", order_id, len(totals.lines))
        return self.get_order(order_id)

    def create_draft_order(self) -> Order:
        """Empty admin draft, completed later through update_order_details."""
        values = {
            "customer_type": "individual",
            "contact_name": "",
            "email": "",
            "status": "received",
            "is_draft": True,
        }
        totals = Totals(subtotal=ZERO, tax=ZERO, shipping=ZERO, total=ZERO)
        order_id = self._insert_with_unique_number(values, totals)
        logger.info("Created draft order %s", order_id)
        return self.get_order(order_id)

    def _insert_with_unique_number(
        self, values: Dict[str, Any], totals: Totals, commit: bool = True
    ) -> int:
        for attempt in range(1, self.max_attempts + 1):
            order_number = self.number_factory()
            try:
                order_id = self._insert_order(order_number, values, totals)
                self._insert_items(order_id, totals.lines)
                if commit:
                    self.session.commit()
                return order_id
            except IntegrityError:
                self.session.rollback()
                if not self._order_number_taken(order_number):
                    raise
                logger.warning(
                    "Order number %s already taken (attempt %d/%d)",
                    order_number,
                    attempt,
                    self.max_attempts,
                )
            except Exception:
                self.session.rollback()
                raise

        logger.error("Order creation failed after %d attempts", self.max_attempts)
        raise CreationFailed("Could not allocate a unique order number. Please try again.")

    def _insert_order(self, order_number: str, values: Dict[str, Any], totals: Totals) -> int:
        now = utcnow()
        row = dict(values)
        row.update(
            order_number=order_number,
            payment_status="unpaid",
            subtotal=totals.subtotal,
            tax=totals.tax,
            shipping=totals.shipping,
            total=totals.total,
            created_at=now,
            updated_at=now,
        )
        result = self.session.exec(
            insert(self.capabilities.insert_table(Order.__table__)).values(
                **self.capabilities.writable("orders", row)
            )
        )
        return result.inserted_primary_key[0]

    def _insert_items(self, order_id: int, lines: Sequence[PricedLine]) -> None:
        self.session.add_all(
            [
                OrderItem(
                    order_id=order_id,
                    sku=line.sku,
                    name=line.name,
                    unit=line.unit,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    discount_percentage=line.discount_percentage,
                    line_total=line.line_total,
                )
                for line in lines
            ]
        )
        self.session.flush()

    def _order_number_taken(self, order_number: str, exclude_id: Optional[int] = None) -> bool:
        query = select(Order.id).where(Order.order_number == order_number)
        if exclude_id is not None:
            query = query.where(Order.id != exclude_id)
        return self.session.exec(query).first() is not None

    # Reads

    def get_order(self, order_id: int, include_deleted: bool = False) -> Order:
        order = self.session.exec(
            select(Order)
            .options(*self.capabilities.order_load_options())
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        ).first()
        if order is None or (order.deleted_at is not None and not include_deleted):
            raise NotFound("Order does not exist.")
        return order

    def get_order_items(self, order_id: int) -> List[OrderItem]:
        return list(
            self.session.exec(
                select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id)
            ).all()
        )

    def fetch_orders(
        self,
        status: Optional[str] = None,
        customer_type: Optional[str] = None,
        date_from: Optional[Union[date, datetime]] = None,
        date_to: Optional[Union[date, datetime]] = None,
        search: Optional[str] = None,
        include_drafts: bool = False,
        include_deleted: bool = False,
    ) -> List[Order]:
        """Orders matching the filters, newest first.

        Orders created in the same instant are ordered by the numeric suffix
        of their order number, highest first.
        """
        query = select(Order).options(*self.capabilities.order_load_options())

        if not include_deleted:
            query = query.where(Order.deleted_at.is_(None))
        if not include_drafts and self.capabilities.supports_draft_flag():
            query = query.where(Order.is_draft == False)  # noqa: E712
        if status:
            query = query.where(Order.status == status)
        if customer_type:
            query = query.where(Order.customer_type == customer_type)
        if date_from is not None:
            query = query.where(Order.created_at >= _day_start(date_from))
        if date_to is not None:
            query = query.where(Order.created_at <= _day_end(date_to))
        if search and search.strip():
            pattern = f"%{search.strip()}%"
            query = query.where(
                or_(
                    Order.order_number.ilike(pattern),
                    Order.contact_name.ilike(pattern),
                    Order.email.ilike(pattern),
                    Order.organization_name.ilike(pattern),
                    Order.institution_name.ilike(pattern),
                )
            )

        orders = self.session.exec(query).all()
        return sorted(
            orders,
            key=lambda order: (order.created_at, order_number_suffix(order.order_number)),
            reverse=True,
        )

    def to_read(self, order: Order, items: Optional[List[OrderItem]] = None) -> OrderRead:
        """Response model that never touches columns the schema lacks."""
        return OrderRead(
            id=order.id,
            order_number=order.order_number,
            customer_type=order.customer_type,
            organization_name=order.organization_name,
            institution_name=order.institution_name,
            tax_id=order.tax_id,
            contact_name=order.contact_name,
            email=order.email,
            phone=order.phone,
            delivery_address=order.delivery_address,
            postal_code=order.postal_code,
            city=order.city,
            reference=order.reference,
            notes=order.notes,
            status=order.status,
            payment_status=order.payment_status,
            payment_notes=order.payment_notes,
            subtotal=order.subtotal,
            tax=order.tax,
            shipping=order.shipping if self.capabilities.supports_shipping() else None,
            total=order.total,
            is_draft=order.is_draft if self.capabilities.supports_draft_flag() else None,
            created_at=order.created_at,
            deleted_at=order.deleted_at,
            items=[
                OrderItemRead(
                    id=item.id,
                    sku=item.sku,
                    name=item.name,
                    unit=item.unit,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    discount_percentage=item.discount_percentage,
                    line_total=item.line_total,
                )
                for item in items or []
            ],
        )

    # Mutations

    def update_order_details(self, order_id: int, fields: Any) -> Order:
        """Partial update; blank values keep what is stored."""
        order = self.get_order(order_id)
        data = _as_dict(fields)

        updates = {}
        for field_name in DETAIL_FIELDS:
            value = _clean(data.get(field_name))
            if value is not None:
                updates[field_name] = value

        merged = {field_name: getattr(order, field_name) for field_name in BUYER_FIELDS}
        merged.update({key: value for key, value in updates.items() if key in BUYER_FIELDS})
        validate_buyer(merged)

        new_number = updates.get("order_number")
        if new_number == order.order_number:
            updates.pop("order_number")
        elif new_number and self._order_number_taken(new_number, exclude_id=order_id):
            raise ValidationFailed("Order number is already in use.")

        updates["updated_at"] = utcnow()
        updates["is_draft"] = False
        if not self.capabilities.supports_draft_flag():
            logger.debug("Schema has no is_draft column, updating order %s without it", order_id)

        try:
            self.session.exec(
                update(Order)
                .where(Order.id == order_id)
                .values(**self.capabilities.writable("orders", updates))
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        return self.get_order(order_id)

    def replace_order_items(self, order_id: int, items: Sequence[Any], shipping: Any = 0) -> Totals:
        """Replace every item of an order and write the recomputed totals.

        Delete, insert and the totals update share one transaction; any failure
        leaves the previous items and totals untouched.
        """
        totals = recalculate(items, shipping)
        self.get_order(order_id)

        try:
            self.session.exec(delete(OrderItem).where(OrderItem.order_id == order_id))
            self._insert_items(order_id, totals.lines)
            values = self.capabilities.writable(
                "orders",
                {
                    "subtotal": totals.subtotal,
                    "tax": totals.tax,
                    "shipping": totals.shipping,
                    "total": totals.total,
                    "updated_at": utcnow(),
                },
            )
            self.session.exec(update(Order).where(Order.id == order_id).values(**values))
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.exception("Item replacement for order %s rolled back", order_id)
            raise

        logger.info("Replaced items of order %s, total %s", order_id, totals.total)
        return totals

    def update_status(self, order_id: int, status: str, note: Optional[str] = None) -> Order:
        status = (status or "").strip()
        if status not in ORDER_STATUSES:
            raise ValidationFailed("Unknown order status.")
        order = self.get_order(order_id)

        values = {"status": status, "updated_at": utcnow()}
        note = _clean(note)
        if note:
            values["notes"] = f"{order.notes or ''}\n[ADMIN] {note}"

        try:
            self.session.exec(update(Order).where(Order.id == order_id).values(**values))
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return self.get_order(order_id)

    def update_payment_status(self, order_id: int, status: str, note: Optional[str] = None) -> Order:
        """Change the payment axis and append a payment log event."""
        status = (status or "").strip()
        if status not in PAYMENT_STATUSES:
            raise ValidationFailed("Unknown payment status.")
        order = self.get_order(order_id)
        previous_status = order.payment_status
        note = _clean(note)

        try:
            self.session.exec(
                update(Order)
                .where(Order.id == order_id)
                .values(payment_status=status, payment_notes=note, updated_at=utcnow())
            )
            if self.capabilities.supports_payment_log():
                self.session.add(
                    PaymentLog(
                        order_id=order_id,
                        previous_status=previous_status,
                        new_status=status,
                        note=note,
                    )
                )
            else:
                logger.warning("Payment log table missing, transition of order %s not logged", order_id)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        return self.get_order(order_id)

    def delete_order(self, order_id: int) -> ArchiveEntry:
        """Soft delete through the archive; rows stay until purged."""
        return ArchiveService(self.session, capabilities=self.capabilities).soft_delete("order", order_id)
