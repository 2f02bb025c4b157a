"""Order ledger models: orders, line items and the payment event log."""

from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlmodel import Field, SQLModel

CUSTOMER_TYPES = ("individual", "company", "school")

ORDER_STATUSES = (
    "awaiting_payment",
    "awaiting_purchase_order",
    "received",
    "in_progress",
    "partially_sent",
    "sent",
    "finished",
    "cancelled",
)

PAYMENT_STATUSES = ("unpaid", "paid", "refunded", "cancelled")

ZERO = Decimal("0.00")


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every datetime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Order(SQLModel, table=True):
    """Customer order with denormalized buyer details and stored totals."""

    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_number: str = Field(unique=True, index=True)
    customer_type: str
    organization_name: Optional[str] = None
    institution_name: Optional[str] = None
    tax_id: Optional[str] = None
    contact_name: str
    email: str
    phone: Optional[str] = None
    delivery_address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    status: str = Field(default="received", index=True)
    payment_status: str = Field(default="unpaid")
    payment_notes: Optional[str] = None
    subtotal: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    tax: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    shipping: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    total: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    is_draft: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, index=True)
    updated_at: datetime = Field(default_factory=utcnow)
    deleted_at: Optional[datetime] = Field(default=None, index=True)


class OrderItem(SQLModel, table=True):
    """Line item snapshot belonging to exactly one order."""

    __tablename__ = "order_items"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    sku: str
    name: str
    unit: Optional[str] = None
    quantity: int = Field(default=1)
    unit_price: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)
    discount_percentage: Decimal = Field(default=ZERO, max_digits=5, decimal_places=2)
    line_total: Decimal = Field(default=ZERO, max_digits=12, decimal_places=2)


class PaymentLog(SQLModel, table=True):
    """Payment status transitions; the first 'paid' row drives lead-time analytics."""

    __tablename__ = "order_payment_logs"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    previous_status: Optional[str] = None
    new_status: str
    note: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


# Pydantic models for API requests/responses
class ItemInput(SQLModel):
    """Line item as submitted by checkout or the admin items editor."""
    id: Optional[int] = None
    sku: str = ""
    name: str = ""
    unit: Optional[str] = None
    quantity: int = 1
    unit_price: Decimal = Field(default=ZERO, alias="unitPrice")
    discount_percentage: Decimal = Field(default=ZERO, alias="discountPercentage")

    model_config = {"populate_by_name": True}


class BuyerInfo(SQLModel):
    """Buyer classification, contact and delivery fields."""
    customer_type: str = Field(alias="customerType")
    organization_name: Optional[str] = Field(default=None, alias="organizationName")
    institution_name: Optional[str] = Field(default=None, alias="institutionName")
    tax_id: Optional[str] = Field(default=None, alias="taxId")
    contact_name: str = Field(default="", alias="contactName")
    email: str = ""
    phone: Optional[str] = None
    delivery_address: Optional[str] = Field(default=None, alias="deliveryAddress")
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    city: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None

    model_config = {"populate_by_name": True}


class CheckoutRequest(BuyerInfo):
    """Public checkout submission."""
    items: List[ItemInput] = Field(default_factory=list)


class CheckoutResponse(SQLModel):
    """Result of a checkout submission."""
    order_id: int
    order_number: str
    document_url: str
    document_type: str


class OrderDetailsUpdate(SQLModel):
    """Partial update of buyer fields; blank values keep the stored value."""
    order_number: Optional[str] = Field(default=None, alias="orderNumber")
    customer_type: Optional[str] = Field(default=None, alias="customerType")
    organization_name: Optional[str] = Field(default=None, alias="organizationName")
    institution_name: Optional[str] = Field(default=None, alias="institutionName")
    tax_id: Optional[str] = Field(default=None, alias="taxId")
    contact_name: Optional[str] = Field(default=None, alias="contactName")
    email: Optional[str] = None
    phone: Optional[str] = None
    delivery_address: Optional[str] = Field(default=None, alias="deliveryAddress")
    postal_code: Optional[str] = Field(default=None, alias="postalCode")
    city: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None

    model_config = {"populate_by_name": True}


class ItemsEditRequest(SQLModel):
    """Admin items-edit payload."""
    shipping: Decimal = ZERO
    items: List[ItemInput] = Field(default_factory=list)


class StatusUpdateRequest(SQLModel):
    status: str
    note: Optional[str] = None


class TotalsResponse(SQLModel):
    subtotal: float
    tax: float
    shipping: float
    total: float


class OrderItemRead(SQLModel):
    id: int
    sku: str
    name: str
    unit: Optional[str] = None
    quantity: int
    unit_price: float
    discount_percentage: float
    line_total: float


class OrderRead(SQLModel):
    """Order as returned by the admin endpoints."""
    id: int
    order_number: str
    customer_type: str
    organization_name: Optional[str] = None
    institution_name: Optional[str] = None
    tax_id: Optional[str] = None
    contact_name: str
    email: str
    phone: Optional[str] = None
    delivery_address: Optional[str] = None
    postal_code: Optional[str] = None
    city: Optional[str] = None
    reference: Optional[str] = None
    notes: Optional[str] = None
    status: str
    payment_status: str
    payment_notes: Optional[str] = None
    subtotal: float
    tax: float
    shipping: Optional[float] = None
    total: float
    is_draft: Optional[bool] = None
    created_at: datetime
    deleted_at: Optional[datetime] = None
    items: List[OrderItemRead] = Field(default_factory=list)
