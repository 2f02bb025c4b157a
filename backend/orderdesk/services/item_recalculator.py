"""Order totals from line items.

Rounding is half-up to cents at the line, subtotal, tax and total level, in
that order, so repeated recalculations of the same items never drift.
"""

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, List, Optional, Sequence

from orderdesk.core.config import settings
from orderdesk.core.exceptions import ValidationFailed

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def round2(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Any, field_name: str) -> Decimal:
    """Coerce request numbers, accepting a decimal comma."""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip().replace(",", "."))
        except InvalidOperation:
            raise ValidationFailed(f"{field_name} must be a number.")
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif value is None:
        result = Decimal("0")
    else:
        raise ValidationFailed(f"{field_name} must be a number.")
    if not result.is_finite():
        raise ValidationFailed(f"{field_name} must be a number.")
    return result


@dataclass(frozen=True)
class PricedLine:
    """A validated item with its rounded line total."""

    sku: str
    name: str
    unit: Any
    quantity: int
    unit_price: Decimal
    discount_percentage: Decimal
    line_total: Decimal


@dataclass(frozen=True)
class Totals:
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal
    lines: List[PricedLine] = field(default_factory=list)

    @property
    def line_totals(self) -> List[Decimal]:
        return [line.line_total for line in self.lines]

    def as_dict(self) -> dict:
        return {
            "subtotal": self.subtotal,
            "tax": self.tax,
            "shipping": self.shipping,
            "total": self.total,
        }


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def price_line(item: Any) -> PricedLine:
    """Validate one item and compute its line total."""
    sku = str(_field(item, "sku") or "").strip()
    name = str(_field(item, "name") or "").strip()
    if not sku or not name:
        raise ValidationFailed("Item is missing its SKU or name.")

    raw_quantity = _field(item, "quantity")
    if isinstance(raw_quantity, bool) or not isinstance(raw_quantity, (int, Decimal, str, float)):
        raise ValidationFailed("Quantity must be at least 1.")
    quantity = to_decimal(raw_quantity, "Quantity")
    if quantity < 1 or quantity != quantity.to_integral_value():
        raise ValidationFailed("Quantity must be at least 1.")

    unit_price = to_decimal(_field(item, "unit_price", 0), "Unit price")
    if unit_price < 0:
        raise ValidationFailed("Unit price must not be negative.")

    discount = to_decimal(_field(item, "discount_percentage", 0), "Discount")
    if discount < 0 or discount > HUNDRED:
        raise ValidationFailed("Discount must be between 0 and 100 %.")

    line_base = quantity * unit_price
    line_discount = line_base * discount / HUNDRED
    if line_discount > line_base:
        raise ValidationFailed("Discount must not exceed the item value.")

    unit = _field(item, "unit")
    if isinstance(unit, str):
        unit = unit.strip() or None
    else:
        unit = None

    return PricedLine(
        sku=sku,
        name=name,
        unit=unit,
        quantity=int(quantity),
        unit_price=round2(unit_price),
        discount_percentage=discount,
        line_total=round2(line_base - line_discount),
    )


def recalculate(
    items: Sequence[Any],
    shipping: Any = 0,
    tax_rate: Optional[Decimal] = None,
) -> Totals:
    """Derive subtotal, tax, shipping and total for a list of items.

    Items may be dicts or objects exposing sku, name, unit, quantity,
    unit_price and discount_percentage. Raises ValidationFailed before any
    arithmetic result is returned.
    """
    if not items:
        raise ValidationFailed("An order must contain at least one item.")

    rate = settings.TAX_RATE if tax_rate is None else Decimal(str(tax_rate))
    shipping_amount = to_decimal(shipping, "Shipping")
    if shipping_amount < 0:
        raise ValidationFailed("Shipping must not be negative.")
    shipping_amount = round2(shipping_amount)

    lines = [price_line(item) for item in items]

    subtotal = round2(sum((line.line_total for line in lines), Decimal("0")))
    tax = round2(subtotal * rate)
    total = round2(subtotal + tax + shipping_amount)

    return Totals(subtotal=subtotal, tax=tax, shipping=shipping_amount, total=total, lines=lines)
