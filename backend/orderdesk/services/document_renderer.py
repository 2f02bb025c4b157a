"""Document renderer interface.

Byte-level layout is outside the ledger: a renderer receives the structured
order, its items and the allocated number, and returns opaque bytes.
"""

from typing import Any, Dict, List, Optional, Protocol


class DocumentRenderer(Protocol):
    content_type: str
    extension: str

    def render(
        self,
        title: str,
        order: Dict[str, Any],
        items: List[Dict[str, Any]],
        document_number: Optional[str] = None,
    ) -> bytes:
        ...


class PlainTextRenderer:
    """UTF-8 text rendition, used until a PDF renderer is wired in."""

    content_type = "text/plain; charset=utf-8"
    extension = "txt"

    def render(
        self,
        title: str,
        order: Dict[str, Any],
        items: List[Dict[str, Any]],
        document_number: Optional[str] = None,
    ) -> bytes:
        heading = f"{title} {document_number}" if document_number else title
        lines = [
            heading,
            f"Order: {order['order_number']}",
            f"Buyer: {order.get('organization_name') or order.get('institution_name') or order['contact_name']}",
            f"Email: {order['email']}",
            "",
        ]
        for item in items:
            lines.append(
                f"{item['sku']}  {item['name']}  {item['quantity']} x {item['unit_price']}"
                f"  -{item['discount_percentage']}%  = {item['line_total']}"
            )
        lines.extend(
            [
                "",
                f"Subtotal: {order['subtotal']}",
                f"Tax: {order['tax']}",
                f"Shipping: {order.get('shipping') or 0}",
                f"Total: {order['total']}",
            ]
        )
        return "\n".join(lines).encode("utf-8")
