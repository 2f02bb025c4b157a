"""Table models are imported here so SQLModel.metadata sees all of them."""

from .archive import ArchiveEntry
from .documents import DocumentCounter, OrderAttachment, OrderDocument
from .orders import Order, OrderItem, PaymentLog
