"""Initialize services package."""

from .analytics_service import AnalyticsService
from .archive_service import ArchiveService
from .checkout_service import CheckoutService
from .document_service import DocumentService
from .order_service import OrderService
from .schema_capabilities import CapabilityCache, SchemaCapabilities, probe_capabilities
