"""Runtime detection of optional schema features.

Databases in the field are not always fully migrated. The probe inspects the
live schema once, and services branch on the resulting value object instead of
issuing statements that would fail on a missing column or table.
"""

import logging
import threading
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Column, MetaData, Table, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import defer

from orderdesk.models.documents import OrderDocument
from orderdesk.models.orders import Order

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SchemaCapabilities:
    """Which optional columns and tables exist in the connected schema."""

    draft_flag: bool = True
    shipping_column: bool = True
    blob_pathname: bool = True
    payment_log: bool = True
    archive_table: bool = True

    @classmethod
    def full(cls) -> "SchemaCapabilities":
        return cls()

    def supports_draft_flag(self) -> bool:
        return self.draft_flag

    def supports_shipping(self) -> bool:
        return self.shipping_column

    def supports_blob_pathname(self) -> bool:
        return self.blob_pathname

    def supports_payment_log(self) -> bool:
        return self.payment_log

    def supports_archive(self) -> bool:
        return self.archive_table

    def missing_columns(self, table_name: str) -> List[str]:
        """Names of optional columns absent from ``table_name``."""
        missing = []
        if table_name == "orders":
            if not self.draft_flag:
                missing.append("is_draft")
            if not self.shipping_column:
                missing.append("shipping")
        elif table_name == "order_documents":
            if not self.blob_pathname:
                missing.append("blob_pathname")
        return missing

    def writable(self, table_name: str, values: Dict[str, Any]) -> Dict[str, Any]:
        """Drop values aimed at columns the schema does not have."""
        missing = self.missing_columns(table_name)
        return {key: value for key, value in values.items() if key not in missing}

    def insert_table(self, table: Table) -> Table:
        """``table`` without its absent columns, for Core inserts.

        Column defaults are not carried over, so an INSERT only names the
        columns it is given values for.
        """
        missing = self.missing_columns(table.name)
        if not missing:
            return table
        return _narrowed_table(table, tuple(missing))

    def order_load_options(self) -> list:
        """Loader options that keep absent order columns out of SELECTs."""
        return [
            defer(getattr(Order, column), raiseload=True)
            for column in self.missing_columns("orders")
        ]

    def document_load_options(self) -> list:
        return [
            defer(getattr(OrderDocument, column), raiseload=True)
            for column in self.missing_columns("order_documents")
        ]


@lru_cache(maxsize=None)
def _narrowed_table(table: Table, missing: Tuple[str, ...]) -> Table:
    return Table(
        table.name,
        MetaData(),
        *[
            Column(column.name, column.type, primary_key=column.primary_key)
            for column in table.columns
            if column.name not in missing
        ],
    )


def probe_capabilities(engine: Engine) -> SchemaCapabilities:
    """Inspect the live schema and report optional features."""
    inspector = inspect(engine)
    tables = set(inspector.get_table_names())

    def columns_of(table_name: str) -> set:
        if table_name not in tables:
            return set()
        return {column["name"] for column in inspector.get_columns(table_name)}

    order_columns = columns_of("orders")
    document_columns = columns_of("order_documents")

    capabilities = SchemaCapabilities(
        draft_flag="is_draft" in order_columns,
        shipping_column="shipping" in order_columns,
        blob_pathname="blob_pathname" in document_columns,
        payment_log="order_payment_logs" in tables,
        archive_table="deleted_archive_entries" in tables,
    )
    if capabilities != SchemaCapabilities.full():
        logger.warning("Schema is partially migrated, optional features: %s", capabilities)
    return capabilities


class CapabilityCache:
    """Memoizes the first successful probe for the lifetime of the process.

    The result is never invalidated; a migration applied while the process is
    running is picked up after a restart.
    """

    def __init__(self):
        self._capabilities: Optional[SchemaCapabilities] = None
        self._lock = threading.Lock()

    def get(self, engine: Engine) -> SchemaCapabilities:
        if self._capabilities is None:
            with self._lock:
                if self._capabilities is None:
                    self._capabilities = probe_capabilities(engine)
                    logger.info("Schema capabilities cached: %s", self._capabilities)
        return self._capabilities

    @property
    def cached(self) -> Optional[SchemaCapabilities]:
        return self._capabilities
