"""Request-scoped dependencies."""

from collections.abc import Generator

from fastapi import Depends, Request
from sqlmodel import Session

from orderdesk.core.config import settings
from orderdesk.core.db import engine
from orderdesk.services.blob_storage import BlobStorage, LocalBlobStorage
from orderdesk.services.document_renderer import DocumentRenderer, PlainTextRenderer
from orderdesk.services.schema_capabilities import CapabilityCache, SchemaCapabilities


def get_db() -> Generator[Session, None, None]:
    """Database session for one request."""
    with Session(engine) as session:
        yield session


def get_capabilities(request: Request, session: Session = Depends(get_db)) -> SchemaCapabilities:
    """Schema capabilities, probed on first use and cached on the app."""
    cache = getattr(request.app.state, "capability_cache", None)
    if cache is None:
        cache = CapabilityCache()
        request.app.state.capability_cache = cache
    return cache.get(session.get_bind())


def get_blob_storage() -> BlobStorage:
    return LocalBlobStorage(settings.UPLOAD_DIR, settings.BLOB_BASE_URL)


def get_renderer() -> DocumentRenderer:
    return PlainTextRenderer()
