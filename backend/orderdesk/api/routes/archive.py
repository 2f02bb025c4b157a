"""Archive API endpoints: listing, restore, purge and the cron cleanup."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlmodel import Session

from orderdesk.api.deps import get_blob_storage, get_capabilities, get_db
from orderdesk.core.config import Settings, get_settings
from orderdesk.core.exceptions import OrderDeskError
from orderdesk.models.archive import (
    ArchiveListResponse,
    ArchiveMutationResponse,
    ArchivePurgeRequest,
    ArchiveRestoreRequest,
)
from orderdesk.services import ArchiveService, SchemaCapabilities
from orderdesk.services.blob_storage import BlobStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/archive", tags=["archive"])


@router.get("/", response_model=ArchiveListResponse)
def list_archive(
    item_type: Optional[str] = Query(default=None, alias="type"),
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> ArchiveListResponse:
    """
    Archived items, newest first, with documents grouped under their order.
    """
    try:
        entries = ArchiveService(session, capabilities=capabilities).list_grouped(item_type)
        return ArchiveListResponse(entries=entries)
    except Exception as e:
        logger.error("Archive listing failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/restore", response_model=ArchiveMutationResponse)
def restore_entries(
    request: ArchiveRestoreRequest,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
) -> ArchiveMutationResponse:
    try:
        restored = ArchiveService(session, capabilities=capabilities).restore(
            request.ids, request.targets, include_children=request.include_children
        )
        return ArchiveMutationResponse(success=True, count=restored)
    except OrderDeskError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Archive restore failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.post("/purge", response_model=ArchiveMutationResponse)
def purge_entries(
    request: ArchivePurgeRequest,
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
    blob_storage: BlobStorage = Depends(get_blob_storage),
) -> ArchiveMutationResponse:
    """
    Permanently delete archived items and their stored files.
    """
    try:
        purged = ArchiveService(session, blob_storage, capabilities).purge(request.ids)
        return ArchiveMutationResponse(success=True, count=purged)
    except OrderDeskError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.error("Archive purge failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")


@router.api_route("/cleanup", methods=["GET", "POST"], response_model=ArchiveMutationResponse)
def cleanup_expired(
    authorization: Optional[str] = Header(default=None),
    session: Session = Depends(get_db),
    capabilities: SchemaCapabilities = Depends(get_capabilities),
    blob_storage: BlobStorage = Depends(get_blob_storage),
    config: Settings = Depends(get_settings),
) -> ArchiveMutationResponse:
    """
    Purge entries past their recovery window. Called by the scheduler.
    """
    if config.CRON_SECRET and authorization != f"Bearer {config.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        purged = ArchiveService(session, blob_storage, capabilities).sweep_expired(
            limit=config.ARCHIVE_SWEEP_LIMIT
        )
        return ArchiveMutationResponse(success=True, count=purged)
    except Exception as e:
        logger.error("Archive cleanup failed: %s", e, exc_info=True)
        raise HTTPException(status_code=500, detail="Internal server error")
