#!/usr/bin/env python3
"""
Purge archive entries whose recovery window has passed.

Meant to run from cron; repeated runs are harmless.
"""

import logging
import sys

from sqlmodel import Session

from orderdesk.api.deps import get_blob_storage
from orderdesk.core.config import settings
from orderdesk.core.db import engine
from orderdesk.services import ArchiveService, probe_capabilities

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


def sweep() -> int:
    capabilities = probe_capabilities(engine)
    with Session(engine) as session:
        service = ArchiveService(session, get_blob_storage(), capabilities)
        return service.sweep_expired(limit=settings.ARCHIVE_SWEEP_LIMIT)


def main():
    logger.info("Starting archive sweep...")
    try:
        purged = sweep()
    except Exception as e:
        logger.error("Archive sweep failed: %s", e, exc_info=True)
        sys.exit(1)
    logger.info("Archive sweep purged %d entries", purged)
    sys.exit(0)


if __name__ == "__main__":
    main()
