"""Blob storage interface and the filesystem-backed implementation."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Union

from orderdesk.core.exceptions import StorageBestEffortFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredBlob:
    url: str
    pathname: str


class BlobStorage(Protocol):
    """What the ledger needs from a blob store."""

    def put(self, path: str, data: bytes, content_type: str) -> StoredBlob:
        ...

    def delete(self, path_or_url: str) -> None:
        ...


class LocalBlobStorage:
    """Stores blobs under a directory that is served at ``base_url``."""

    def __init__(self, root_dir: Union[str, Path], base_url: str):
        self.root_dir = Path(root_dir)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path_or_url: str) -> Path:
        relative = path_or_url
        if relative.startswith(self.base_url + "/"):
            relative = relative[len(self.base_url) + 1:]
        relative = relative.lstrip("/")
        target = (self.root_dir / relative).resolve()
        if self.root_dir.resolve() not in target.parents:
            raise ValueError(f"Blob path escapes storage root: {path_or_url}")
        return target

    def put(self, path: str, data: bytes, content_type: str) -> StoredBlob:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        pathname = target.relative_to(self.root_dir.resolve()).as_posix()
        logger.info("Stored blob %s (%s, %d bytes)", pathname, content_type, len(data))
        return StoredBlob(url=f"{self.base_url}/{pathname}", pathname=pathname)

    def delete(self, path_or_url: str) -> None:
        try:
            self._resolve(path_or_url).unlink(missing_ok=True)
        except (OSError, ValueError) as e:
            raise StorageBestEffortFailure(f"Could not delete blob {path_or_url}: {e}") from e


def delete_blobs_best_effort(storage: BlobStorage, targets) -> int:
    """Delete each target, logging failures instead of raising.

    Returns the number of blobs removed without error.
    """
    removed = 0
    for target in targets:
        if not target:
            continue
        try:
            storage.delete(target)
            removed += 1
        except Exception as e:
            logger.warning("Best-effort blob deletion failed for %s: %s", target, e)
    return removed
