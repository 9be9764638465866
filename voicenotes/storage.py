"""Local-filesystem object storage for uploaded audio.

Blobs are addressed by an opaque storage id and served back over HTTP so the
hosted transcription models can fetch them by URL.
"""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .config import settings

logger = logging.getLogger(__name__)

_STORAGE_ID_RE = re.compile(r"^[0-9a-f]{32}(\.[a-z0-9]{1,8})?$")


class StorageError(Exception):
    """Raised when a blob cannot be stored or located."""
    pass


@dataclass
class StoredFile:
    """A blob in storage."""
    storage_id: str
    size: int
    created_at: datetime


class ObjectStorage:
    """Blob store rooted at a directory."""

    def __init__(self, root: Path | str, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def save(self, data: bytes, filename: str | None = None) -> StoredFile:
        """Write ``data`` under a fresh storage id, keeping the file extension."""
        suffix = Path(filename or "").suffix.lower()
        if not re.fullmatch(r"\.[a-z0-9]{1,8}", suffix):
            suffix = ""
        storage_id = f"{uuid.uuid4().hex}{suffix}"

        path = self.root / storage_id
        try:
            path.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to write blob {storage_id}: {e}")
            raise StorageError(f"Failed to store file: {e}") from e

        logger.info(f"Stored blob {storage_id} ({len(data)} bytes)")
        return StoredFile(storage_id=storage_id, size=len(data), created_at=_mtime(path))

    def path_for(self, storage_id: str) -> Path:
        if not _STORAGE_ID_RE.match(storage_id):
            raise StorageError(f"Invalid storage id: {storage_id!r}")
        path = self.root / storage_id
        if not path.is_file():
            raise StorageError(f"Blob not found: {storage_id}")
        return path

    def get_url(self, storage_id: str) -> str:
        return f"{self.public_base_url}/files/{storage_id}"

    def delete(self, storage_id: str) -> bool:
        """Remove a blob. Returns False if it did not exist."""
        try:
            path = self.path_for(storage_id)
        except StorageError:
            return False
        path.unlink(missing_ok=True)
        logger.debug(f"Deleted blob {storage_id}")
        return True

    def list_created_before(self, cutoff: datetime, limit: int) -> list[StoredFile]:
        """Blobs created at or before ``cutoff``, newest first."""
        files = []
        for path in self.root.iterdir():
            if not path.is_file() or not _STORAGE_ID_RE.match(path.name):
                continue
            created_at = _mtime(path)
            if created_at <= cutoff:
                files.append(StoredFile(path.name, path.stat().st_size, created_at))
        files.sort(key=lambda f: f.created_at, reverse=True)
        return files[:limit]


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


def get_storage() -> ObjectStorage:
    """Storage configured from settings."""
    return ObjectStorage(settings.storage.root, settings.storage.public_base_url)
