"""Storage retention: remove audio blobs older than a cutoff."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from voicenotes.storage import ObjectStorage

logger = logging.getLogger(__name__)


def delete_old_files(storage: ObjectStorage, max_age_days: float, batch_size: int = 100) -> int:
    """Delete blobs older than ``max_age_days`` in batches, newest first.

    Returns:
        Number of blobs deleted

    Raises:
        ValueError: If batch_size is less than 1
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be at least 1, got {batch_size}")

    cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
    deleted = 0

    while True:
        batch = storage.list_created_before(cutoff, limit=batch_size)
        for stored in batch:
            if storage.delete(stored.storage_id):
                deleted += 1
        logger.info(f"Deleted batch of {len(batch)} blobs created before {cutoff.isoformat()}")
        if len(batch) < batch_size:
            break

    logger.info(f"Storage cleanup removed {deleted} blobs")
    return deleted
