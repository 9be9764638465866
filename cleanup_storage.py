"""Delete stored audio older than the retention window.

Meant to run from cron. Defaults to STORAGE_RETENTION_DAYS.
"""

import argparse
import logging
import sys

from voicenotes.config import settings
from voicenotes.logging_config import setup_logging
from voicenotes.pipelines.cleanup import delete_old_files
from voicenotes.storage import get_storage

logger = logging.getLogger("cleanup_storage")


def positive_int(value: str) -> int:
    number = int(value)
    if number < 1:
        raise argparse.ArgumentTypeError(f"must be at least 1, got {number}")
    return number


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--days",
        type=float,
        default=settings.storage.retention_days,
        help="delete blobs older than this many days",
    )
    parser.add_argument("--batch-size", type=positive_int, default=100)
    args = parser.parse_args()

    setup_logging()
    try:
        deleted = delete_old_files(get_storage(), args.days, batch_size=args.batch_size)
    except OSError as e:
        logger.error(f"Storage cleanup failed: {e}", exc_info=True)
        sys.exit(1)
    print(f"Deleted {deleted} files")


if __name__ == "__main__":
    main()
