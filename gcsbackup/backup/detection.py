"""
Change detection between a fresh archive and the last backup point.
"""

import logging
from typing import Optional

from .records import BackupIdentity, BackupRecord, latest_record
from .storage import ObjectStorage, StorageError

logger = logging.getLogger(__name__)


class HistoryLookupError(LookupError):
    """Raised when the previous backup state cannot be determined."""
    pass


def should_upload(new_fingerprint: str, latest: Optional[BackupRecord]) -> bool:
    """
    Decide whether a new backup point is needed.

    A missing history, or a last record without a known fingerprint, always
    means upload.
    """
    if latest is None or latest.content_fingerprint is None:
        return True
    return new_fingerprint != latest.content_fingerprint


def find_latest_fingerprint(storage: ObjectStorage,
                            identity: BackupIdentity) -> Optional[BackupRecord]:
    """
    Fetch the most recent backup point of an identity with its fingerprint.

    Returns:
        The latest record, or None if the identity has no backups yet

    Raises:
        HistoryLookupError: If listing or metadata lookup fails
    """
    try:
        latest = latest_record(storage.list_records(identity))
        if latest is None:
            return None
        return latest.with_fingerprint(storage.get_fingerprint(latest.storage_key))
    except StorageError as e:
        raise HistoryLookupError(f"Cannot read backup history for {identity.prefix}: {e}") from e
