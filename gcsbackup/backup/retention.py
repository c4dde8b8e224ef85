"""
Retention policy enforcement for backups.

Rotation is count based: once an identity holds more backup points than the
policy allows, the oldest ones are deleted. Nothing is persisted between
runs; every run computes the delete set from a fresh listing.
"""

import logging
from datetime import datetime, timezone
from typing import List

from .records import BackupRecord, RetentionPolicy, sort_records
from .storage import ObjectStorage, StorageError

logger = logging.getLogger(__name__)


class DeletionError(StorageError):
    """Raised when one backup point cannot be deleted during rotation."""

    def __init__(self, record: BackupRecord, cause: Exception):
        super().__init__(f"Failed to delete {record.storage_key}: {cause}")
        self.record = record
        self.cause = cause


def compute_rotation(records: List[BackupRecord], policy: RetentionPolicy) -> List[BackupRecord]:
    """
    Select the backup points to delete.

    Args:
        records: All records of one identity, in any order
        policy: Retention policy to enforce

    Returns:
        The oldest len(records) - max_count records, oldest first; empty when
        the identity is within its limit
    """
    ordered = sort_records(records)
    num_extra = len(ordered) - policy.max_count
    if num_extra <= 0:
        return []
    return ordered[:num_extra]


class RotationResult:
    """Outcome of one rotation pass."""

    def __init__(self):
        self.deleted: List[BackupRecord] = []
        self.errors: List[DeletionError] = []
        self.logs: List[str] = []

    @property
    def ok(self) -> bool:
        return not self.errors


class RotationManager:
    """
    Deletes backup points beyond the retention count.

    A failed delete is recorded and the remaining deletes still run.
    """

    def __init__(self, storage: ObjectStorage):
        """
        Initialize rotation manager.

        Args:
            storage: Object store holding the backups
        """
        self.storage = storage

    def rotate(self, records: List[BackupRecord], policy: RetentionPolicy) -> RotationResult:
        """
        Enforce a retention policy on a snapshot of records.

        Returns:
            RotationResult listing deleted records and per-record errors
        """
        result = RotationResult()
        to_delete = compute_rotation(records, policy)

        self._log(result, f"Found {len(records)} backups, keeping at most {policy.max_count}")
        if not to_delete:
            return result

        self._log(result, f"Removing: {len(to_delete)} old backups")
        for record in to_delete:
            try:
                self.storage.delete(record.storage_key)
                result.deleted.append(record)
                self._log(result, f"Deleted backup: {record.storage_key}")
            except StorageError as e:
                error = DeletionError(record, e)
                result.errors.append(error)
                self._log(result, str(error), level=logging.ERROR)

        if result.errors:
            self._log(
                result,
                f"Rotation incomplete: {len(result.errors)} of {len(to_delete)} deletions failed",
                level=logging.WARNING
            )

        return result

    def _log(self, result: RotationResult, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            result: Rotation pass the line belongs to
            message: Log message
            level: logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        result.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)
