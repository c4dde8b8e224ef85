"""
Backup identities, records and retention policies.

A backup point lives in the object store under:
{root_prefix}/{host_id}{absolute_path}/{tag}-{YYYYMMDDHHMMSS}
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

TIMESTAMP_FORMAT = '%Y%m%d%H%M%S'
TIMESTAMP_PATTERN = re.compile(r'^\d{14}$')

DEFAULT_ROOT_PREFIX = 'datalab-backups'


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """Return a fixed-width UTC timestamp that sorts chronologically."""
    now = now or datetime.now(timezone.utc)
    return now.strftime(TIMESTAMP_FORMAT)


@dataclass(frozen=True)
class BackupIdentity:
    """Groups the backups that rotate together."""

    host_id: str
    absolute_path: str
    tag: str
    root_prefix: str = DEFAULT_ROOT_PREFIX

    def __post_init__(self):
        if not self.absolute_path.startswith('/'):
            raise ValueError(f"Backup path must be absolute: {self.absolute_path}")

    @property
    def prefix(self) -> str:
        # absolute_path already starts with '/'
        return f"{self.root_prefix}/{self.host_id}{self.absolute_path}".rstrip('/')

    @property
    def listing_prefix(self) -> str:
        """Prefix matching every backup point of this identity."""
        return f"{self.prefix}/{self.tag}-"

    def storage_key(self, timestamp: str) -> str:
        return f"{self.listing_prefix}{timestamp}"

    def parse_key(self, key: str) -> Optional[str]:
        """
        Extract the timestamp from a storage key of this identity.

        Returns None for keys that belong to another tag or nested path.
        """
        if not key.startswith(self.listing_prefix):
            return None
        timestamp = key[len(self.listing_prefix):]
        if not TIMESTAMP_PATTERN.match(timestamp):
            return None
        return timestamp


@dataclass(frozen=True)
class BackupRecord:
    """One immutable backup point in the object store."""

    identity: BackupIdentity
    timestamp: str
    storage_key: str
    content_fingerprint: Optional[str] = None

    @classmethod
    def create(cls, identity: BackupIdentity, timestamp: str,
               content_fingerprint: Optional[str] = None) -> 'BackupRecord':
        return cls(
            identity=identity,
            timestamp=timestamp,
            storage_key=identity.storage_key(timestamp),
            content_fingerprint=content_fingerprint
        )

    def with_fingerprint(self, content_fingerprint: str) -> 'BackupRecord':
        return BackupRecord(
            identity=self.identity,
            timestamp=self.timestamp,
            storage_key=self.storage_key,
            content_fingerprint=content_fingerprint
        )


@dataclass(frozen=True)
class RetentionPolicy:
    """Keep at most max_count backups per identity."""

    max_count: int = 10

    def __post_init__(self):
        if isinstance(self.max_count, bool) or not isinstance(self.max_count, int):
            raise ValueError(f"max_count must be an integer, got {self.max_count!r}")
        if self.max_count < 1:
            raise ValueError(f"max_count must be a positive integer, got {self.max_count}")


def sort_records(records) -> list:
    """Order records oldest first."""
    return sorted(records, key=lambda record: record.timestamp)


def latest_record(records) -> Optional[BackupRecord]:
    """Return the most recent record, or None for an empty history."""
    if not records:
        return None
    return max(records, key=lambda record: record.timestamp)
