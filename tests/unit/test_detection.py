"""
Unit tests for change detection (gcsbackup/backup/detection.py).
"""

from unittest.mock import MagicMock

import pytest

from gcsbackup.backup.detection import (
    should_upload,
    find_latest_fingerprint,
    HistoryLookupError
)
from gcsbackup.backup.records import BackupRecord
from gcsbackup.backup.storage import StorageError


class TestShouldUpload:
    """Test the upload decision."""

    def test_first_backup_always_uploads(self):
        assert should_upload('abc123', None) is True

    def test_identical_fingerprint_skips(self, identity):
        latest = BackupRecord.create(identity, '20240115120000', 'abc123')
        assert should_upload('abc123', latest) is False

    def test_different_fingerprint_uploads(self, identity):
        latest = BackupRecord.create(identity, '20240115120000', 'abc123')
        assert should_upload('def456', latest) is True

    def test_unknown_previous_fingerprint_uploads(self, identity):
        latest = BackupRecord.create(identity, '20240115120000')
        assert should_upload('abc123', latest) is True


class TestFindLatestFingerprint:
    """Test lookup of the last backup point."""

    def test_no_history(self, storage, identity):
        assert find_latest_fingerprint(storage, identity) is None

    def test_returns_most_recent_with_fingerprint(self, storage, identity, tmp_path):
        archive = tmp_path / 'archive.tar'
        archive.write_bytes(b'data')
        storage.upload(str(archive), BackupRecord.create(identity, '20240101000000', 'old'))
        storage.upload(str(archive), BackupRecord.create(identity, '20240102000000', 'new'))

        latest = find_latest_fingerprint(storage, identity)

        assert latest.timestamp == '20240102000000'
        assert latest.content_fingerprint == 'new'

    def test_listing_failure_raises_lookup_error(self, identity):
        storage = MagicMock()
        storage.list_records.side_effect = StorageError("network down")

        with pytest.raises(HistoryLookupError, match="network down"):
            find_latest_fingerprint(storage, identity)

    def test_metadata_failure_raises_lookup_error(self, identity, make_records):
        storage = MagicMock()
        storage.list_records.return_value = make_records('20240101000000')
        storage.get_fingerprint.side_effect = StorageError("No fingerprint stored")

        with pytest.raises(LookupError):
            find_latest_fingerprint(storage, identity)
