"""
Unit tests for rotation (gcsbackup/backup/retention.py).

Tests compute_rotation and RotationManager for removing old backups.
"""

from unittest.mock import MagicMock

import pytest

from gcsbackup.backup.records import RetentionPolicy
from gcsbackup.backup.retention import (
    compute_rotation,
    RotationManager,
    DeletionError
)
from gcsbackup.backup.storage import StorageError


def _timestamps(n):
    return [f"202401{day:02d}000000" for day in range(1, n + 1)]


class TestComputeRotation:
    """Test selection of backups to delete."""

    def test_three_records_keep_two(self, make_records):
        records = make_records('20240101000000', '20240102000000', '20240103000000')

        to_delete = compute_rotation(records, RetentionPolicy(2))

        assert [r.timestamp for r in to_delete] == ['20240101000000']

    @pytest.mark.parametrize("count,max_count", [(0, 1), (1, 1), (3, 5), (5, 5)])
    def test_within_limit_deletes_nothing(self, make_records, count, max_count):
        records = make_records(*_timestamps(count))
        assert compute_rotation(records, RetentionPolicy(max_count)) == []

    @pytest.mark.parametrize("count,max_count", [(2, 1), (10, 3), (12, 10)])
    def test_over_limit_deletes_oldest(self, make_records, count, max_count):
        timestamps = _timestamps(count)
        records = make_records(*reversed(timestamps))

        to_delete = compute_rotation(records, RetentionPolicy(max_count))

        assert len(to_delete) == count - max_count
        assert [r.timestamp for r in to_delete] == timestamps[:count - max_count]

    def test_input_order_does_not_matter(self, make_records):
        records = make_records('20240103000000', '20240101000000', '20240104000000', '20240102000000')

        to_delete = compute_rotation(records, RetentionPolicy(2))

        assert [r.timestamp for r in to_delete] == ['20240101000000', '20240102000000']


class TestRotationManager:
    """Test RotationManager deletes and failure isolation."""

    def test_rotation_manager_initialization(self):
        storage = MagicMock()
        manager = RotationManager(storage)

        assert manager.storage is storage

    def test_each_pass_has_its_own_logs(self, make_records):
        manager = RotationManager(MagicMock())

        first = manager.rotate(make_records(*_timestamps(3)), RetentionPolicy(1))
        second = manager.rotate(make_records(*_timestamps(1)), RetentionPolicy(1))

        assert len(first.logs) == 4
        assert len(second.logs) == 1
        assert "Found 1 backups" in second.logs[0]

    def test_nothing_to_delete(self, make_records):
        storage = MagicMock()
        manager = RotationManager(storage)

        result = manager.rotate(make_records('20240101000000'), RetentionPolicy(2))

        assert result.ok
        assert result.deleted == []
        storage.delete.assert_not_called()

    def test_deletes_oldest(self, make_records):
        storage = MagicMock()
        records = make_records('20240101000000', '20240102000000', '20240103000000')

        result = RotationManager(storage).rotate(records, RetentionPolicy(1))

        assert result.ok
        assert [r.timestamp for r in result.deleted] == ['20240101000000', '20240102000000']
        assert storage.delete.call_count == 2
        storage.delete.assert_any_call(records[0].storage_key)
        storage.delete.assert_any_call(records[1].storage_key)

    def test_failed_delete_does_not_stop_others(self, make_records):
        records = make_records(*_timestamps(5))
        storage = MagicMock()
        storage.delete.side_effect = [None, StorageError("Delete failed (AccessDenied)"), None]

        result = RotationManager(storage).rotate(records, RetentionPolicy(2))

        assert storage.delete.call_count == 3
        assert not result.ok
        assert len(result.errors) == 1
        assert isinstance(result.errors[0], DeletionError)
        assert result.errors[0].record == records[1]
        assert [r.timestamp for r in result.deleted] == [records[0].timestamp, records[2].timestamp]
        assert any('Rotation incomplete' in line for line in result.logs)

    def test_all_deletes_fail(self, make_records):
        records = make_records(*_timestamps(3))
        storage = MagicMock()
        storage.delete.side_effect = StorageError("network down")

        result = RotationManager(storage).rotate(records, RetentionPolicy(1))

        assert storage.delete.call_count == 2
        assert len(result.errors) == 2
        assert result.deleted == []

    def test_rotation_against_object_store(self, storage, mock_s3, identity, tmp_path):
        from gcsbackup.backup.records import BackupRecord

        archive = tmp_path / 'archive.tar'
        archive.write_bytes(b'data')
        for ts in _timestamps(4):
            storage.upload(str(archive), BackupRecord.create(identity, ts, ts))

        result = RotationManager(storage).rotate(storage.list_records(identity), RetentionPolicy(2))

        assert result.ok
        remaining = [r.timestamp for r in storage.list_records(identity)]
        assert remaining == _timestamps(4)[2:]
