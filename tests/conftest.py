"""
Shared pytest fixtures for gcsbackup tests.

This module provides fixtures for:
- Fake AWS credentials so boto3 never reaches a real account
- Mock object store bucket using moto
- Host context and run settings
- Temporary source directories
"""

import logging

import pytest
import boto3
from moto import mock_aws

from gcsbackup.backup.records import BackupIdentity, BackupRecord
from gcsbackup.backup.storage import ObjectStorage
from gcsbackup.config import BackupSettings
from gcsbackup.host import HostContext


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake credentials for moto."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_SECURITY_TOKEN', 'testing')
    monkeypatch.setenv('AWS_SESSION_TOKEN', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')
    monkeypatch.delenv('GCSBACKUP_MACHINE_ID', raising=False)
    monkeypatch.delenv('GCSBACKUP_PROJECT_ID', raising=False)


@pytest.fixture(autouse=True)
def reset_loggers():
    """Drop handlers installed by configure_logging between tests."""
    yield
    for name in ('gcsbackup', 'gcsbackup.status'):
        log = logging.getLogger(name)
        for handler in list(log.handlers):
            log.removeHandler(handler)
            handler.close()
        log.propagate = True
        log.setLevel(logging.NOTSET)


@pytest.fixture
def mock_s3():
    """
    Mock object store using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')
        yield s3


@pytest.fixture
def storage(mock_s3):
    """ObjectStorage bound to the mocked 'test-bucket'."""
    return ObjectStorage('test-bucket', endpoint_url=None, region='us-east-1')


@pytest.fixture
def host_context():
    return HostContext(machine_id='1234567890', project_id='test-project')


@pytest.fixture
def identity():
    return BackupIdentity(host_id='1234567890', absolute_path='/srv/data', tag='backup')


@pytest.fixture
def make_records(identity):
    """Build records for the identity from a list of timestamps."""
    def _make(*timestamps):
        return [BackupRecord.create(identity, ts) for ts in timestamps]
    return _make


@pytest.fixture
def temp_files(tmp_path):
    """
    Create a source directory to back up.

    Creates:
    - data/test_file1.txt
    - data/test_file2.log
    - data/nested/test_file3.txt
    """
    source = tmp_path / 'data'
    source.mkdir()
    (source / 'test_file1.txt').write_text('Test content 1')
    (source / 'test_file2.log').write_text('Test log content')

    nested_dir = source / 'nested'
    nested_dir.mkdir()
    (nested_dir / 'test_file3.txt').write_text('Nested test content')

    return source


@pytest.fixture
def settings(temp_files, tmp_path):
    """Run settings pointing at temp_files and the mocked bucket."""
    work_dir = tmp_path / 'work'
    work_dir.mkdir()
    return BackupSettings(
        backup_path=str(temp_files),
        bucket='test-bucket',
        num_backups=3,
        tag='backup',
        endpoint_url=None,
        region='us-east-1',
        temp_dir=str(work_dir)
    )
