"""
Backup module for gcsbackup.

This module handles the core backup functionality including:
- Archive creation and fingerprinting
- Object store access
- Change detection against the last backup point
- Count based rotation
- Execution orchestration
"""

from .executor import BackupExecutor, run_backup
from .compression import build_archive, create_archive
from .detection import should_upload, find_latest_fingerprint
from .records import BackupIdentity, BackupRecord, RetentionPolicy
from .retention import RotationManager, compute_rotation
from .storage import ObjectStorage

__all__ = [
    'BackupExecutor',
    'run_backup',
    'build_archive',
    'create_archive',
    'should_upload',
    'find_latest_fingerprint',
    'BackupIdentity',
    'BackupRecord',
    'RetentionPolicy',
    'RotationManager',
    'compute_rotation',
    'ObjectStorage'
]
