"""
Backup executor - orchestrates one backup run.

Workflow:
1. Check the host context (machine id and project id)
2. Create archive of the backup path and fingerprint it
3. Make sure the bucket exists
4. Compare the fingerprint with the most recent backup point
5. Upload the archive if the content changed
6. Delete backup points beyond the retention count
7. Cleanup temporary files
"""

import logging
import os
import shutil
import tempfile
from datetime import datetime, timezone
from typing import Optional

from gcsbackup.host import HostContext, PreconditionError
from .compression import build_archive, get_archive_size, ArchiveError
from .detection import find_latest_fingerprint, should_upload, HistoryLookupError
from .records import BackupIdentity, BackupRecord, RetentionPolicy, generate_timestamp
from .retention import RotationManager, RotationResult
from .storage import ObjectStorage, StorageError

logger = logging.getLogger(__name__)
status_logger = logging.getLogger('gcsbackup.status')

STATUS_SUCCESS = 'success'
STATUS_SKIPPED = 'skipped'
STATUS_FAILED = 'failed'


class BackupResult:
    """Outcome of a backup run."""

    def __init__(self, timestamp: str):
        self.timestamp = timestamp
        self.status = None
        self.error_message = None
        self.record: Optional[BackupRecord] = None
        self.previous: Optional[BackupRecord] = None
        self.rotation: Optional[RotationResult] = None
        self.file_size_bytes = None
        self.logs = []

    @property
    def exit_code(self) -> int:
        return 1 if self.status == STATUS_FAILED else 0


class BackupExecutor:
    """
    Orchestrates the complete backup workflow for one path.
    """

    def __init__(self, settings, host: HostContext, storage: Optional[ObjectStorage] = None):
        """
        Initialize backup executor.

        Args:
            settings: gcsbackup.config.BackupSettings for this run
            host: Host context the backups are scoped to
            storage: Object store handler, created from settings when omitted
        """
        self.settings = settings
        self.host = host
        self.storage = storage
        self.temp_dir = None
        self.archive_path = None
        self.logs = []

    def execute(self) -> BackupResult:
        """
        Execute the backup run.

        Returns:
            BackupResult with status success, skipped or failed
        """
        result = BackupResult(generate_timestamp())
        status_logger.info(f"{result.timestamp}: Running backup tool..")

        try:
            self._execute_workflow(result)

        except (PreconditionError, ArchiveError, StorageError) as e:
            result.status = STATUS_FAILED
            result.error_message = str(e)
            self._log(f"Backup failed: {e}", level=logging.ERROR)
            status_logger.error(f"Backup failed: {e}")

        except Exception as e:
            result.status = STATUS_FAILED
            result.error_message = str(e)
            logger.exception("Unexpected error during backup")
            status_logger.error(f"Backup failed: {e}")

        finally:
            self._cleanup()
            result.logs = self.logs

        return result

    def _execute_workflow(self, result: BackupResult):
        """Execute the main backup workflow steps."""
        # Step 1: Host context, before any local or remote work
        self.host.validate()
        self._log_parameters(result.timestamp)

        policy = RetentionPolicy(self.settings.num_backups)
        identity = BackupIdentity(
            host_id=self.host.machine_id,
            absolute_path=self.settings.backup_path,
            tag=self.settings.tag,
            root_prefix=self.settings.key_prefix
        )

        # Step 2: Archive and fingerprint
        self.temp_dir = tempfile.mkdtemp(prefix='gcsbackup_', dir=self.settings.temp_dir)
        self._log(f"Creating archive (format: {self.settings.compression_format})")
        self.archive_path, fingerprint = build_archive(
            self.settings.backup_path,
            self.temp_dir,
            self.settings.compression_format,
            self.settings.hash_algorithm
        )
        result.file_size_bytes = get_archive_size(self.archive_path)
        self._log(f"Archive created: {self.archive_path} ({result.file_size_bytes / 1024 / 1024:.2f} MB)")

        # Step 3: Bucket
        storage = self._get_storage()
        if storage.ensure_bucket():
            self._log(f"Created bucket: {self.settings.bucket}")

        record = BackupRecord.create(identity, result.timestamp, fingerprint)
        self._log(f"Creating a new backup point with id: {storage.url_for(record.storage_key)}")

        # Step 4: Change detection
        try:
            result.previous = find_latest_fingerprint(storage, identity)
        except HistoryLookupError as e:
            self._log(f"No previous backup fingerprint found. First backup? ({e})", level=logging.WARNING)
            result.previous = None

        if result.previous and result.previous.timestamp > result.timestamp:
            # Local-time keys from hosts east of UTC sort after new UTC keys
            self._log(
                f"Last backup {result.previous.timestamp} is later than the current UTC "
                f"timestamp {result.timestamp}. It may have been written in local time; "
                f"rotation orders backups by key and could delete the new backup first",
                level=logging.WARNING
            )

        previous_fingerprint = result.previous.content_fingerprint if result.previous else None
        self._log(f"New archive fingerprint: {fingerprint}")
        self._log(f"Last backup fingerprint: {previous_fingerprint}")

        if not should_upload(fingerprint, result.previous):
            result.status = STATUS_SKIPPED
            self._log("Fingerprint not different from last backup")
            status_logger.info("Content unchanged since last backup. Skipping this backup round.")
            return

        # Step 5: Upload
        self._log("Uploading archive")
        storage.upload(self.archive_path, record)
        result.record = record
        self._log(f"Uploaded: {record.storage_key}")

        # Step 6: Rotation over a fresh listing that includes the new point
        records = storage.list_records(identity)
        for existing in records:
            self._log(f"  {existing.storage_key}")
        result.rotation = RotationManager(storage).rotate(records, policy)
        self.logs.extend(result.rotation.logs)
        if not result.rotation.ok:
            status_logger.warning(
                f"Failed to delete {len(result.rotation.errors)} old backups with the tag {identity.tag}"
            )

        result.status = STATUS_SUCCESS
        status_logger.info(f"Backup point created successfully: {storage.url_for(record.storage_key)}")

    def _get_storage(self) -> ObjectStorage:
        if self.storage is None:
            self.storage = ObjectStorage(
                bucket_name=self.settings.bucket,
                endpoint_url=self.settings.endpoint_url,
                region=self.settings.region
            )
        return self.storage

    def _log_parameters(self, timestamp: str):
        self._log(f"tag: {self.settings.tag}")
        self._log(f"backups to keep: {self.settings.num_backups}")
        self._log(f"backup path: {self.settings.backup_path}")
        self._log(f"project id: {self.host.project_id}")
        self._log(f"timestamp: {timestamp}")
        self._log(f"machine id: {self.host.machine_id}")
        self._log(f"bucket: {self.settings.bucket}")
        self._log(f"log file: {self.settings.log_file}")

    def _cleanup(self):
        """Remove temporary directory and files."""
        if self.temp_dir and os.path.exists(self.temp_dir):
            try:
                shutil.rmtree(self.temp_dir)
                self._log("Cleaned up temporary directory")
            except OSError as e:
                self._log(f"Warning: Failed to cleanup temp directory: {e}", level=logging.WARNING)

    def _log(self, message: str, level: int = logging.INFO):
        """
        Add a log message with timestamp.

        Args:
            message: Log message
            level: logging level for the module logger
        """
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S UTC')
        self.logs.append(f"[{timestamp}] {message}")
        logger.log(level, message)


def run_backup(settings, host: HostContext, storage: Optional[ObjectStorage] = None) -> BackupResult:
    """
    Run one backup for the given settings and host.

    Returns:
        BackupResult with execution results
    """
    return BackupExecutor(settings, host, storage).execute()
