import os
from dataclasses import dataclass
from typing import Optional

from gcsbackup.backup.compression import FORMAT_MAP
from gcsbackup.backup.records import DEFAULT_ROOT_PREFIX
from gcsbackup.backup.storage import GCS_ENDPOINT_URL


class Config:
    """Environment defaults, overridden by command line options"""

    # Rotation
    NUM_BACKUPS = os.environ.get('GCSBACKUP_NUM_BACKUPS') or 10
    TAG = os.environ.get('GCSBACKUP_TAG') or 'backup'

    # Source
    BACKUP_PATH = os.environ.get('GCSBACKUP_PATH') or '.'
    COMPRESSION_FORMAT = os.environ.get('GCSBACKUP_COMPRESSION') or 'none'
    HASH_ALGORITHM = os.environ.get('GCSBACKUP_HASH_ALGORITHM') or 'md5'

    # Object store
    BUCKET = os.environ.get('GCSBACKUP_BUCKET')
    KEY_PREFIX = os.environ.get('GCSBACKUP_PREFIX') or DEFAULT_ROOT_PREFIX
    ENDPOINT_URL = os.environ.get('GCSBACKUP_ENDPOINT_URL') or GCS_ENDPOINT_URL
    REGION = os.environ.get('GCSBACKUP_REGION')

    # Logging
    LOG_FILE = os.environ.get('GCSBACKUP_LOG_FILE')

    # Scheduler
    SCHEDULE_CRON = os.environ.get('GCSBACKUP_SCHEDULE')
    SCHEDULER_TIMEZONE = 'UTC'

    # Temp
    TEMP_DIR = os.environ.get('TEMP_DIR')


def default_bucket(project_id: str) -> str:
    return f"{project_id}.appspot.com"


def _parse_count(value) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"Number of backups to keep must be an integer, got {value!r}")


@dataclass
class BackupSettings:
    """Resolved settings for one backup run."""

    backup_path: str
    bucket: str
    num_backups: int = 10
    tag: str = 'backup'
    log_file: Optional[str] = None
    compression_format: str = 'none'
    hash_algorithm: str = 'md5'
    key_prefix: str = DEFAULT_ROOT_PREFIX
    endpoint_url: Optional[str] = GCS_ENDPOINT_URL
    region: Optional[str] = None
    temp_dir: Optional[str] = None

    def __post_init__(self):
        if self.num_backups < 1:
            raise ValueError(f"Number of backups to keep must be positive, got {self.num_backups}")
        if self.compression_format not in FORMAT_MAP:
            raise ValueError(
                f"Invalid compression format: {self.compression_format}. "
                f"Valid options: {list(FORMAT_MAP.keys())}"
            )
        if not self.tag:
            raise ValueError("Tag must not be empty")

    @classmethod
    def from_args(cls, args, project_id: str) -> 'BackupSettings':
        """
        Merge command line options over environment defaults.

        Args:
            args: argparse namespace from gcsbackup.cli
            project_id: Project identifier used for the default bucket
        """
        def pick(name, default):
            value = getattr(args, name, None)
            return default if value is None else value

        return cls(
            backup_path=os.path.realpath(pick('path', Config.BACKUP_PATH)),
            bucket=pick('bucket', Config.BUCKET) or default_bucket(project_id),
            num_backups=_parse_count(pick('num_backups', Config.NUM_BACKUPS)),
            tag=pick('tag', Config.TAG),
            log_file=pick('log_file', Config.LOG_FILE),
            compression_format=pick('compression', Config.COMPRESSION_FORMAT),
            hash_algorithm=pick('hash_algorithm', Config.HASH_ALGORITHM),
            key_prefix=pick('prefix', Config.KEY_PREFIX),
            endpoint_url=pick('endpoint_url', Config.ENDPOINT_URL) or None,
            region=pick('region', Config.REGION),
            temp_dir=Config.TEMP_DIR,
        )
