"""Command line entry point.

Usage:
    gcsbackup
    gcsbackup --path /srv/data --tag nightly --num-backups 5
    gcsbackup --path /srv/data --log-file /var/log/gcsbackup.log
    gcsbackup --schedule "0 2 * * *"

Exit codes: 0 on success or when the content is unchanged, 1 when the host
environment is missing, the archive cannot be created or a required object
store call fails, 2 for invalid options.
"""

import argparse
import logging
import sys

from gcsbackup import __version__, configure_logging
from gcsbackup.backup.compression import FORMAT_MAP
from gcsbackup.backup.executor import run_backup
from gcsbackup.config import BackupSettings, Config
from gcsbackup.host import MetadataHostSource, PreconditionError
from gcsbackup.scheduler import run_scheduled

logger = logging.getLogger('gcsbackup.cli')
status_logger = logging.getLogger('gcsbackup.status')


def build_parser():
    parser = argparse.ArgumentParser(
        prog='gcsbackup',
        description=(
            "Create a tagged tar backup of a local path and copy it to a bucket. "
            "Unchanged content is not uploaded again and older backups with the "
            "same tag are rotated out."
        ),
        epilog=(
            "Key timestamps are UTC (YYYYMMDDHHMMSS). Backups whose keys were written "
            "in local time on a host east of UTC sort after new backups and are "
            "reported with a warning."
        )
    )
    parser.add_argument('-n', '--num-backups', type=int, default=None,
                        help=f"Number of backups to keep (default: {Config.NUM_BACKUPS})")
    parser.add_argument('-b', '--bucket', default=None,
                        help='Bucket to store backups in (default: "{project-id}.appspot.com")')
    parser.add_argument('-p', '--path', default=None,
                        help='Path to back up (default: current directory)')
    parser.add_argument('-t', '--tag', default=None,
                        help=f"Tag grouping backups that rotate together (default: {Config.TAG})")
    parser.add_argument('-l', '--log-file', default=None,
                        help='Append status lines to this file')
    parser.add_argument('--compression', choices=list(FORMAT_MAP.keys()), default=None,
                        help=f"Archive compression (default: {Config.COMPRESSION_FORMAT})")
    parser.add_argument('--hash-algorithm', default=None,
                        help=f"Fingerprint algorithm (default: {Config.HASH_ALGORITHM})")
    parser.add_argument('--prefix', default=None,
                        help=f"Key prefix inside the bucket (default: {Config.KEY_PREFIX})")
    parser.add_argument('--endpoint-url', default=None,
                        help=f"Object store endpoint (default: {Config.ENDPOINT_URL})")
    parser.add_argument('--region', default=None,
                        help='Object store region')
    parser.add_argument('--schedule', default=None,
                        help='Run in the foreground on this crontab schedule instead of once')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable debug logging')
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    return parser


def main(argv=None, host_source=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(log_file=args.log_file or Config.LOG_FILE, verbose=args.verbose)

    host = (host_source or MetadataHostSource()).get_context()
    try:
        host.validate()
    except PreconditionError as e:
        logger.error(str(e))
        status_logger.error(f"Backup failed: {e}")
        return 1

    try:
        settings = BackupSettings.from_args(args, host.project_id)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    def run():
        return run_backup(settings, host)

    schedule_cron = args.schedule or Config.SCHEDULE_CRON
    if schedule_cron:
        return run_scheduled(run, schedule_cron)

    return run().exit_code


if __name__ == '__main__':
    sys.exit(main())
