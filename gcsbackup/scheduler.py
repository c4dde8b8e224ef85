"""
In-process scheduling of backup runs.

Used when the tool is started with a cron expression instead of being
triggered by an external scheduler. Runs never overlap inside one process;
separate processes are not coordinated.
"""

import logging
from typing import Callable

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from gcsbackup.config import Config

logger = logging.getLogger(__name__)

BACKUP_JOB_ID = 'gcsbackup_run'


def create_scheduler(run: Callable[[], object], schedule_cron: str,
                     timezone: str = Config.SCHEDULER_TIMEZONE) -> BlockingScheduler:
    """
    Build a scheduler that calls run on a cron schedule.

    Args:
        run: Zero-argument callable performing one backup
        schedule_cron: Crontab expression, e.g. '0 2 * * *'
        timezone: Timezone of the cron expression

    Raises:
        ValueError: If the cron expression is invalid
    """
    trigger = CronTrigger.from_crontab(schedule_cron, timezone=timezone)

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one instance of a job at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults, timezone=timezone)
    scheduler.add_job(
        func=_run_wrapper,
        args=[run],
        trigger=trigger,
        id=BACKUP_JOB_ID,
        name=f"Backup ({schedule_cron})",
        replace_existing=True
    )
    return scheduler


def _run_wrapper(run: Callable[[], object]):
    """Keep the scheduler alive when a run raises."""
    try:
        run()
    except Exception:
        logger.exception("Scheduled backup run failed")


def run_scheduled(run: Callable[[], object], schedule_cron: str) -> int:
    """
    Block and run backups on schedule until interrupted.

    Returns:
        Process exit code
    """
    try:
        scheduler = create_scheduler(run, schedule_cron)
    except ValueError as e:
        logger.error(f"Invalid schedule '{schedule_cron}': {e}")
        return 1

    logger.info(f"Scheduled backups: {schedule_cron} ({Config.SCHEDULER_TIMEZONE})")
    try:
        scheduler.start()
    except (KeyboardInterrupt, SystemExit):
        logger.info("Scheduler stopped")
    return 0
