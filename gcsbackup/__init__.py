import logging
import os
import sys
from logging.handlers import RotatingFileHandler

__version__ = '0.1.0'


def configure_logging(log_file=None, verbose=False):
    """Configure console logging and the optional status log file"""

    log_level = logging.DEBUG if verbose else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    package_logger = logging.getLogger('gcsbackup')
    package_logger.setLevel(log_level)
    package_logger.handlers = [console_handler]
    package_logger.propagate = False

    # boto3 and urllib3 are chatty at DEBUG
    for name in ('boto3', 'botocore', 's3transfer', 'urllib3'):
        logging.getLogger(name).setLevel(logging.WARNING)

    status_logger = logging.getLogger('gcsbackup.status')
    for handler in list(status_logger.handlers):
        status_logger.removeHandler(handler)
        handler.close()

    if log_file:
        log_dir = os.path.dirname(os.path.abspath(log_file))
        os.makedirs(log_dir, exist_ok=True)

        # Status lines only, appended across runs
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
        file_handler.setLevel(logging.INFO)
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        status_logger.addHandler(file_handler)

    package_logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")
