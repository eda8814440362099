# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/__logger__.py
A common logger writing to a rich console and a rotating log file.
"""

import logging
import logging.handlers
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

FILE_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
FILE_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Initialize basic console and handler
cons = Console()
rich_handler = RichHandler(console=cons, show_path=False)
# Package logger; module loggers under zfs_backup_ng.* propagate here
logger = logging.getLogger("zfs_backup_ng")
logger.setLevel(logging.INFO)


def create_file_handler(log_file, max_bytes=0, backup_count=5) -> logging.Handler:
    """Create a size-rotated, timestamped file handler."""
    handler = logging.handlers.RotatingFileHandler(
        Path(log_file),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt=FILE_DATEFMT))
    return handler


def create_logger(level="INFO", log_file=None, max_bytes=0, backup_count=5) -> None:
    """Helper function to setup console and file logging for one run."""
    # pylint: disable=global-statement
    global cons, rich_handler

    cons = Console()
    rich_handler = RichHandler(console=cons, show_path=False)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = False
    logger.setLevel(level)
    logger.addHandler(rich_handler)

    if log_file:
        logger.addHandler(create_file_handler(log_file, max_bytes, backup_count))
