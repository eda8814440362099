"""Convert command: Turn plain folders into child datasets."""

import argparse
import logging
import time

from .. import __util__
from ..__logger__ import create_logger
from ..core.orchestrator import run_conversion
from ..endpoint import LocalEndpoint
from ..notify import Notifier
from .common import get_log_level, is_dry_run, load_run_config, setup_run_logging

logger = logging.getLogger(__name__)

TITLE = "ZFS Auto Dataset Converter"


def execute_convert(args: argparse.Namespace) -> int:
    """Execute the convert command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    create_logger(get_log_level(args))

    config = load_run_config(args)
    if config is None:
        return 1

    notifier = Notifier(config.notifications, TITLE)
    errors = setup_run_logging(args, config)
    if errors:
        notifier.error("Environment check failed: " + "; ".join(errors))
        return 1

    dry_run = is_dry_run(args, config)
    endpoint = LocalEndpoint({"mount_point": config.global_config.mount_point})

    logger.info(__util__.log_heading(f"{TITLE} started at {time.ctime()}"))
    logger.info("Configuration: DRY_RUN=%s, MOUNT_POINT=%s", dry_run, config.global_config.mount_point)
    if not endpoint.command_exists("zfs"):
        notifier.error("ZFS command not found")
        return 1

    try:
        with __util__.run_lock():
            report = run_conversion(config, endpoint, notifier, dry_run=dry_run)
    except __util__.AbortError as e:
        notifier.error(str(e))
        return 1

    logger.info(__util__.log_heading(f"{TITLE} completed at {time.ctime()}"))
    return 0 if report.success else 1
