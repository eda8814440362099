"""Replicate command: Snapshot, prune and replicate selected datasets."""

import argparse
import logging
import time

from .. import __util__, endpoint
from ..__logger__ import create_logger
from ..core.orchestrator import run_replication
from ..notify import Notifier
from .common import get_log_level, is_dry_run, load_run_config, setup_run_logging

logger = logging.getLogger(__name__)

TITLE = "ZFS Snapshot & Replication"


def execute_replicate(args: argparse.Namespace) -> int:
    """Execute the replicate command.

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
    common_config = {"mount_point": config.global_config.mount_point}
    local = endpoint.LocalEndpoint(common_config)
    try:
        destination = endpoint.choose_endpoint(config.replication.remote, common_config)
    except ValueError as e:
        notifier.error(f"Invalid replication destination: {e}")
        return 1

    logger.info(__util__.log_heading(f"{TITLE} started at {time.ctime()}"))
    logger.info(
        "Configuration: DRY_RUN=%s, SOURCE_POOL=%s, REPLICATION=%s",
        dry_run,
        config.replication.source_pool,
        config.replication.method.value,
    )

    try:
        with __util__.run_lock():
            report = run_replication(config, local, destination, notifier, dry_run=dry_run)
    except __util__.AbortError as e:
        notifier.error(str(e))
        return 1

    logger.info(__util__.log_heading(f"Replication complete at {time.ctime()}"))
    return 0 if report.success else 1
