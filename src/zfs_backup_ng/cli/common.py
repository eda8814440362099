"""Shared CLI utilities and argument parsers."""

import argparse
import logging

from .. import __util__
from ..__logger__ import create_logger
from ..config import Config, ConfigError, check_environment, find_config_file, load_config

logger = logging.getLogger(__name__)


def create_global_parser() -> argparse.ArgumentParser:
    """Create a parser with global options that can be used as a parent."""
    parser = argparse.ArgumentParser(add_help=False)
    add_verbosity_args(parser)
    return parser


def add_verbosity_args(parser: argparse.ArgumentParser) -> None:
    """Add verbosity-related arguments to a parser."""
    group = parser.add_argument_group("Output options")
    group.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose output",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="store_true",
        help="Suppress non-essential output",
    )
    group.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug output",
    )


def add_dry_run_arg(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )


def get_log_level(args: argparse.Namespace) -> str:
    """Determine log level from parsed arguments.

    Args:
        args: Parsed command line arguments

    Returns:
        Log level string (DEBUG, INFO, WARNING, ERROR)
    """
    if getattr(args, "debug", False):
        return "DEBUG"
    elif getattr(args, "quiet", False):
        return "WARNING"
    elif getattr(args, "verbose", False):
        return "DEBUG"
    else:
        return "INFO"


def load_run_config(args: argparse.Namespace) -> Config | None:
    """Find, load and validate the configuration for a batch run.

    Returns:
        The configuration, or None after logging why it is unusable
    """
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            logger.error("No configuration file found.")
            logger.error("Create one with: zfs-backup-ng config init")
            return None

        logger.info("Loading configuration from: %s", config_path)
        config, warnings = load_config(config_path)
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return None

    for warning in warnings:
        logger.warning("Config: %s", warning)
    return config


def setup_run_logging(args: argparse.Namespace, config: Config) -> list[str]:
    """Configure console and log file output for a batch run.

    Returns:
        Environment errors; the log file is only attached when there are none
    """
    errors = check_environment(config)
    log_file = None if errors else config.global_config.log_file
    create_logger(
        get_log_level(args),
        log_file=log_file,
        max_bytes=__util__.parse_size(config.global_config.log_max_size),
        backup_count=config.global_config.log_max_files,
    )
    return errors


def is_dry_run(args: argparse.Namespace, config: Config) -> bool:
    return bool(getattr(args, "dry_run", False) or config.global_config.dry_run)
