"""Config command: Configuration management."""

import argparse
import logging

from ..__logger__ import create_logger
from ..config import ConfigError, check_environment, find_config_file, load_config
from ..config.loader import generate_example_config
from .common import get_log_level

logger = logging.getLogger(__name__)


def execute_config(args: argparse.Namespace) -> int:
    """Execute the config command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(get_log_level(args))

    action = getattr(args, "config_action", None)

    if action == "validate":
        return _validate_config(args)
    elif action == "init":
        return _init_config(args)
    else:
        print("Usage: zfs-backup-ng config <validate|init>")
        return 1


def _validate_config(args: argparse.Namespace) -> int:
    """Validate configuration file."""
    try:
        config_path = find_config_file(getattr(args, "config", None))
        if config_path is None:
            print("No configuration file found.")
            print("Searched locations:")
            print("  ~/.config/zfs-backup-ng/config.toml")
            print("  /etc/zfs-backup-ng/config.toml")
            return 1

        print(f"Validating: {config_path}")
        config, warnings = load_config(config_path)

    except ConfigError as e:
        print(f"Configuration error: {e}")
        return 1

    if warnings:
        print("")
        print("Warnings:")
        for warning in warnings:
            print(f"  - {warning}")

    errors = check_environment(config)
    if errors:
        print("")
        print("Environment errors:")
        for error in errors:
            print(f"  - {error}")
        return 1

    replication = config.replication
    print("")
    print("Configuration is valid.")
    print(f"  Conversion sources: {', '.join(config.convert.get_source_datasets()) or 'none'}")
    if replication.auto_select:
        print(f"  Replication: auto-select children of {replication.source_pool}")
    else:
        print(f"  Replication: {replication.source_pool}/{replication.source_dataset}")
    print(f"  Method: {replication.method.value}")
    print(f"  Notifications: {config.notifications.mode.value}")

    return 0


def _init_config(args: argparse.Namespace) -> int:
    """Generate example configuration."""
    content = generate_example_config()

    output = getattr(args, "output", None)
    if output:
        try:
            with open(output, "w") as f:
                f.write(content)
            print(f"Example configuration written to: {output}")
        except OSError as e:
            print(f"Error writing file: {e}")
            return 1
    else:
        print(content)

    return 0
