"""CLI dispatcher.

Routes the subcommands to their command modules. Each batch command loads
the configuration itself so ``config validate`` can report errors that
would stop a run.
"""

import argparse
import sys
from typing import Callable

from .common import add_dry_run_arg, add_verbosity_args


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="zfs-backup-ng",
        description="Convert folders to ZFS datasets and replicate them with sanoid/syncoid or rsync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    add_verbosity_args(parser)

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
    )

    # convert command
    convert_parser = subparsers.add_parser(
        "convert",
        help="Convert plain folders into child datasets",
        description=(
            "Stop containers and VMs using unconverted folders, convert every folder "
            "below the configured source datasets and restart what was stopped"
        ),
    )
    add_dry_run_arg(convert_parser)

    # replicate command
    replicate_parser = subparsers.add_parser(
        "replicate",
        help="Snapshot, prune and replicate datasets",
        description="Create and prune snapshots with sanoid, then replicate with syncoid or rsync",
    )
    add_dry_run_arg(replicate_parser)

    # config command with subcommands
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Validate or initialize configuration",
    )
    config_subs = config_parser.add_subparsers(dest="config_action")

    config_subs.add_parser(
        "validate",
        help="Validate configuration file",
    )

    init_parser = config_subs.add_parser(
        "init",
        help="Generate example configuration",
    )
    init_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output file (default: stdout)",
    )

    # schedule command with subcommands
    schedule_parser = subparsers.add_parser(
        "schedule",
        help="Manage cron entries",
        description="Install, remove or show the cron entries for convert and replicate",
    )
    schedule_subs = schedule_parser.add_subparsers(dest="schedule_action")
    schedule_subs.add_parser("install", help="Install cron entries from [schedule]")
    schedule_subs.add_parser("remove", help="Remove installed cron entries")
    schedule_subs.add_parser("show", help="Show installed cron entries")

    return parser


def run_subcommand(args: argparse.Namespace) -> int:
    """Run the specified subcommand.

    Args:
        args: Parsed arguments

    Returns:
        Exit code
    """
    from .. import __version__

    if args.version:
        print(f"zfs-backup-ng {__version__}")
        return 0

    if not args.command:
        print("No command specified. Use --help for usage information.")
        return 1

    handlers: dict[str, Callable] = {
        "convert": cmd_convert,
        "replicate": cmd_replicate,
        "config": cmd_config,
        "schedule": cmd_schedule,
    }

    handler = handlers.get(args.command)
    if handler:
        return handler(args)
    else:
        print(f"Unknown command: {args.command}")
        return 1


def cmd_convert(args: argparse.Namespace) -> int:
    """Execute convert command."""
    from .convert import execute_convert

    return execute_convert(args)


def cmd_replicate(args: argparse.Namespace) -> int:
    """Execute replicate command."""
    from .replicate import execute_replicate

    return execute_replicate(args)


def cmd_config(args: argparse.Namespace) -> int:
    """Execute config command."""
    from .config_cmd import execute_config

    return execute_config(args)


def cmd_schedule(args: argparse.Namespace) -> int:
    """Execute schedule command."""
    from .schedule import execute_schedule

    return execute_schedule(args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for zfs-backup-ng CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_subcommand_parser()
    args = parser.parse_args(argv)

    return run_subcommand(args)
