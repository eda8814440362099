"""Schedule command: Manage cron entries for the batch runs.

Managed entries are preceded by a ``# zfs-backup-ng: <command>`` marker
line so they can be replaced or removed without touching anything else in
the user's crontab.
"""

import argparse
import logging
import shlex
import shutil
import sys
from pathlib import Path

from .. import __util__
from ..__logger__ import create_logger
from ..config.schema import ScheduleConfig
from .common import get_log_level, load_run_config

logger = logging.getLogger(__name__)

MARKER = "# zfs-backup-ng:"
COMMANDS = ("convert", "replicate")


def program_command() -> list[str]:
    """Command line that starts this program from cron."""
    installed = shutil.which("zfs-backup-ng")
    if installed:
        return [installed]
    return [sys.executable, "-m", "zfs_backup_ng"]


def render_entries(schedule: ScheduleConfig, program: list[str], config_path=None) -> list[str]:
    """Render the marker and cron lines for every managed command."""
    lines = []
    for command in COMMANDS:
        argv = list(program)
        if config_path:
            argv += ["-c", str(config_path)]
        argv += ["-q", command]
        lines.append(f"{MARKER} {command}")
        lines.append(f"{getattr(schedule, command)} {shlex.join(argv)}")
    return lines


def strip_entries(lines: list[str]) -> list[str]:
    """Remove managed entries (marker line plus the line after it)."""
    kept = []
    skip_next = False
    for line in lines:
        if skip_next:
            skip_next = False
            continue
        if line.startswith(MARKER):
            skip_next = True
            continue
        kept.append(line)
    return kept


def managed_entries(lines: list[str]) -> list[str]:
    entries = []
    take_next = False
    for line in lines:
        if take_next:
            entries.append(line)
            take_next = False
        elif line.startswith(MARKER):
            entries.append(line)
            take_next = True
    return entries


def read_crontab() -> list[str]:
    result = __util__.exec_subprocess(["crontab", "-l"], check=False)
    if result.returncode != 0:
        # crontab -l fails when the user has no crontab yet
        return []
    return result.stdout.splitlines()


def write_crontab(lines: list[str]) -> None:
    content = "\n".join(lines)
    __util__.exec_subprocess(["crontab", "-"], input=content + "\n" if content else "")


def execute_schedule(args: argparse.Namespace) -> int:
    """Execute the schedule command.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    create_logger(get_log_level(args))
    action = getattr(args, "schedule_action", None)
    if action not in ("install", "remove", "show"):
        print("Usage: zfs-backup-ng schedule <install|remove|show>")
        return 1

    try:
        current = read_crontab()
        if action == "show":
            entries = managed_entries(current)
            if not entries:
                print("No zfs-backup-ng entries installed.")
            for line in entries:
                print(line)
            return 0

        if action == "remove":
            write_crontab(strip_entries(current))
            print("Removed zfs-backup-ng entries from crontab.")
            return 0

        config = load_run_config(args)
        if config is None:
            return 1
        if not config.schedule.enabled:
            logger.error("Scheduling is disabled - set [schedule] enabled = true")
            return 1
        config_path = getattr(args, "config", None)
        if config_path:
            config_path = Path(config_path).resolve()
        lines = strip_entries(current) + render_entries(
            config.schedule, program_command(), config_path
        )
        write_crontab(lines)
    except __util__.CommandError as e:
        logger.error("Cannot update crontab: %s", e)
        return 1

    print("Installed zfs-backup-ng entries:")
    for line in managed_entries(lines):
        print(f"  {line}")
    return 0
