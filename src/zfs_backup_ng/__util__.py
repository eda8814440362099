# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/__util__.py
Common helpers: error types, subprocess execution and the run lock.
"""

import contextlib
import getpass
import logging
import os
import re
import shlex
import subprocess
from pathlib import Path

from filelock import FileLock, Timeout

logger = logging.getLogger(__name__)

SIZE_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3}


class AbortError(Exception):
    """Raised when the whole run has to be aborted."""

    pass


class CommandError(AbortError):
    """An external command failed or could not be started."""

    def __init__(self, command, returncode=None, stderr="") -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        detail = f" (exit {returncode})" if returncode is not None else ""
        if self.stderr:
            detail += f": {self.stderr}"
        super().__init__(f"Command failed: {format_command(self.command)}{detail}")


def format_command(command) -> str:
    """Render an argv list the way it would be typed in a shell."""
    return shlex.join(str(c) for c in command)


def exec_subprocess(command, check=True, input=None, env=None):
    """Run ``command`` and return its CompletedProcess with text output.

    Raises:
        CommandError: if the executable is missing or, with ``check``,
            when it exits non-zero.
    """
    command = [str(c) for c in command]
    logger.debug("Executing: %s", format_command(command))
    try:
        result = subprocess.run(
            command,
            input=input,
            capture_output=True,
            text=True,
            env=env,
            check=False,
        )
    except OSError as e:
        raise CommandError(command, stderr=str(e)) from e
    if check and result.returncode != 0:
        raise CommandError(command, result.returncode, result.stderr)
    return result


def invoking_user() -> str:
    """Return the user who started the run, looking through sudo."""
    return os.environ.get("SUDO_USER") or getpass.getuser()


def is_root() -> bool:
    return os.geteuid() == 0


def parse_size(value) -> int:
    """Parse sizes like ``10M``, ``100K`` or ``4096`` into bytes."""
    match = re.fullmatch(r"\s*(\d+)\s*([KMGkmg]?)\s*", str(value))
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    return int(number) * SIZE_UNITS[unit.upper()]


def format_size(size) -> str:
    """Format a byte count with binary units."""
    if size is None:
        return "unknown"
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(size) < 1024 or unit == "GiB":
            if unit == "B":
                return f"{int(size)} B"
            return f"{size:.2f} {unit}"
        size /= 1024
    return f"{size:.2f} TiB"


def log_heading(caption) -> str:
    """Return a centered log heading."""
    return f"--[ {caption} ]".ljust(60, "-")


def default_lock_path() -> Path:
    return Path("/tmp") / f".zfs-backup-ng.{getpass.getuser()}.lock"


@contextlib.contextmanager
def run_lock(lock_path=None):
    """Hold the per-user run lock for the duration of a batch run.

    Raises:
        AbortError: if another run already holds the lock.
    """
    lock = FileLock(str(lock_path or default_lock_path()), timeout=0)
    try:
        lock.acquire()
    except Timeout as e:
        raise AbortError(f"Another run is in progress (lock: {lock.lock_file})") from e
    try:
        yield lock
    finally:
        lock.release()
