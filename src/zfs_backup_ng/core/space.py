"""Space checks for folder conversions.

All comparisons use whole bytes; the safety margin is rounded up so a
candidate is never admitted on a fractional byte.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from ..__util__ import format_size

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_MARGIN_PERCENT = 11


@dataclass(frozen=True)
class TreeStats:
    """File count and apparent byte size of a directory tree."""

    files: int = 0
    bytes: int = 0


@dataclass
class SpaceCheck:
    """Result of a capacity check."""

    required: int
    available: int | None
    buffer_percent: int

    @property
    def sufficient(self) -> bool:
        return self.available is not None and self.required <= self.available

    @property
    def shortfall(self) -> int:
        if self.available is None:
            return self.required
        return max(0, self.required - self.available)


def tree_stats(path) -> TreeStats:
    """Count non-directory entries below ``path`` and sum their sizes.

    Symlinks are counted but not followed.
    """
    files = 0
    total = 0
    for dirpath, dirnames, filenames in os.walk(path):
        for name in filenames:
            files += 1
            total += os.lstat(os.path.join(dirpath, name)).st_size
        # os.walk lists symlinks to directories under dirnames
        for name in dirnames:
            full = os.path.join(dirpath, name)
            if os.path.islink(full):
                files += 1
                total += os.lstat(full).st_size
    return TreeStats(files=files, bytes=total)


def directory_size(path) -> int:
    return tree_stats(Path(path)).bytes


def required_bytes(size: int, buffer_percent: int) -> int:
    """Return ``size`` plus ``buffer_percent`` percent, rounded up to a byte."""
    return size + -(-size * buffer_percent // 100)


def check_space_availability(size: int, available, buffer_percent: int) -> SpaceCheck:
    return SpaceCheck(
        required=required_bytes(size, buffer_percent),
        available=available,
        buffer_percent=buffer_percent,
    )


def check_capacity(size: int, endpoint, dataset: str, buffer_percent: int) -> SpaceCheck:
    """Check whether ``size`` bytes plus the buffer fit into ``dataset``.

    A dataset that cannot be queried reports no capacity.
    """
    available = endpoint.available_bytes(dataset)
    check = check_space_availability(size, available, buffer_percent)
    logger.debug(format_space_check(check))
    return check


def has_capacity(size: int, endpoint, dataset: str, buffer_percent: int) -> bool:
    return check_capacity(size, endpoint, dataset, buffer_percent).sufficient


def format_space_check(check: SpaceCheck) -> str:
    available = format_size(check.available) if check.available is not None else "unknown"
    return (
        f"required {format_size(check.required)} ({check.required} bytes incl. "
        f"{check.buffer_percent}% buffer), available {available}"
    )
