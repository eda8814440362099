"""Conversion and replication engines for zfs-backup-ng.

The engines only decide and sequence; every external command goes through
an endpoint so runs can be pointed at a remote host or a test double.
"""

from .convert import ConversionReport, Converter, normalize_name
from .orchestrator import PreflightError, run_conversion, run_replication
from .replication import MirrorReplicator, NativeReplicator, ReplicationResult
from .retention import RetentionPolicy
from .selection import SelectionError, Target, select_targets

__all__ = [
    "ConversionReport",
    "Converter",
    "normalize_name",
    "PreflightError",
    "run_conversion",
    "run_replication",
    "MirrorReplicator",
    "NativeReplicator",
    "ReplicationResult",
    "RetentionPolicy",
    "SelectionError",
    "Target",
    "select_targets",
]
