"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class NotificationMode(Enum):
    """Which events are pushed to the notification service."""

    ALL = "all"
    ERROR = "error"
    NONE = "none"


class ReplicationMethod(Enum):
    ZFS = "zfs"
    RSYNC = "rsync"
    NONE = "none"


class SyncoidMode(Enum):
    STRICT_MIRROR = "strict-mirror"
    BASIC = "basic"


class RsyncType(Enum):
    INCREMENTAL = "incremental"
    MIRROR = "mirror"


class RuntimePolicy(Enum):
    """What to do when a workload runtime cannot be queried.

    PROCEED treats the runtime as having no bindings, so candidates are
    still converted without stopping anything.
    """

    PROCEED = "proceed"
    ABORT = "abort"


@dataclass
class RetentionConfig:
    """Snapshot retention counts.

    A count of zero keeps no snapshots of that granularity.

    Attributes:
        hourly: Number of hourly snapshots to keep
        daily: Number of daily snapshots to keep
        weekly: Number of weekly snapshots to keep
        monthly: Number of monthly snapshots to keep
        yearly: Number of yearly snapshots to keep
    """

    hourly: int = 0
    daily: int = 7
    weekly: int = 4
    monthly: int = 3
    yearly: int = 0


@dataclass
class NotificationConfig:
    """Gotify push notification settings."""

    mode: NotificationMode = NotificationMode.ALL
    gotify_url: str = "http://localhost:8080"
    gotify_token: str = ""
    timeout: float = 10.0


@dataclass
class ToolsConfig:
    """Paths of external tools and their configuration."""

    sanoid_binary: str = "/usr/sbin/sanoid"
    syncoid_binary: str = "/usr/sbin/syncoid"
    sanoid_config_dir: str = "/etc/sanoid"
    sanoid_defaults: str = "/etc/sanoid/sanoid.defaults.conf"


@dataclass
class ConvertConfig:
    """Folder to dataset conversion settings.

    Attributes:
        process_containers: Stop containers whose appdata needs converting
        appdata: Dataset holding container appdata (pool/dataset)
        process_vms: Stop VMs whose vdisks need converting
        domains: Dataset holding VM domains (pool/dataset)
        datasets: Additional datasets whose child folders are converted
        cleanup_temp_dirs: Validate and delete staging folders after copying
        replace_spaces: Replace spaces with underscores in dataset names
        buffer_percent: Extra free space required on top of the folder size
        vm_shutdown_timeout: Seconds to wait for a graceful VM shutdown
        vm_poll_interval: Seconds between VM state checks
        on_runtime_unavailable: Policy when docker/virsh cannot be queried
    """

    process_containers: bool = False
    appdata: str = "tank/appdata"
    process_vms: bool = False
    domains: str = "tank/domains"
    datasets: list[str] = field(default_factory=list)
    cleanup_temp_dirs: bool = True
    replace_spaces: bool = False
    buffer_percent: int = 11
    vm_shutdown_timeout: int = 90
    vm_poll_interval: int = 5
    on_runtime_unavailable: RuntimePolicy = RuntimePolicy.PROCEED

    def get_source_datasets(self) -> list[str]:
        """Datasets whose direct child folders are conversion candidates."""
        sources = []
        if self.process_containers:
            sources.append(self.appdata)
        if self.process_vms:
            sources.append(self.domains)
        sources.extend(self.datasets)
        return sources


@dataclass
class ZfsReplicationConfig:
    destination_pool: str = "backup"
    parent_dataset: str = "replicas"
    mode: SyncoidMode = SyncoidMode.STRICT_MIRROR


@dataclass
class RsyncReplicationConfig:
    parent_folder: str = "/backup"
    type: RsyncType = RsyncType.INCREMENTAL


@dataclass
class RemoteConfig:
    """Remote replication host.

    Attributes:
        enabled: Replicate to a remote host over ssh
        user: Remote user name
        server: Remote hostname or address
    """

    enabled: bool = False
    user: str = "root"
    server: str = ""

    @property
    def address(self) -> str:
        return f"{self.user}@{self.server}"


@dataclass
class ReplicationConfig:
    """Snapshot and replication settings.

    Attributes:
        source_pool: Pool containing the source datasets
        source_dataset: Dataset used when auto selection is off
        auto_select: Select all direct children of the source pool
        exclude_prefix: Auto selection skips names starting with this
        excludes: Auto selection skips these exact names
        auto_snapshots: Take and prune snapshots with sanoid
        method: Replication method (zfs, rsync or none)
    """

    source_pool: str = "tank"
    source_dataset: str = "data"
    auto_select: bool = False
    exclude_prefix: str = ""
    excludes: list[str] = field(default_factory=list)
    auto_snapshots: bool = True
    method: ReplicationMethod = ReplicationMethod.ZFS
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    zfs: ZfsReplicationConfig = field(default_factory=ZfsReplicationConfig)
    rsync: RsyncReplicationConfig = field(default_factory=RsyncReplicationConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)


@dataclass
class ScheduleConfig:
    """Cron schedules for the two batch runs."""

    enabled: bool = False
    convert: str = "0 2 * * *"
    replicate: str = "0 3 * * *"


@dataclass
class GlobalConfig:
    """Global configuration settings.

    Attributes:
        mount_point: Base directory where datasets are mounted
        dry_run: Report actions without changing anything
        log_file: Path to log file (None for no file logging)
        log_max_size: Rotate the log file at this size (e.g. "10M")
        log_max_files: Number of rotated log files to keep
    """

    mount_point: str = "/mnt"
    dry_run: bool = False
    log_file: Optional[str] = "/var/log/zfs-backup-ng.log"
    log_max_size: str = "10M"
    log_max_files: int = 5


@dataclass
class Config:
    """Root configuration object."""

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    tools: ToolsConfig = field(default_factory=ToolsConfig)
    convert: ConvertConfig = field(default_factory=ConvertConfig)
    replication: ReplicationConfig = field(default_factory=ReplicationConfig)
    schedule: ScheduleConfig = field(default_factory=ScheduleConfig)
