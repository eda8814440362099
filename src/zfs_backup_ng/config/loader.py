"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import os
import tomllib
from enum import Enum
from pathlib import Path
from typing import Any

from ..__util__ import parse_size
from .schema import (
    Config,
    ConvertConfig,
    GlobalConfig,
    NotificationConfig,
    NotificationMode,
    RemoteConfig,
    ReplicationConfig,
    ReplicationMethod,
    RetentionConfig,
    RsyncReplicationConfig,
    RsyncType,
    RuntimePolicy,
    ScheduleConfig,
    SyncoidMode,
    ToolsConfig,
    ZfsReplicationConfig,
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "zfs-backup-ng" / "config.toml",
    Path("/etc/zfs-backup-ng/config.toml"),
]


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _parse_enum(enum_cls: type[Enum], value: Any, name: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(repr(m.value) for m in enum_cls)
        raise ConfigError(f"Invalid {name} {value!r}. Must be one of {allowed}.")


def _parse_count(data: dict[str, Any], key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"'{key}' must be a non-negative integer, got {value!r}")
    return value


def _parse_retention(data: dict[str, Any]) -> RetentionConfig:
    """Parse retention configuration from dict."""
    defaults = RetentionConfig()
    return RetentionConfig(
        hourly=_parse_count(data, "hourly", defaults.hourly),
        daily=_parse_count(data, "daily", defaults.daily),
        weekly=_parse_count(data, "weekly", defaults.weekly),
        monthly=_parse_count(data, "monthly", defaults.monthly),
        yearly=_parse_count(data, "yearly", defaults.yearly),
    )


def _parse_global(data: dict[str, Any]) -> GlobalConfig:
    """Parse global configuration from dict."""
    defaults = GlobalConfig()
    log_max_size = str(data.get("log_max_size", defaults.log_max_size))
    try:
        parse_size(log_max_size)
    except ValueError as e:
        raise ConfigError(f"'log_max_size': {e}")

    return GlobalConfig(
        mount_point=data.get("mount_point", defaults.mount_point),
        dry_run=data.get("dry_run", defaults.dry_run),
        log_file=data.get("log_file", defaults.log_file) or None,
        log_max_size=log_max_size,
        log_max_files=_parse_count(data, "log_max_files", defaults.log_max_files),
    )


def _parse_notifications(data: dict[str, Any]) -> NotificationConfig:
    defaults = NotificationConfig()
    return NotificationConfig(
        mode=_parse_enum(
            NotificationMode, data.get("mode", defaults.mode.value), "notification mode"
        ),
        gotify_url=data.get("gotify_url", defaults.gotify_url).rstrip("/"),
        gotify_token=data.get("gotify_token", defaults.gotify_token),
        timeout=data.get("timeout", defaults.timeout),
    )


def _parse_tools(data: dict[str, Any]) -> ToolsConfig:
    defaults = ToolsConfig()
    return ToolsConfig(
        sanoid_binary=data.get("sanoid_binary", defaults.sanoid_binary),
        syncoid_binary=data.get("syncoid_binary", defaults.syncoid_binary),
        sanoid_config_dir=data.get("sanoid_config_dir", defaults.sanoid_config_dir),
        sanoid_defaults=data.get("sanoid_defaults", defaults.sanoid_defaults),
    )


def _parse_convert(data: dict[str, Any]) -> ConvertConfig:
    """Parse folder conversion configuration from dict."""
    defaults = ConvertConfig()
    datasets = data.get("datasets", [])
    if not isinstance(datasets, list):
        raise ConfigError("'convert.datasets' must be a list of pool/dataset names")

    return ConvertConfig(
        process_containers=data.get("process_containers", defaults.process_containers),
        appdata=data.get("appdata", defaults.appdata),
        process_vms=data.get("process_vms", defaults.process_vms),
        domains=data.get("domains", defaults.domains),
        datasets=list(datasets),
        cleanup_temp_dirs=data.get("cleanup_temp_dirs", defaults.cleanup_temp_dirs),
        replace_spaces=data.get("replace_spaces", defaults.replace_spaces),
        buffer_percent=_parse_count(data, "buffer_percent", defaults.buffer_percent),
        vm_shutdown_timeout=_parse_count(
            data, "vm_shutdown_timeout", defaults.vm_shutdown_timeout
        ),
        vm_poll_interval=_parse_count(
            data, "vm_poll_interval", defaults.vm_poll_interval
        ),
        on_runtime_unavailable=_parse_enum(
            RuntimePolicy,
            data.get("on_runtime_unavailable", defaults.on_runtime_unavailable.value),
            "runtime policy",
        ),
    )


def _parse_replication(data: dict[str, Any]) -> ReplicationConfig:
    """Parse snapshot/replication configuration from dict."""
    defaults = ReplicationConfig()
    zfs_data = data.get("zfs", {})
    rsync_data = data.get("rsync", {})
    remote_data = data.get("remote", {})

    zfs = ZfsReplicationConfig(
        destination_pool=zfs_data.get("destination_pool", defaults.zfs.destination_pool),
        parent_dataset=zfs_data.get("parent_dataset", defaults.zfs.parent_dataset),
        mode=_parse_enum(
            SyncoidMode, zfs_data.get("mode", defaults.zfs.mode.value), "syncoid mode"
        ),
    )
    rsync = RsyncReplicationConfig(
        parent_folder=rsync_data.get("parent_folder", defaults.rsync.parent_folder),
        type=_parse_enum(
            RsyncType, rsync_data.get("type", defaults.rsync.type.value), "rsync type"
        ),
    )
    remote = RemoteConfig(
        enabled=remote_data.get("enabled", defaults.remote.enabled),
        user=remote_data.get("user", defaults.remote.user),
        server=remote_data.get("server", defaults.remote.server),
    )

    return ReplicationConfig(
        source_pool=data.get("source_pool", defaults.source_pool),
        source_dataset=data.get("source_dataset", defaults.source_dataset),
        auto_select=data.get("auto_select", defaults.auto_select),
        exclude_prefix=data.get("exclude_prefix", defaults.exclude_prefix),
        excludes=list(data.get("excludes", defaults.excludes)),
        auto_snapshots=data.get("auto_snapshots", defaults.auto_snapshots),
        method=_parse_enum(
            ReplicationMethod, data.get("method", defaults.method.value), "replication method"
        ),
        retention=_parse_retention(data.get("retention", {})),
        zfs=zfs,
        rsync=rsync,
        remote=remote,
    )


def _parse_schedule(data: dict[str, Any]) -> ScheduleConfig:
    defaults = ScheduleConfig()
    schedule = ScheduleConfig(
        enabled=data.get("enabled", defaults.enabled),
        convert=data.get("convert", defaults.convert),
        replicate=data.get("replicate", defaults.replicate),
    )
    for name in ("convert", "replicate"):
        if len(getattr(schedule, name).split()) != 5:
            raise ConfigError(
                f"Schedule '{name}' must be a 5-field cron expression, "
                f"got {getattr(schedule, name)!r}"
            )
    return schedule


def _validate_config(config: Config) -> list[str]:
    """Validate cross-field rules.

    Raises:
        ConfigError: for combinations that make a run impossible

    Returns:
        List of non-fatal warnings
    """
    warnings = []
    notifications = config.notifications
    replication = config.replication

    if notifications.mode != NotificationMode.NONE:
        if not notifications.gotify_url:
            raise ConfigError("gotify_url must be set when notifications are enabled")
        if not notifications.gotify_token:
            raise ConfigError("gotify_token must be set when notifications are enabled")

    if replication.remote.enabled and not (
        replication.remote.user and replication.remote.server
    ):
        raise ConfigError("Remote replication enabled but user or server not configured")

    if replication.method == ReplicationMethod.NONE and not replication.auto_snapshots:
        raise ConfigError(
            "Both replication and auto snapshots are disabled. Please configure at least one."
        )

    if not config.convert.get_source_datasets():
        warnings.append("No conversion sources configured")

    if not replication.auto_select and (replication.exclude_prefix or replication.excludes):
        warnings.append("Exclusions are only applied when auto_select is enabled")

    for dataset in config.convert.get_source_datasets():
        if "/" not in dataset:
            warnings.append(f"Conversion source '{dataset}' is a pool, not a dataset")

    return warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    config = Config(
        global_config=_parse_global(data.get("global", {})),
        notifications=_parse_notifications(data.get("notifications", {})),
        tools=_parse_tools(data.get("tools", {})),
        convert=_parse_convert(data.get("convert", {})),
        replication=_parse_replication(data.get("replication", {})),
        schedule=_parse_schedule(data.get("schedule", {})),
    )

    warnings = _validate_config(config)

    return config, warnings


def check_environment(config: Config) -> list[str]:
    """Check the host paths a run depends on.

    Returns:
        List of errors; any entry makes the run impossible.
    """
    errors = []
    log_file = config.global_config.log_file
    if log_file:
        log_dir = Path(log_file).parent
        if not log_dir.is_dir():
            errors.append(f"Log directory {log_dir} does not exist")
        elif not os.access(log_dir, os.W_OK):
            errors.append(f"Log directory {log_dir} is not writable")

    mount_point = Path(config.global_config.mount_point)
    if not mount_point.is_dir():
        errors.append(f"Mount point {mount_point} does not exist")

    return errors


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# zfs-backup-ng configuration
# See documentation for full options

[global]
mount_point = "/mnt"        # Base mount point for ZFS datasets
dry_run = false
log_file = "/var/log/zfs-backup-ng.log"
log_max_size = "10M"
log_max_files = 5

[notifications]
mode = "none"               # "all" or "error" need gotify_url and gotify_token
gotify_url = "http://localhost:8080"
gotify_token = ""

[tools]
sanoid_binary = "/usr/sbin/sanoid"
syncoid_binary = "/usr/sbin/syncoid"
sanoid_config_dir = "/etc/sanoid"

# Folder -> dataset conversion
[convert]
process_containers = false
appdata = "tank/appdata"
process_vms = false
domains = "tank/domains"
vm_shutdown_timeout = 90    # Seconds before a VM is force stopped
datasets = [
    # "tank/data",
]
cleanup_temp_dirs = true
replace_spaces = false
buffer_percent = 11         # Extra free space required before converting

# Snapshots and replication
[replication]
source_pool = "tank"
source_dataset = "data"
auto_select = false
exclude_prefix = "backup_"
excludes = ["temp", "scratch"]
auto_snapshots = true
method = "zfs"              # "zfs", "rsync" or "none"

[replication.retention]
hourly = 0
daily = 7
weekly = 4
monthly = 3
yearly = 0

[replication.zfs]
destination_pool = "backup"
parent_dataset = "replicas"
mode = "strict-mirror"      # "strict-mirror" or "basic"

[replication.rsync]
parent_folder = "/backup"
type = "incremental"        # "incremental" or "mirror"

[replication.remote]
enabled = false
user = "root"
server = "192.168.1.100"

[schedule]
enabled = false
convert = "0 2 * * *"
replicate = "0 3 * * *"
"""
