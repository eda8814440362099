"""Configuration system for zfs-backup-ng.

This module provides TOML-based configuration loading, validation,
and schema definitions for the conversion and replication runs.
"""

from .loader import (
    ConfigError,
    check_environment,
    find_config_file,
    generate_example_config,
    load_config,
)
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

__all__ = [
    "Config",
    "ConvertConfig",
    "GlobalConfig",
    "NotificationConfig",
    "NotificationMode",
    "RemoteConfig",
    "ReplicationConfig",
    "ReplicationMethod",
    "RetentionConfig",
    "RsyncReplicationConfig",
    "RsyncType",
    "RuntimePolicy",
    "ScheduleConfig",
    "SyncoidMode",
    "ToolsConfig",
    "ZfsReplicationConfig",
    "load_config",
    "find_config_file",
    "check_environment",
    "generate_example_config",
    "ConfigError",
]
