"""Pytest configuration and shared fixtures."""

import os
import shutil
from pathlib import Path

import pytest

from zfs_backup_ng import __util__
from zfs_backup_ng.core.services import RuntimeUnavailable
from zfs_backup_ng.endpoint.common import Endpoint
from zfs_backup_ng.notify import DeliveryResult

MB = 1000 * 1000


class FakeEndpoint(Endpoint):
    """Volume manager double; datasets are plain directories below ``root``."""

    def __init__(self, root, datasets=(), available=10**12) -> None:
        super().__init__({"mount_point": root, "use_sudo": False})
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)
        self.datasets = []
        self.available = {}
        self.default_available = available
        self.used = {}
        self.commands = []
        self.snapshots = []
        self.destroyed = []
        self.fail_create = set()
        self.fail_copy = False
        self.fail_commands = []
        self.missing_tools = set()
        self.connected = True
        for name in datasets:
            self.add_dataset(name)

    def add_dataset(self, name) -> Path:
        if name not in self.datasets:
            self.datasets.append(name)
        path = self.mountpoint(name)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _check_failure(self, command):
        line = " ".join(str(c) for c in command)
        for needle in self.fail_commands:
            if needle in line:
                raise __util__.CommandError(command, returncode=1, stderr="simulated failure")

    def run(self, command, check=True):
        self.commands.append([str(c) for c in command])
        self._check_failure(command)

    def command_exists(self, name) -> bool:
        return name not in self.missing_tools

    def check_connection(self) -> bool:
        return self.connected

    def list_datasets(self, root=None, recursive=True) -> list[str]:
        names = sorted(self.datasets)
        if root:
            names = [n for n in names if n == root or n.startswith(f"{root}/")]
        return names

    def dataset_exists(self, name) -> bool:
        return name in self.datasets

    def available_bytes(self, dataset):
        return self.available.get(dataset, self.default_available)

    def used_bytes(self, dataset):
        return self.used.get(dataset, MB)

    def mounted_mountpoints(self) -> set[str]:
        return {str(self.mountpoint(name)) for name in self.datasets}

    def mountpoint(self, dataset) -> Path:
        return self.root / dataset

    def create_dataset(self, name) -> None:
        self.commands.append(["zfs", "create", name])
        if name in self.fail_create:
            raise __util__.CommandError(["zfs", "create", name], returncode=1, stderr="simulated")
        self.add_dataset(name)

    def snapshot(self, name, recursive=False) -> None:
        cmd = ["zfs", "snapshot"] + (["-r"] if recursive else []) + [name]
        self.commands.append(cmd)
        self._check_failure(cmd)
        self.snapshots.append(name)

    def destroy_snapshot(self, name) -> None:
        cmd = ["zfs", "destroy", name]
        self.commands.append(cmd)
        self._check_failure(cmd)
        self.destroyed.append(name)

    def copy_tree(self, source, destination) -> None:
        cmd = ["rsync", "-a", f"{source}/", f"{destination}/"]
        self.commands.append(cmd)
        if self.fail_copy:
            raise __util__.CommandError(cmd, returncode=23, stderr="simulated")
        shutil.copytree(source, destination, symlinks=True, dirs_exist_ok=True)

    def is_dir(self, path) -> bool:
        return Path(path).is_dir()

    def makedirs(self, path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def listdir(self, path) -> list[str]:
        if not Path(path).is_dir():
            return []
        return sorted(os.listdir(path))

    def ran(self, program) -> list[list[str]]:
        return [c for c in self.commands if c and Path(c[0]).name == program]


class FakeRuntime:
    """Workload runtime double mapping workload names to bind paths."""

    def __init__(self, kind, workloads=None, unavailable=False, fail_stop=(), fail_start=()):
        self.kind = kind
        self.workloads = dict(workloads or {})
        self.unavailable = unavailable
        self.fail_stop = set(fail_stop)
        self.fail_start = set(fail_start)
        self.stopped = []
        self.started = []

    def running(self) -> list[str]:
        if self.unavailable:
            raise RuntimeUnavailable(f"{self.kind} runtime not available")
        return [n for n in self.workloads if n not in self.stopped]

    def bindings(self, name) -> list[str]:
        return [str(b) for b in self.workloads[name]]

    def stop(self, name) -> None:
        if name in self.fail_stop:
            raise __util__.CommandError(["stop", name], returncode=1)
        self.stopped.append(name)

    def start(self, name) -> None:
        if name in self.fail_start:
            raise __util__.CommandError(["start", name], returncode=1)
        self.started.append(name)


class RecordingNotifier:
    """Notifier double collecting (level, message) pairs."""

    def __init__(self) -> None:
        self.messages = []

    def send(self, message, level="info") -> DeliveryResult:
        self.messages.append((level, message))
        return DeliveryResult(True)

    def success(self, message) -> DeliveryResult:
        return self.send(message, "success")

    def error(self, message) -> DeliveryResult:
        return self.send(message, "error")

    def info(self, message) -> DeliveryResult:
        return self.send(message, "info")

    def at(self, level) -> list[str]:
        return [m for lvl, m in self.messages if lvl == level]


@pytest.fixture
def tmp_config_dir(tmp_path):
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def fake_endpoint(tmp_path):
    """Fake volume manager with mounts below ``tmp_path/mnt``."""
    return FakeEndpoint(tmp_path / "mnt")


@pytest.fixture
def make_endpoint(tmp_path):
    """Factory for additional fake endpoints (e.g. a replication destination)."""

    def factory(name="dest", **kwargs):
        return FakeEndpoint(tmp_path / name, **kwargs)

    return factory


@pytest.fixture
def make_runtime():
    return FakeRuntime


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def sample_config_toml():
    """Return a sample valid TOML configuration string."""
    return """
[global]
mount_point = "/mnt"
dry_run = false
log_file = ""
log_max_size = "5M"
log_max_files = 3

[notifications]
mode = "error"
gotify_url = "https://gotify.example.com/"
gotify_token = "AbCdEf"

[tools]
sanoid_config_dir = "/etc/sanoid"

[convert]
process_containers = true
appdata = "tank/appdata"
process_vms = true
domains = "tank/domains"
datasets = ["tank/media"]
replace_spaces = true
buffer_percent = 15
vm_shutdown_timeout = 60

[replication]
source_pool = "tank"
auto_select = true
exclude_prefix = "tmp"
excludes = ["scratch"]
method = "rsync"

[replication.retention]
hourly = 24
daily = 14

[replication.rsync]
parent_folder = "/backup"
type = "incremental"

[replication.remote]
enabled = true
user = "backup"
server = "nas.local"

[schedule]
enabled = true
convert = "30 1 * * *"
replicate = "0 4 * * 0"
"""


@pytest.fixture
def minimal_config_toml():
    """Return a minimal valid TOML configuration string."""
    return """
[notifications]
mode = "none"
"""


@pytest.fixture
def config_file(tmp_config_dir, sample_config_toml):
    """Create a temporary config file with sample content."""
    config_path = tmp_config_dir / "config.toml"
    config_path.write_text(sample_config_toml)
    return config_path


@pytest.fixture
def minimal_config_file(tmp_config_dir, minimal_config_toml):
    """Create a temporary config file with minimal content."""
    config_path = tmp_config_dir / "minimal.toml"
    config_path.write_text(minimal_config_toml)
    return config_path
