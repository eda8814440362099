# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/endpoint/common.py
Common functionality among endpoints.
"""

import shutil
from pathlib import Path

from zfs_backup_ng import __util__
from zfs_backup_ng.__logger__ import logger

# Commands that need root on the local host
PRIVILEGED_COMMANDS = frozenset({"zfs", "sanoid"})


class Endpoint:
    """Generic structure of a command endpoint.

    An endpoint is the host a volume-manager or filesystem command runs on.
    Every command reports failure by raising ``__util__.CommandError``.
    """

    is_remote = False

    def __init__(self, config=None, **kwargs) -> None:
        """
        Initialize the Endpoint with a configuration dictionary.

        Args:
            config (dict): Configuration dictionary containing endpoint settings.
            kwargs: Additional keyword arguments overriding config entries.
        """
        config = config or {}
        self.config = {}
        self.config["mount_point"] = Path(config.get("mount_point", "/mnt"))
        self.config["use_sudo"] = config.get("use_sudo", True)

        for key, value in kwargs.items():
            self.config[key] = value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.get_id()})"

    def get_id(self) -> str:
        """Return an id string to identify this endpoint."""
        return "localhost"

    # --- command execution ---

    def _build_command(self, command):
        return list(command)

    def _exec_command(self, command, check=True):
        return __util__.exec_subprocess(self._build_command(command), check=check)

    def run(self, command, check=True):
        """Run an arbitrary command on this endpoint."""
        return self._exec_command(command, check=check)

    def format_command(self, command) -> str:
        """Render the command line this endpoint would run."""
        return __util__.format_command(self._build_command(command))

    def command_exists(self, name) -> bool:
        """Check whether ``name`` is an executable on this host."""
        return shutil.which(name) is not None or Path(name).is_file()

    def check_connection(self) -> bool:
        return True

    # --- volume manager ---

    def list_datasets(self, root=None, recursive=True) -> list[str]:
        """List dataset names, optionally only ``root`` and its descendants."""
        cmd = ["zfs", "list", "-H", "-o", "name"]
        if root:
            if recursive:
                cmd.append("-r")
            cmd.append(root)
        result = self._exec_command(cmd)
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def dataset_exists(self, name) -> bool:
        try:
            result = self._exec_command(["zfs", "list", "-H", "-o", "name", name], check=False)
        except __util__.CommandError as e:
            logger.error("Cannot query dataset %s: %s", name, e)
            return False
        return result.returncode == 0

    def get_property(self, dataset, prop) -> str:
        """Return the parsable value of ``prop`` for ``dataset``."""
        result = self._exec_command(["zfs", "get", "-H", "-p", "-o", "value", prop, dataset])
        return result.stdout.strip()

    def _get_int_property(self, dataset, prop):
        try:
            return int(self.get_property(dataset, prop))
        except (__util__.CommandError, ValueError) as e:
            logger.error("Cannot read %s of %s: %s", prop, dataset, e)
            return None

    def available_bytes(self, dataset):
        """Free bytes reported for ``dataset``, or None if it cannot be queried."""
        return self._get_int_property(dataset, "available")

    def used_bytes(self, dataset):
        return self._get_int_property(dataset, "used")

    def mounted_mountpoints(self) -> set[str]:
        """Mountpoints of all currently mounted datasets."""
        result = self._exec_command(["zfs", "list", "-H", "-o", "mounted,mountpoint"])
        mounted = set()
        for line in result.stdout.splitlines():
            parts = line.split("\t", 1)
            if len(parts) == 2 and parts[0] == "yes":
                mounted.add(str(Path(parts[1])))
        return mounted

    def mountpoint(self, dataset) -> Path:
        """Return where ``dataset`` is mounted.

        Falls back to ``<mount_point>/<dataset>`` when the property is not a path.
        """
        try:
            value = self.get_property(dataset, "mountpoint")
        except __util__.CommandError as e:
            logger.debug("Cannot read mountpoint of %s: %s", dataset, e)
            value = ""
        if value.startswith("/"):
            return Path(value)
        return self.config["mount_point"] / dataset

    def create_dataset(self, name) -> None:
        logger.info("Creating dataset %s", name)
        self._exec_command(["zfs", "create", name])

    def snapshot(self, name, recursive=False) -> None:
        """Create snapshot ``name`` (``dataset@tag``)."""
        if "@" not in name:
            raise ValueError(f"Not a snapshot name: {name}")
        cmd = ["zfs", "snapshot"]
        if recursive:
            cmd.append("-r")
        self._exec_command(cmd + [name])

    def destroy_snapshot(self, name) -> None:
        """Destroy snapshot ``name``; refuses anything that is not a snapshot."""
        if "@" not in name:
            raise ValueError(f"Refusing to destroy non-snapshot: {name}")
        self._exec_command(["zfs", "destroy", name])

    # --- filesystem ---

    def is_dir(self, path) -> bool:
        raise NotImplementedError

    def makedirs(self, path) -> None:
        raise NotImplementedError

    def listdir(self, path) -> list[str]:
        raise NotImplementedError
