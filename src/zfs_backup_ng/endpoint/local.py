# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/endpoint/local.py
Create commands with local endpoints.
"""

from pathlib import Path

from zfs_backup_ng import __util__
from zfs_backup_ng.__logger__ import logger

from .common import PRIVILEGED_COMMANDS, Endpoint


class LocalEndpoint(Endpoint):
    """Create a local command endpoint."""

    def _build_command(self, command):
        command = list(command)
        if (
            self.config["use_sudo"]
            and not __util__.is_root()
            and command
            and Path(str(command[0])).name in PRIVILEGED_COMMANDS
        ):
            command = ["sudo", "-n"] + command
        return command

    def is_dir(self, path) -> bool:
        return Path(path).is_dir()

    def makedirs(self, path) -> None:
        path = Path(path)
        if not path.is_dir():
            logger.info("Creating directory: %s", path)
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise __util__.CommandError(["mkdir", "-p", str(path)], stderr=str(e)) from e

    def listdir(self, path) -> list[str]:
        path = Path(path)
        if not path.is_dir():
            return []
        return sorted(item.name for item in path.iterdir())

    def copy_tree(self, source, destination) -> None:
        """Copy the contents of ``source`` into ``destination``.

        Permissions, ownership and timestamps are preserved; nothing is
        deleted at the destination.
        """
        self._exec_command(["rsync", "-a", f"{source}/", f"{destination}/"])
