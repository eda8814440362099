# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/endpoint/ssh.py
Run volume-manager and filesystem commands on a remote host over ssh.
"""

import shlex

from zfs_backup_ng import __util__
from zfs_backup_ng.__logger__ import logger

from .common import Endpoint


class SSHEndpoint(Endpoint):
    """Commands for a remote host, executed through ``ssh user@host``."""

    is_remote = True

    def __init__(self, config=None, **kwargs) -> None:
        super().__init__(config=config, **kwargs)
        config = config or {}
        self.config["username"] = self.config.get("username") or config.get("username", "root")
        self.config["hostname"] = self.config.get("hostname") or config.get("hostname", "")
        self.config["ssh_opts"] = list(config.get("ssh_opts", []))
        self.config["connect_timeout"] = config.get("connect_timeout", 5)
        if not self.config["hostname"]:
            raise ValueError("No hostname for SSH specified.")

    @property
    def address(self) -> str:
        return f"{self.config['username']}@{self.config['hostname']}"

    def get_id(self) -> str:
        return f"ssh://{self.address}"

    def _ssh_base_cmd(self):
        cmd = ["ssh", "-o", "BatchMode=yes"]
        for opt in self.config["ssh_opts"]:
            cmd.extend(["-o", opt])
        cmd.append(self.address)
        return cmd

    def _build_command(self, command):
        return self._ssh_base_cmd() + [shlex.join(str(c) for c in command)]

    def check_connection(self) -> bool:
        """Verify the host accepts a non-interactive ssh login."""
        cmd = [
            "ssh",
            "-o",
            "BatchMode=yes",
            "-o",
            f"ConnectTimeout={self.config['connect_timeout']}",
            self.address,
            "echo",
            "ok",
        ]
        try:
            __util__.exec_subprocess(cmd)
        except __util__.CommandError as e:
            logger.error("SSH connection to %s failed: %s", self.address, e)
            return False
        return True

    def command_exists(self, name) -> bool:
        result = self._exec_command(["sh", "-c", f"command -v {shlex.quote(name)}"], check=False)
        return result.returncode == 0

    def is_dir(self, path) -> bool:
        try:
            result = self._exec_command(["test", "-d", str(path)], check=False)
        except __util__.CommandError as e:
            logger.error("Cannot reach %s: %s", self.address, e)
            return False
        return result.returncode == 0

    def makedirs(self, path) -> None:
        self._exec_command(["mkdir", "-p", str(path)])

    def listdir(self, path) -> list[str]:
        result = self._exec_command(["ls", "-1", str(path)], check=False)
        if result.returncode != 0:
            return []
        return sorted(line for line in result.stdout.splitlines() if line)
