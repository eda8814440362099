"""Replicate a dataset to a backup destination.

Two mutually exclusive modes:

- native: ``syncoid`` sends incremental ZFS streams to a dataset on the
  destination pool, run as the invoking user so their ssh keys are used.
- mirror: ``rsync`` copies a temporary recursive snapshot to a plain
  directory. With incremental chaining every run writes a new timestamped
  backup generation and hard-links unchanged files against an earlier one.

Dry runs never touch the destination; they check that it is reachable and
record the command lines that would have been executed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import PurePosixPath
from typing import Callable

from .. import __util__
from ..config.schema import (
    RemoteConfig,
    RsyncReplicationConfig,
    RsyncType,
    SyncoidMode,
    ZfsReplicationConfig,
)
from .selection import Target

logger = logging.getLogger(__name__)

GENERATION_FORMAT = "%Y-%m-%d_%H%M"
SESSION_SNAPSHOT_PREFIX = "rsync_snapshot_"


@dataclass
class ReplicationResult:
    """Outcome of one replication session for one target."""

    target: str
    mode: str
    destination: str
    success: bool = True
    dry_run: bool = False
    message: str = ""
    commands: list[str] = field(default_factory=list)
    failed_children: list[str] = field(default_factory=list)


def is_generation_name(name: str) -> bool:
    try:
        datetime.strptime(name, GENERATION_FORMAT)
    except ValueError:
        return False
    return True


def generation_name(when: datetime) -> str:
    return when.strftime(GENERATION_FORMAT)


def previous_generation(names, current=None) -> str | None:
    """Return the backup generation to hard-link against.

    Generations are ordered by their timestamp name. The most recent one may
    be the generation currently being written, so the second most recent is
    used. A single generation is used on its own unless it is ``current``.
    """
    generations = sorted(n for n in names if is_generation_name(n))
    if len(generations) >= 2:
        return generations[-2]
    if generations and generations[0] != current:
        return generations[0]
    return None


def session_snapshot_name(when: datetime) -> str:
    return f"{SESSION_SNAPSHOT_PREFIX}{int(when.timestamp())}"


def snapshot_view(mountpoint, tag: str) -> PurePosixPath:
    """Path under which a mounted dataset exposes snapshot ``tag``."""
    return PurePosixPath(mountpoint) / ".zfs" / "snapshot" / tag


def run_as_invoking_user(command: list[str]) -> list[str]:
    """Run ``command`` as the user who started the run when running under sudo."""
    user = __util__.invoking_user()
    if __util__.is_root() and user != "root":
        return ["sudo", "-u", user] + command
    return command


class NativeReplicator:
    """Incremental ZFS replication through syncoid.

    Args:
        local: Local endpoint (runs syncoid)
        destination: Endpoint of the destination host
        syncoid_binary: Path of the syncoid executable
        config: Destination pool, parent dataset and sync mode
        remote: Remote host settings
        dry_run: Report instead of transferring
    """

    mode = "zfs"

    def __init__(
        self,
        local,
        destination,
        syncoid_binary,
        config: ZfsReplicationConfig,
        remote: RemoteConfig,
        dry_run: bool = False,
    ) -> None:
        self.local = local
        self.destination = destination
        self.syncoid_binary = str(syncoid_binary)
        self.config = config
        self.remote = remote
        self.dry_run = dry_run

    @property
    def parent_dataset(self) -> str:
        return f"{self.config.destination_pool}/{self.config.parent_dataset}"

    def destination_spec(self, target: Target) -> str:
        if self.remote.enabled:
            return f"{self.remote.address}:{target.zfs_destination}"
        return target.zfs_destination

    def syncoid_flags(self) -> list[str]:
        flags = ["-r"]
        if self.config.mode == SyncoidMode.STRICT_MIRROR:
            flags += ["--delete-target-snapshots", "--force-delete"]
        return flags

    def build_command(self, target: Target) -> list[str]:
        return run_as_invoking_user(
            [self.syncoid_binary, *self.syncoid_flags(), target.dataset, self.destination_spec(target)]
        )

    def ensure_parent(self) -> None:
        """Create the parent dataset on the destination if it is missing."""
        if self.destination.dataset_exists(self.parent_dataset):
            return
        logger.info("Creating parent destination dataset %s", self.parent_dataset)
        self.destination.create_dataset(self.parent_dataset)

    def replicate(self, target: Target) -> ReplicationResult:
        destination = self.destination_spec(target)
        result = ReplicationResult(
            target=target.dataset, mode=self.mode, destination=destination, dry_run=self.dry_run
        )
        cmd = self.build_command(target)
        result.commands.append(self.local.format_command(cmd))
        logger.info("Starting ZFS replication for %s (mode: %s)", target.dataset, self.config.mode.value)

        if self.dry_run:
            pool = self.config.destination_pool
            where = "Remote" if self.remote.enabled else "Local"
            if self.destination.dataset_exists(pool):
                logger.info("DRY RUN: %s ZFS pool '%s' is accessible", where, pool)
            else:
                result.success = False
                result.message = f"DRY RUN: {where} ZFS pool '{pool}' is not accessible"
                logger.warning(result.message)
            logger.info("DRY RUN: Would run %s", result.commands[-1])
            return result

        try:
            self.ensure_parent()
        except __util__.CommandError as e:
            result.success = False
            result.message = f"Failed to create parent ZFS dataset {self.parent_dataset}: {e}"
            return result

        try:
            self.local.run(cmd)
        except __util__.CommandError as e:
            result.success = False
            result.message = f"ZFS replication failed from {target.dataset} to {destination}: {e}"
            return result

        result.message = f"ZFS replication successful from {target.dataset} to {destination}"
        return result


class MirrorReplicator:
    """Directory-tree replication of a snapshot through rsync.

    Args:
        local: Local endpoint (creates snapshots, runs rsync)
        destination: Endpoint of the destination host
        config: Destination folder and rsync type
        remote: Remote host settings
        dry_run: Report instead of transferring
        clock: Returns the session start time
    """

    mode = "rsync"

    def __init__(
        self,
        local,
        destination,
        config: RsyncReplicationConfig,
        remote: RemoteConfig,
        dry_run: bool = False,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.local = local
        self.destination = destination
        self.config = config
        self.remote = remote
        self.dry_run = dry_run
        self.clock = clock

    @property
    def incremental(self) -> bool:
        return self.config.type == RsyncType.INCREMENTAL

    def rsync_command(self, source, destination, link_dest=None) -> list[str]:
        cmd = ["rsync", "-azvh" if self.remote.enabled else "-avh", "--delete"]
        if link_dest is not None:
            cmd.append(f"--link-dest={link_dest}")
        if self.remote.enabled:
            cmd += ["-e", "ssh", f"{source}/", f"{self.remote.address}:{destination}/"]
        else:
            cmd += [f"{source}/", f"{destination}/"]
        return cmd

    def _link_dest(self, root: PurePosixPath, destination, relative: str):
        if not self.incremental:
            return None
        current = PurePosixPath(destination).relative_to(root).parts[0]
        previous = previous_generation(self.destination.listdir(root), current)
        if previous is None:
            return None
        link_dest = root / previous
        if relative:
            link_dest = link_dest / relative
        logger.info("Using link-dest: %s", link_dest)
        return link_dest

    def _copy(self, source, destination, root, relative, result) -> bool:
        cmd = self.rsync_command(source, destination, self._link_dest(root, destination, relative))
        result.commands.append(self.local.format_command(cmd))
        if self.dry_run:
            logger.info("DRY RUN: Would run %s", result.commands[-1])
            return True

        logger.info("Performing rsync: %s -> %s", source, destination)
        try:
            self.destination.makedirs(destination)
            self.local.run(cmd)
        except __util__.CommandError as e:
            logger.error("Rsync from %s to %s failed: %s", source, destination, e)
            return False
        return True

    def _destroy(self, snapshot: str) -> None:
        try:
            self.local.destroy_snapshot(snapshot)
        except __util__.CommandError as e:
            logger.warning("Failed to delete temporary snapshot %s: %s", snapshot, e)

    def child_datasets(self, target: Target) -> list[str]:
        """All datasets below ``target``, at any depth."""
        prefix = f"{target.dataset}/"
        return [d for d in self.local.list_datasets(target.dataset) if d.startswith(prefix)]

    def replicate(self, target: Target) -> ReplicationResult:
        now = self.clock()
        tag = session_snapshot_name(now)
        root = PurePosixPath(target.rsync_destination)
        destination = root / generation_name(now) if self.incremental else root
        result = ReplicationResult(
            target=target.dataset,
            mode=self.mode,
            destination=str(destination),
            dry_run=self.dry_run,
        )
        logger.info("Starting rsync %s replication for: %s", self.config.type.value, target.dataset)

        try:
            children = self.child_datasets(target)
        except __util__.CommandError as e:
            result.success = False
            result.message = f"Cannot list child datasets of {target.dataset}: {e}"
            return result

        if self.dry_run:
            return self._dry_run(target, tag, root, destination, children, result)

        top_snapshot = f"{target.dataset}@{tag}"
        logger.info("Creating temporary snapshot: %s", top_snapshot)
        try:
            self.local.snapshot(top_snapshot, recursive=True)
        except __util__.CommandError as e:
            result.success = False
            result.message = f"Failed to create temporary snapshot {top_snapshot}: {e}"
            return result

        pending = [f"{child}@{tag}" for child in children]
        try:
            source = snapshot_view(target.mount_path, tag)
            if not self._copy(source, destination, root, "", result):
                result.success = False
                result.message = f"Rsync replication failed for: {target.dataset}"
                return result

            for child in children:
                relative = child[len(target.dataset) + 1 :]
                logger.info("Processing child dataset: %s", child)
                child_source = snapshot_view(self.local.mountpoint(child), tag)
                try:
                    if not self._copy(child_source, destination / relative, root, relative, result):
                        result.failed_children.append(child)
                finally:
                    pending.remove(f"{child}@{tag}")
                    self._destroy(f"{child}@{tag}")
        finally:
            for snapshot in pending:
                self._destroy(snapshot)
            logger.info("Cleaning up temporary snapshot")
            self._destroy(top_snapshot)

        if result.failed_children:
            result.success = False
            result.message = (
                f"Rsync replication of {target.dataset} failed for child datasets: "
                f"{', '.join(result.failed_children)}"
            )
        else:
            result.message = (
                f"Rsync {self.config.type.value} replication successful from "
                f"{target.dataset} to {destination}"
            )
        return result

    def _dry_run(self, target, tag, root, destination, children, result) -> ReplicationResult:
        parent = root.parent
        where = "Remote" if self.remote.enabled else "Local"
        if self.destination.is_dir(parent):
            logger.info("DRY RUN: %s destination folder '%s' is accessible", where, parent)
        else:
            result.success = False
            result.message = f"DRY RUN: {where} destination folder '{parent}' is not accessible"
            logger.warning(result.message)

        self._copy(snapshot_view(target.mount_path, tag), destination, root, "", result)
        for child in children:
            relative = child[len(target.dataset) + 1 :]
            child_source = snapshot_view(self.local.mountpoint(child), tag)
            self._copy(child_source, destination / relative, root, relative, result)
        return result
