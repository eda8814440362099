"""Quiesce and resume workloads around folder conversions.

Containers and virtual machines whose data lives in a plain folder under a
managed dataset are stopped before conversion and started again afterwards.
Only workloads stopped during this run are ever started.
"""

import json
import logging
import shutil
import time
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Callable

from .. import __util__
from ..config.schema import RuntimePolicy

logger = logging.getLogger(__name__)


class RuntimeUnavailable(Exception):
    """The workload runtime cannot be queried."""

    pass


@dataclass(frozen=True)
class Workload:
    kind: str
    name: str

    def __str__(self) -> str:
        return f"{self.kind} {self.name}"


@dataclass
class StoppedServices:
    """Workloads stopped during this run, in stop order."""

    workloads: list[Workload] = field(default_factory=list)
    failures: list[str] = field(default_factory=list)
    dry_run: bool = False

    def add(self, workload: Workload) -> None:
        if workload not in self.workloads:
            self.workloads.append(workload)

    def names(self, kind: str) -> list[str]:
        return [w.name for w in self.workloads if w.kind == kind]

    def __len__(self) -> int:
        return len(self.workloads)


class _Runtime:
    """Shared command handling for workload runtimes."""

    kind = ""
    binary = ""

    def _exec(self, command):
        if shutil.which(self.binary) is None:
            raise RuntimeUnavailable(f"{self.binary} command not found")
        try:
            return __util__.exec_subprocess(command)
        except __util__.CommandError as e:
            raise RuntimeUnavailable(str(e)) from e


class DockerRuntime(_Runtime):
    """Running containers and their bind mounts."""

    kind = "container"
    binary = "docker"

    def running(self) -> list[str]:
        result = self._exec(["docker", "ps", "--format", "{{.Names}}"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def bindings(self, name) -> list[str]:
        result = self._exec(["docker", "inspect", "--format", "{{json .Mounts}}", name])
        mounts = json.loads(result.stdout or "[]") or []
        return [m["Source"] for m in mounts if m.get("Type") == "bind" and m.get("Source")]

    def stop(self, name) -> None:
        __util__.exec_subprocess(["docker", "stop", name])

    def start(self, name) -> None:
        __util__.exec_subprocess(["docker", "start", name])


class VirshRuntime(_Runtime):
    """Running libvirt domains and the folders holding their vdisks.

    ``stop`` asks for a graceful shutdown, polls the domain state every
    ``poll_interval`` seconds and forces it off after ``timeout`` seconds.
    """

    kind = "vm"
    binary = "virsh"

    def __init__(
        self,
        timeout: int = 90,
        poll_interval: int = 5,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.timeout = timeout
        self.poll_interval = poll_interval
        self.sleep = sleep
        self.clock = clock

    def running(self) -> list[str]:
        result = self._exec(["virsh", "list", "--name"])
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def bindings(self, name) -> list[str]:
        result = self._exec(["virsh", "domblklist", name, "--details"])
        folders = []
        for line in result.stdout.splitlines():
            # Type  Device  Target  Source
            parts = line.split(None, 3)
            if len(parts) == 4 and parts[1] == "disk" and parts[3].startswith("/"):
                folders.append(str(PurePosixPath(parts[3].strip()).parent))
        return folders

    def is_running(self, name) -> bool:
        try:
            result = __util__.exec_subprocess(["virsh", "domstate", name])
        except __util__.CommandError as e:
            logger.warning("Cannot query state of VM %s: %s", name, e)
            return False
        return result.stdout.strip() == "running"

    def stop(self, name) -> None:
        __util__.exec_subprocess(["virsh", "shutdown", name])
        deadline = self.clock() + self.timeout
        while self.is_running(name):
            if self.clock() >= deadline:
                logger.info(
                    "VM %s did not shut down gracefully after %ss - forcing shutdown",
                    name,
                    self.timeout,
                )
                __util__.exec_subprocess(["virsh", "destroy", name])
                break
            self.sleep(self.poll_interval)

    def start(self, name) -> None:
        __util__.exec_subprocess(["virsh", "start", name])


class ServiceGuard:
    """Decide which workloads of one runtime must be paused for conversion.

    Args:
        runtime: DockerRuntime or VirshRuntime
        root: Mount path of the managed dataset (e.g. /mnt/tank/appdata)
        endpoint: Endpoint used to list mounted datasets
        policy: What to do when the runtime cannot be queried
        dry_run: Report instead of stopping
    """

    def __init__(
        self,
        runtime,
        root,
        endpoint,
        policy: RuntimePolicy = RuntimePolicy.PROCEED,
        dry_run: bool = False,
    ) -> None:
        self.runtime = runtime
        self.root = PurePosixPath(root)
        self.endpoint = endpoint
        self.policy = policy
        self.dry_run = dry_run
        self._mounted = None

    def _mounted_datasets(self) -> set[str]:
        if self._mounted is None:
            self._mounted = self.endpoint.mounted_mountpoints()
        return self._mounted

    def immediate_child(self, binding_path):
        """Return the direct child of the root ``binding_path`` lies in, or None."""
        try:
            relative = PurePosixPath(binding_path).relative_to(self.root)
        except ValueError:
            return None
        if not relative.parts:
            return None
        return self.root / relative.parts[0]

    def needs_quiescing(self, binding_path) -> bool:
        """True if ``binding_path`` resolves into a root child that is not a dataset."""
        child = self.immediate_child(binding_path)
        if child is None:
            return False
        return str(child) not in self._mounted_datasets()

    def _handle_unavailable(self, error) -> None:
        if self.policy == RuntimePolicy.ABORT:
            raise __util__.AbortError(f"Cannot query {self.runtime.kind} runtime: {error}")
        logger.error(
            "Cannot query %s runtime (%s) - proceeding as if no workloads use %s",
            self.runtime.kind,
            error,
            self.root,
        )

    def quiesce(self, stopped: StoppedServices | None = None) -> StoppedServices:
        """Stop every running workload bound to an unconverted folder."""
        stopped = stopped if stopped is not None else StoppedServices(dry_run=self.dry_run)
        logger.info("Checking %ss for data under %s", self.runtime.kind, self.root)

        try:
            names = self.runtime.running()
        except RuntimeUnavailable as e:
            self._handle_unavailable(e)
            return stopped

        for name in names:
            workload = Workload(self.runtime.kind, name)
            try:
                bindings = self.runtime.bindings(name)
            except RuntimeUnavailable as e:
                self._handle_unavailable(e)
                continue

            if not any(self.needs_quiescing(b) for b in bindings):
                logger.debug("%s has no data in unconverted folders", workload)
                continue

            if self.dry_run:
                logger.info("DRY RUN: Would stop %s", workload)
                stopped.add(workload)
                continue

            logger.info("Stopping %s for conversion", workload)
            try:
                self.runtime.stop(name)
            except __util__.CommandError as e:
                logger.error("Failed to stop %s: %s", workload, e)
                stopped.failures.append(f"Failed to stop {workload}")
                continue
            stopped.add(workload)

        return stopped


def resume(stopped: StoppedServices, runtimes) -> list[str]:
    """Start exactly the workloads in ``stopped``.

    Args:
        stopped: Workloads stopped during this run
        runtimes: Mapping of workload kind to runtime

    Returns:
        List of failure messages
    """
    failures = []
    for workload in stopped.workloads:
        if stopped.dry_run:
            logger.info("DRY RUN: Would restart %s", workload)
            continue
        logger.info("Restarting %s", workload)
        try:
            runtimes[workload.kind].start(workload.name)
        except __util__.CommandError as e:
            logger.error("Failed to restart %s: %s", workload, e)
            failures.append(f"Failed to restart {workload}")
    return failures
