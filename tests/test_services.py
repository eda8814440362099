"""Tests for the service guard."""

import json
from types import SimpleNamespace
from unittest import mock

import pytest

from zfs_backup_ng import __util__
from zfs_backup_ng.config import RuntimePolicy
from zfs_backup_ng.core import services
from zfs_backup_ng.core.services import (
    DockerRuntime,
    ServiceGuard,
    StoppedServices,
    VirshRuntime,
    Workload,
    resume,
)


@pytest.fixture
def appdata(fake_endpoint):
    root = fake_endpoint.add_dataset("tank/appdata")
    (root / "plex").mkdir()
    fake_endpoint.add_dataset("tank/appdata/sonarr")
    return root


class TestNeedsQuiescing:
    def test_plain_folder_needs_quiescing(self, fake_endpoint, appdata, make_runtime):
        guard = ServiceGuard(make_runtime("container"), appdata, fake_endpoint)
        assert guard.needs_quiescing(appdata / "plex" / "config")
        assert guard.needs_quiescing(appdata / "plex")

    def test_dataset_child_does_not(self, fake_endpoint, appdata, make_runtime):
        guard = ServiceGuard(make_runtime("container"), appdata, fake_endpoint)
        assert not guard.needs_quiescing(appdata / "sonarr" / "config")

    def test_outside_root_does_not(self, fake_endpoint, appdata, make_runtime):
        guard = ServiceGuard(make_runtime("container"), appdata, fake_endpoint)
        assert not guard.needs_quiescing("/srv/media")
        assert not guard.needs_quiescing(appdata)


class TestQuiesce:
    def test_stops_only_affected_workloads(self, fake_endpoint, appdata, make_runtime):
        runtime = make_runtime(
            "container",
            {
                "plex": [appdata / "plex" / "config", "/srv/media"],
                "sonarr": [appdata / "sonarr"],
                "nginx": ["/etc/nginx"],
            },
        )
        guard = ServiceGuard(runtime, appdata, fake_endpoint)

        stopped = guard.quiesce()

        assert runtime.stopped == ["plex"]
        assert stopped.names("container") == ["plex"]

    def test_dry_run_records_without_stopping(self, fake_endpoint, appdata, make_runtime):
        runtime = make_runtime("container", {"plex": [appdata / "plex"]})
        guard = ServiceGuard(runtime, appdata, fake_endpoint, dry_run=True)

        stopped = guard.quiesce()

        assert runtime.stopped == []
        assert stopped.workloads == [Workload("container", "plex")]

    def test_unavailable_runtime_fails_open(self, fake_endpoint, appdata, make_runtime):
        runtime = make_runtime("vm", unavailable=True)
        guard = ServiceGuard(runtime, appdata, fake_endpoint)

        stopped = guard.quiesce()

        assert len(stopped) == 0
        assert stopped.failures == []

    def test_unavailable_runtime_abort_policy(self, fake_endpoint, appdata, make_runtime):
        runtime = make_runtime("vm", unavailable=True)
        guard = ServiceGuard(runtime, appdata, fake_endpoint, policy=RuntimePolicy.ABORT)

        with pytest.raises(__util__.AbortError, match="vm runtime"):
            guard.quiesce()

    def test_stop_failure_recorded(self, fake_endpoint, appdata, make_runtime):
        runtime = make_runtime("container", {"plex": [appdata / "plex"]}, fail_stop=["plex"])
        guard = ServiceGuard(runtime, appdata, fake_endpoint)

        stopped = guard.quiesce()

        assert len(stopped) == 0
        assert stopped.failures == ["Failed to stop container plex"]

    def test_accumulates_into_shared_list(self, fake_endpoint, appdata, make_runtime):
        domains = fake_endpoint.add_dataset("tank/domains")
        (domains / "win10").mkdir()
        containers = make_runtime("container", {"plex": [appdata / "plex"]})
        vms = make_runtime("vm", {"win10": [domains / "win10"]})

        stopped = StoppedServices()
        ServiceGuard(containers, appdata, fake_endpoint).quiesce(stopped)
        ServiceGuard(vms, domains, fake_endpoint).quiesce(stopped)

        assert stopped.workloads == [Workload("container", "plex"), Workload("vm", "win10")]


class TestResume:
    def test_starts_exactly_stopped(self, make_runtime):
        containers = make_runtime("container")
        vms = make_runtime("vm")
        stopped = StoppedServices([Workload("container", "plex"), Workload("vm", "win10")])

        failures = resume(stopped, {"container": containers, "vm": vms})

        assert failures == []
        assert containers.started == ["plex"]
        assert vms.started == ["win10"]

    def test_start_failure_reported(self, make_runtime):
        containers = make_runtime("container", fail_start=["plex"])
        stopped = StoppedServices([Workload("container", "plex"), Workload("container", "db")])

        failures = resume(stopped, {"container": containers})

        assert failures == ["Failed to restart container plex"]
        assert containers.started == ["db"]

    def test_dry_run_starts_nothing(self, make_runtime):
        containers = make_runtime("container")
        stopped = StoppedServices([Workload("container", "plex")], dry_run=True)
        assert resume(stopped, {"container": containers}) == []
        assert containers.started == []

    def test_no_duplicates(self):
        stopped = StoppedServices()
        stopped.add(Workload("vm", "a"))
        stopped.add(Workload("vm", "a"))
        assert len(stopped) == 1


def completed(stdout="", returncode=0):
    return SimpleNamespace(stdout=stdout, stderr="", returncode=returncode)


class TestDockerRuntime:
    def test_bindings_only_bind_mounts(self):
        mounts = [
            {"Type": "bind", "Source": "/mnt/tank/appdata/plex"},
            {"Type": "volume", "Source": "/var/lib/docker/volumes/x"},
        ]
        with mock.patch.object(services.shutil, "which", return_value="/usr/bin/docker"), \
                mock.patch.object(
                    services.__util__, "exec_subprocess", return_value=completed(json.dumps(mounts))
                ):
            assert DockerRuntime().bindings("plex") == ["/mnt/tank/appdata/plex"]

    def test_missing_binary_is_unavailable(self):
        with mock.patch.object(services.shutil, "which", return_value=None):
            with pytest.raises(services.RuntimeUnavailable):
                DockerRuntime().running()


class TestVirshRuntime:
    def test_bindings_are_disk_folders(self):
        output = (
            " Type   Device   Target   Source\n"
            "------------------------------------------------\n"
            " file   disk     hdc      /mnt/tank/domains/win10/vdisk1.img\n"
            " file   cdrom    hda      /isos/virtio.iso\n"
        )
        with mock.patch.object(services.shutil, "which", return_value="/usr/bin/virsh"), \
                mock.patch.object(services.__util__, "exec_subprocess", return_value=completed(output)):
            assert VirshRuntime().bindings("win10") == ["/mnt/tank/domains/win10"]

    def test_graceful_shutdown(self):
        states = iter(["running", "running", "shut off"])
        calls = []

        def fake_exec(command, **kwargs):
            calls.append(command)
            if command[1] == "domstate":
                return completed(next(states))
            return completed()

        sleeps = []
        runtime = VirshRuntime(timeout=90, poll_interval=5, sleep=sleeps.append, clock=lambda: 0)
        with mock.patch.object(services.__util__, "exec_subprocess", side_effect=fake_exec):
            runtime.stop("win10")

        assert ["virsh", "shutdown", "win10"] in calls
        assert ["virsh", "destroy", "win10"] not in calls
        assert sleeps == [5, 5]

    def test_forced_after_timeout(self):
        now = [0]

        def fake_sleep(seconds):
            now[0] += seconds

        calls = []

        def fake_exec(command, **kwargs):
            calls.append(command)
            if command[1] == "domstate":
                return completed("running")
            return completed()

        runtime = VirshRuntime(timeout=90, poll_interval=5, sleep=fake_sleep, clock=lambda: now[0])
        with mock.patch.object(services.__util__, "exec_subprocess", side_effect=fake_exec):
            runtime.stop("win10")

        assert calls[-1] == ["virsh", "destroy", "win10"]
        assert now[0] == 90
