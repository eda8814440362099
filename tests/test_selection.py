"""Tests for the target selector."""

from pathlib import Path, PurePosixPath

import pytest

from zfs_backup_ng.config.schema import Config
from zfs_backup_ng.core.selection import (
    ExclusionRule,
    SelectionError,
    direct_children,
    excluded_by,
    select_conversion_sources,
    select_targets,
)


@pytest.fixture
def pool(fake_endpoint):
    for name in [
        "tank",
        "tank/appdata",
        "tank/appdata/plex",
        "tank/backup_old",
        "tank/media",
        "tank/scratch",
        "tank/vm stuff",
    ]:
        fake_endpoint.add_dataset(name)
    return fake_endpoint


def auto_config(**replication):
    config = Config()
    config.replication.auto_select = True
    for key, value in replication.items():
        setattr(config.replication, key, value)
    return config


class TestDirectChildren:
    def test_only_one_level(self):
        datasets = ["tank", "tank/a", "tank/a/b", "tank/c", "other/d"]
        assert direct_children("tank", datasets) == ["a", "c"]


class TestExclusion:
    def test_prefix_before_exact(self):
        rules = [
            ExclusionRule("prefix", frozenset(["backup_"])),
            ExclusionRule("exact", frozenset(["backup_old"])),
        ]
        assert excluded_by("backup_old", rules).kind == "prefix"
        assert excluded_by("media", rules) is None

    def test_no_glob_matching(self):
        rules = [ExclusionRule("exact", frozenset(["scr*"]))]
        assert excluded_by("scratch", rules) is None


class TestSelectTargets:
    def test_auto_select_with_exclusions(self, pool):
        config = auto_config(exclude_prefix="backup_", excludes=["scratch"])
        names = [t.dataset for t in select_targets(config, pool)]
        assert names == ["tank/appdata", "tank/media", "tank/vm stuff"]

    def test_explicit_dataset(self, pool):
        config = Config()
        config.replication.source_dataset = "media"
        targets = select_targets(config, pool)
        assert [t.dataset for t in targets] == ["tank/media"]

    def test_derived_locations(self, pool):
        config = Config()
        config.replication.source_dataset = "appdata/plex"
        config.replication.rsync.parent_folder = "/backup"
        config.tools.sanoid_config_dir = "/etc/sanoid"

        target = select_targets(config, pool)[0]

        assert target.pool == "tank"
        assert target.name == "appdata/plex"
        assert target.mount_path == pool.mountpoint("tank/appdata/plex")
        assert target.zfs_destination == "backup/replicas/tank_appdata_plex"
        assert target.rsync_destination == PurePosixPath("/backup/tank_appdata_plex")
        assert target.sanoid_config_dir == Path("/etc/sanoid/tank_appdata_plex")

    def test_empty_selection_is_error(self, pool):
        config = auto_config(exclude_prefix="", excludes=[])
        config.replication.source_pool = "empty"
        with pytest.raises(SelectionError, match="No datasets selected"):
            select_targets(config, pool)

    def test_everything_excluded_is_error(self, pool):
        config = auto_config(exclude_prefix="", excludes=["appdata", "backup_old", "media", "scratch", "vm stuff"])
        with pytest.raises(SelectionError):
            select_targets(config, pool)


class TestSelectConversionSources:
    def test_sources_in_order(self):
        config = Config()
        config.convert.process_containers = True
        config.convert.process_vms = True
        config.convert.datasets = ["tank/media"]
        assert select_conversion_sources(config) == ["tank/appdata", "tank/domains", "tank/media"]

    def test_no_sources_is_error(self):
        with pytest.raises(SelectionError, match="No source datasets"):
            select_conversion_sources(Config())
