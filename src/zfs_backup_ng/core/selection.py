"""Resolve the datasets a run works on.

Auto selection scans the direct children of the source pool and applies
the exclusion rules in order: prefix rule first, then the exact-name set.
An empty work set is a configuration error.
"""

import logging
from dataclasses import dataclass
from pathlib import Path, PurePosixPath

from .. import __util__, encode_dataset_for_dir
from ..config.schema import Config, ReplicationConfig

logger = logging.getLogger(__name__)


class SelectionError(__util__.AbortError):
    """No datasets could be selected for the run."""

    pass


@dataclass(frozen=True)
class Target:
    """One dataset to snapshot and replicate, with all derived locations."""

    dataset: str
    mount_path: Path
    zfs_destination: str
    rsync_destination: PurePosixPath
    sanoid_config_dir: Path

    @property
    def pool(self) -> str:
        return self.dataset.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.dataset.split("/", 1)[-1]


@dataclass(frozen=True)
class ExclusionRule:
    kind: str
    values: frozenset

    def matches(self, name: str) -> bool:
        if self.kind == "prefix":
            return any(name.startswith(v) for v in self.values)
        return name in self.values


def exclusion_rules(replication: ReplicationConfig) -> list[ExclusionRule]:
    rules = []
    if replication.exclude_prefix:
        rules.append(ExclusionRule("prefix", frozenset([replication.exclude_prefix])))
    if replication.excludes:
        rules.append(ExclusionRule("exact", frozenset(replication.excludes)))
    return rules


def excluded_by(name: str, rules: list[ExclusionRule]):
    """Return the first rule excluding ``name``, or None."""
    for rule in rules:
        if rule.matches(name):
            return rule
    return None


def direct_children(pool: str, datasets: list[str]) -> list[str]:
    """Names of the datasets exactly one level below ``pool``."""
    children = []
    for dataset in datasets:
        parts = PurePosixPath(dataset).parts
        if len(parts) == 2 and parts[0] == pool:
            children.append(parts[1])
    return children


def build_target(name: str, config: Config, endpoint) -> Target:
    replication = config.replication
    pool = replication.source_pool
    dataset = f"{pool}/{name}"
    dirname = f"{pool}_{encode_dataset_for_dir(name)}"
    return Target(
        dataset=dataset,
        mount_path=endpoint.mountpoint(dataset),
        zfs_destination=(
            f"{replication.zfs.destination_pool}/{replication.zfs.parent_dataset}/{dirname}"
        ),
        rsync_destination=PurePosixPath(replication.rsync.parent_folder) / dirname,
        sanoid_config_dir=Path(config.tools.sanoid_config_dir) / dirname,
    )


def select_dataset_names(replication: ReplicationConfig, endpoint) -> list[str]:
    if not replication.auto_select:
        logger.info(
            "Auto-select disabled - using specified dataset: %s", replication.source_dataset
        )
        return [replication.source_dataset] if replication.source_dataset else []

    logger.info("Auto-select enabled - scanning pool: %s", replication.source_pool)
    try:
        datasets = endpoint.list_datasets(replication.source_pool)
    except __util__.CommandError as e:
        raise SelectionError(f"Cannot list datasets of {replication.source_pool}: {e}") from e

    rules = exclusion_rules(replication)
    selected = []
    for name in direct_children(replication.source_pool, datasets):
        rule = excluded_by(name, rules)
        if rule is not None:
            logger.info("Excluding dataset by %s rule: %s", rule.kind, name)
            continue
        logger.info("Selected dataset: %s", name)
        selected.append(name)
    return selected


def select_targets(config: Config, endpoint) -> list[Target]:
    """Resolve the replication work set.

    Raises:
        SelectionError: if nothing is selected
    """
    names = select_dataset_names(config.replication, endpoint)
    if not names:
        raise SelectionError("No datasets selected for processing. Check your configuration.")
    targets = [build_target(name, config, endpoint) for name in names]
    logger.info(
        "Selected %d datasets for processing: %s",
        len(targets),
        ", ".join(t.dataset for t in targets),
    )
    return targets


def select_conversion_sources(config: Config) -> list[str]:
    """Resolve the datasets whose child folders are converted.

    Raises:
        SelectionError: if no source is configured
    """
    sources = config.convert.get_source_datasets()
    if not sources:
        raise SelectionError(
            "No source datasets configured. Enable container or VM processing, "
            "or list datasets under [convert] datasets"
        )
    return sources
