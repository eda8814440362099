"""Drive conversion and replication runs.

A replication run is split into three phases that each complete for every
target before the next one starts:

1. preflight checks and sanoid configuration
2. snapshot creation
3. pruning and replication

A preflight failure on any target therefore stops the run before a single
snapshot is taken. Failures in phase 3 only affect their own target.
"""

import logging
from dataclasses import dataclass, field

from .. import __util__
from ..config.schema import Config, ReplicationMethod
from . import services
from .convert import ConversionReport, Converter
from .replication import MirrorReplicator, NativeReplicator, ReplicationResult
from .retention import RetentionPolicy
from .selection import Target, select_conversion_sources, select_targets

logger = logging.getLogger(__name__)


class PreflightError(__util__.AbortError):
    """A precondition for the whole run is not met."""

    pass


@dataclass
class TargetOutcome:
    """Everything that happened to one target during a replication run."""

    target: str
    errors: list[str] = field(default_factory=list)
    replication: ReplicationResult | None = None

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class ReplicationRunReport:
    outcomes: list[TargetOutcome] = field(default_factory=list)
    dry_run: bool = False

    @property
    def failed(self) -> list[TargetOutcome]:
        return [o for o in self.outcomes if not o.success]

    @property
    def success(self) -> bool:
        return not self.failed


@dataclass
class ConversionRunReport:
    sources: list[str] = field(default_factory=list)
    conversion: ConversionReport = field(default_factory=ConversionReport)
    stopped: services.StoppedServices = field(default_factory=services.StoppedServices)
    resume_failures: list[str] = field(default_factory=list)
    pending: int = 0
    dry_run: bool = False

    @property
    def success(self) -> bool:
        return not (self.conversion.failed or self.stopped.failures or self.resume_failures)


# --- replication run ---


def required_tools(config: Config) -> list[str]:
    """External executables the replication run needs on the local host."""
    replication = config.replication
    tools = ["zfs"]
    if replication.auto_snapshots:
        tools.append(config.tools.sanoid_binary)
    if replication.method == ReplicationMethod.ZFS:
        tools.append(config.tools.syncoid_binary)
    elif replication.method == ReplicationMethod.RSYNC:
        tools.append("rsync")
    return tools


def check_tools(config: Config, endpoint) -> None:
    missing = [tool for tool in required_tools(config) if not endpoint.command_exists(tool)]
    if missing:
        raise PreflightError(f"Required tools not found: {', '.join(missing)}")


def check_remote(config: Config, destination) -> None:
    replication = config.replication
    if not replication.remote.enabled or replication.method == ReplicationMethod.NONE:
        return
    logger.info("Checking SSH connection to %s", replication.remote.address)
    if not destination.check_connection():
        raise PreflightError(
            f"Cannot connect to remote server {replication.remote.address} over SSH"
        )


def preflight_target(target: Target, config: Config, endpoint, notifier) -> None:
    """Check that ``target`` can be snapshotted and replicated.

    Raises:
        PreflightError: if the dataset is missing or its name is unusable
    """
    logger.info("Performing pre-run checks for dataset: %s", target.dataset)
    if not endpoint.dataset_exists(target.dataset):
        raise PreflightError(f"Source dataset does not exist: {target.dataset}")

    if config.replication.auto_snapshots and " " in target.dataset:
        raise PreflightError(
            f"Dataset name contains spaces, which sanoid cannot handle: {target.dataset}"
        )

    if endpoint.used_bytes(target.dataset) == 0:
        notifier.error(f"Source dataset {target.dataset} is empty - continuing anyway")


def make_retention(target: Target, config: Config, endpoint, dry_run: bool) -> RetentionPolicy:
    return RetentionPolicy(
        endpoint,
        config.tools.sanoid_binary,
        target.sanoid_config_dir,
        defaults_file=config.tools.sanoid_defaults,
        enabled=config.replication.auto_snapshots,
        dry_run=dry_run,
    )


def make_replicator(config: Config, local, destination, dry_run: bool):
    """Return the replicator for the configured method, or None."""
    replication = config.replication
    if replication.method == ReplicationMethod.ZFS:
        return NativeReplicator(
            local,
            destination,
            config.tools.syncoid_binary,
            replication.zfs,
            replication.remote,
            dry_run=dry_run,
        )
    if replication.method == ReplicationMethod.RSYNC:
        return MirrorReplicator(
            local, destination, replication.rsync, replication.remote, dry_run=dry_run
        )
    return None


def run_replication(
    config: Config,
    local,
    destination,
    notifier,
    dry_run: bool | None = None,
    replicator=None,
) -> ReplicationRunReport:
    """Snapshot, prune and replicate every selected target.

    Args:
        config: Loaded configuration
        local: Local endpoint
        destination: Endpoint of the replication destination
        notifier: Notifier receiving per-target results
        dry_run: Override ``[global] dry_run``
        replicator: Use this replicator instead of the configured one

    Raises:
        SelectionError: if no datasets are selected
        PreflightError: if any target fails its preflight checks
    """
    if dry_run is None:
        dry_run = config.global_config.dry_run
    if replicator is None:
        replicator = make_replicator(config, local, destination, dry_run)
    report = ReplicationRunReport(dry_run=dry_run)

    logger.info("Determining datasets to process...")
    targets = select_targets(config, local)

    logger.info("Phase 1: Performing pre-run checks and creating configurations")
    check_tools(config, local)
    check_remote(config, destination)
    policies = {}
    for target in targets:
        preflight_target(target, config, local, notifier)
        policy = make_retention(target, config, local, dry_run)
        policy.ensure_config(target.dataset, config.replication.retention)
        policies[target.dataset] = policy
        report.outcomes.append(TargetOutcome(target.dataset))
    outcomes = {o.target: o for o in report.outcomes}

    logger.info("Phase 2: Creating snapshots")
    snapshot_targets = targets if config.replication.auto_snapshots else []
    for target in snapshot_targets:
        logger.info("Creating automatic snapshots for: %s", target.dataset)
        if policies[target.dataset].take_snapshots():
            notifier.success(f"Automatic snapshot creation successful for: {target.dataset}")
        else:
            message = f"Automatic snapshot creation failed for: {target.dataset}"
            outcomes[target.dataset].errors.append(message)
            notifier.error(message)

    logger.info("Phase 3: Pruning snapshots and performing replication")
    for target in targets:
        outcome = outcomes[target.dataset]
        if config.replication.auto_snapshots:
            logger.info("Pruning old snapshots for: %s", target.dataset)
            if not policies[target.dataset].prune_snapshots():
                logger.warning("Snapshot pruning failed for: %s", target.dataset)

        if replicator is None:
            logger.info("Replication disabled - skipping %s", target.dataset)
            continue

        result = replicator.replicate(target)
        outcome.replication = result
        if result.success:
            if not result.dry_run:
                notifier.success(result.message)
        else:
            outcome.errors.append(result.message)
            notifier.error(result.message)

    if report.success:
        logger.info("All datasets processed successfully")
    else:
        logger.error(
            "%d of %d datasets failed: %s",
            len(report.failed),
            len(report.outcomes),
            ", ".join(o.target for o in report.failed),
        )
    return report


# --- conversion run ---


def default_runtimes(config: Config) -> dict:
    return {
        "container": services.DockerRuntime(),
        "vm": services.VirshRuntime(
            timeout=config.convert.vm_shutdown_timeout,
            poll_interval=config.convert.vm_poll_interval,
        ),
    }


def validate_sources(config: Config, endpoint) -> list[str]:
    """Resolve the conversion sources and check each one is a mounted dataset.

    Raises:
        SelectionError: if no source is configured
        PreflightError: if a source is missing or not a dataset
    """
    sources = select_conversion_sources(config)
    for source in sources:
        path = endpoint.mountpoint(source)
        if not endpoint.is_dir(path):
            raise PreflightError(f"Source path {path} does not exist")
        if not endpoint.dataset_exists(source):
            raise PreflightError(
                f"Source {source} is not a ZFS dataset. "
                "Sources must be datasets to host child datasets."
            )
        logger.info("Source %s is valid", source)
    return sources


def make_converter(source: str, config: Config, endpoint, dry_run: bool) -> Converter:
    return Converter(
        endpoint,
        source,
        endpoint.mountpoint(source),
        buffer_percent=config.convert.buffer_percent,
        cleanup=config.convert.cleanup_temp_dirs,
        replace_spaces=config.convert.replace_spaces,
        dry_run=dry_run,
    )


def _guards(config: Config, endpoint, runtimes, dry_run):
    convert = config.convert
    guards = []
    if convert.process_containers:
        guards.append((runtimes["container"], convert.appdata))
    if convert.process_vms:
        guards.append((runtimes["vm"], convert.domains))
    return [
        services.ServiceGuard(
            runtime,
            endpoint.mountpoint(dataset),
            endpoint,
            policy=convert.on_runtime_unavailable,
            dry_run=dry_run,
        )
        for runtime, dataset in guards
    ]


def summarize(report: ConversionRunReport) -> str:
    converted = report.conversion.converted
    if not converted:
        return "No directories were converted to datasets"
    verb = "Would convert" if report.dry_run else "Successfully converted"
    lines = [f"{verb} {len(converted)} directories to ZFS datasets:"]
    lines += [f"- {r.path.name}" for r in converted]
    return "\n".join(lines)


def run_conversion(
    config: Config,
    endpoint,
    notifier,
    dry_run: bool | None = None,
    runtimes=None,
) -> ConversionRunReport:
    """Convert the plain folders below every configured source dataset.

    Workloads using those folders are stopped first and exactly those are
    started again once every source has been processed.

    Raises:
        SelectionError: if no source is configured
        PreflightError: if a source is not a usable dataset
        AbortError: if a runtime cannot be queried and the policy is ``abort``
    """
    if dry_run is None:
        dry_run = config.global_config.dry_run
    if runtimes is None:
        runtimes = default_runtimes(config)
    report = ConversionRunReport(dry_run=dry_run)
    report.stopped.dry_run = dry_run

    logger.info("Validating sources and checking for conversion work...")
    report.sources = validate_sources(config, endpoint)
    converters = [make_converter(s, config, endpoint, dry_run) for s in report.sources]

    for converter in converters:
        count = converter.pending_count()
        if count:
            logger.info(
                "Found %d directories in %s that need conversion", count, converter.source_dataset
            )
        else:
            logger.info("All children in %s are already datasets", converter.source_dataset)
        report.pending += count

    if not report.pending:
        notifier.success(
            "No conversion work needed - all directories are already datasets"
        )
        return report

    try:
        for guard in _guards(config, endpoint, runtimes, dry_run):
            guard.quiesce(report.stopped)
        for failure in report.stopped.failures:
            notifier.error(failure)

        logger.info("Starting dataset conversions...")
        for converter in converters:
            logger.info("Processing dataset: %s", converter.source_dataset)
            batch = converter.convert_all()
            for result in batch.failed:
                notifier.error(result.message)
            report.conversion.extend(batch)
    finally:
        report.resume_failures = services.resume(report.stopped, runtimes)
        for failure in report.resume_failures:
            notifier.error(failure)

    if report.conversion.converted:
        notifier.success(summarize(report))
    else:
        logger.info(summarize(report))
    return report
