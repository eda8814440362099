"""Convert plain folders under a dataset into child datasets.

Each candidate goes through discover, normalize, capacity check, stage
(rename to ``<name>_temp``), create, copy, validate and finalize. Candidates
are processed one after another; a failing candidate never stops the batch.

After the stage step either the staging folder or the new dataset exists
until the candidate is resolved. Only a failed ``zfs create`` renames the
staging folder back; copy and validation failures leave it in place for an
operator to inspect.
"""

import logging
import shutil
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from .. import __util__
from ..__util__ import format_size
from . import space

logger = logging.getLogger(__name__)

TEMP_SUFFIX = "_temp"

# Applied before generic diacritic removal so umlauts keep their sound
CHARACTER_FOLDS = {
    "ä": "ae",
    "ö": "oe",
    "ü": "ue",
    "Ä": "Ae",
    "Ö": "Oe",
    "Ü": "Ue",
    "ß": "ss",
}


class Outcome(Enum):
    CONVERTED = "converted"
    DRY_RUN = "dry-run"
    SKIPPED_EXISTS = "skipped-exists"
    SKIPPED_COLLISION = "skipped-collision"
    SKIPPED_SPACE = "skipped-space"
    FAILED_STAGE = "failed-stage"
    FAILED_CREATE = "failed-create"
    FAILED_COPY = "failed-copy"
    FAILED_VALIDATION = "failed-validation"

    @property
    def is_failure(self) -> bool:
        return self in (
            Outcome.SKIPPED_COLLISION,
            Outcome.SKIPPED_SPACE,
            Outcome.FAILED_STAGE,
            Outcome.FAILED_CREATE,
            Outcome.FAILED_COPY,
            Outcome.FAILED_VALIDATION,
        )


@dataclass
class Candidate:
    """A folder under a source dataset that is not yet a dataset itself."""

    path: Path
    dataset: str
    size: int = 0

    @property
    def name(self) -> str:
        return self.dataset.rsplit("/", 1)[-1]

    @property
    def staging_path(self) -> Path:
        return self.path.parent / f"{self.name}{TEMP_SUFFIX}"

    @property
    def target_path(self) -> Path:
        return self.path.parent / self.name


@dataclass
class ConversionResult:
    path: Path
    dataset: str
    outcome: Outcome
    message: str = ""


@dataclass
class ConversionReport:
    """Per-candidate results of one conversion batch."""

    results: list[ConversionResult] = field(default_factory=list)

    def add(self, result: ConversionResult) -> ConversionResult:
        self.results.append(result)
        return result

    @property
    def converted(self) -> list[ConversionResult]:
        return [r for r in self.results if r.outcome in (Outcome.CONVERTED, Outcome.DRY_RUN)]

    @property
    def failed(self) -> list[ConversionResult]:
        return [r for r in self.results if r.outcome.is_failure]

    def extend(self, other: "ConversionReport") -> None:
        self.results.extend(other.results)


def normalize_name(name: str, replace_spaces: bool = False) -> str:
    """Turn a folder name into a dataset name.

    Folds German umlauts, strips remaining diacritics and optionally
    replaces whitespace with underscores. Normalizing twice gives the same
    result.
    """
    name = unicodedata.normalize("NFC", name)
    name = "".join(CHARACTER_FOLDS.get(c, c) for c in name)
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    name = unicodedata.normalize("NFC", stripped)
    # NFKD maps NBSP, em space and the spacing diaeresis to plain spaces
    if replace_spaces:
        name = "".join("_" if c.isspace() else c for c in name)
    return name


class Converter:
    """Convert the folders below one source dataset.

    Args:
        endpoint: Local endpoint running zfs and rsync
        source_dataset: Parent dataset (pool/dataset)
        mount_path: Where the parent dataset is mounted
        buffer_percent: Space margin required on top of each folder's size
        cleanup: Validate the copy and delete the staging folder afterwards
        replace_spaces: Replace spaces in dataset names
        dry_run: Report instead of converting
    """

    def __init__(
        self,
        endpoint,
        source_dataset: str,
        mount_path,
        buffer_percent: int = space.DEFAULT_SAFETY_MARGIN_PERCENT,
        cleanup: bool = True,
        replace_spaces: bool = False,
        dry_run: bool = False,
    ) -> None:
        self.endpoint = endpoint
        self.source_dataset = source_dataset
        self.mount_path = Path(mount_path)
        self.buffer_percent = buffer_percent
        self.cleanup = cleanup
        self.replace_spaces = replace_spaces
        self.dry_run = dry_run

    def _existing_datasets(self) -> set[str]:
        return set(self.endpoint.list_datasets(self.source_dataset))

    def _scan(self) -> tuple[list[Candidate], list[ConversionResult]]:
        if not self.mount_path.is_dir():
            return [], []

        existing = self._existing_datasets()
        mounted = self.endpoint.mounted_mountpoints()
        candidates = []
        collisions = []
        for entry in sorted(self.mount_path.iterdir()):
            if entry.name.endswith(TEMP_SUFFIX):
                logger.debug("Skipping leftover staging folder %s", entry)
                continue

            if str(entry) in mounted:
                logger.debug("%s is already a mounted dataset - skipping", entry)
                continue

            name = normalize_name(entry.name, self.replace_spaces)
            dataset = f"{self.source_dataset}/{name}"
            if dataset in existing:
                logger.debug("Dataset %s already exists - skipping", dataset)
                continue

            if not entry.is_dir() or entry.is_symlink():
                continue

            collision = None
            if name != entry.name and (self.mount_path / name).exists():
                collision = f"{self.mount_path / name} already exists"
            elif (self.mount_path / f"{name}{TEMP_SUFFIX}").exists():
                collision = f"staging folder {name}{TEMP_SUFFIX} already exists"
            if collision:
                message = f"Cannot convert {entry}: {collision}"
                collisions.append(
                    ConversionResult(entry, dataset, Outcome.SKIPPED_COLLISION, message)
                )
                continue

            candidates.append(Candidate(path=entry, dataset=dataset))
        return candidates, collisions

    def pending_count(self) -> int:
        """Number of folders a conversion run would process, collisions included."""
        candidates, collisions = self._scan()
        return len(candidates) + len(collisions)

    def discover(self, report: ConversionReport | None = None) -> list[Candidate]:
        """Find folders below the mount path that still need converting.

        Leftover staging folders, mounted datasets and non-directories are
        ignored. Folders whose normalized name is already taken are logged
        and recorded in ``report``.
        """
        candidates, collisions = self._scan()
        for result in collisions:
            logger.error(result.message)
            if report is not None:
                report.add(result)
        return candidates

    def convert_all(self) -> ConversionReport:
        """Convert every candidate below the source dataset in order."""
        report = ConversionReport()
        for candidate in self.discover(report):
            report.add(self.convert(candidate))
        return report

    def convert(self, candidate: Candidate) -> ConversionResult:
        """Drive one candidate through the conversion state machine."""
        logger.info("Processing directory: %s", candidate.path)
        candidate.size = space.directory_size(candidate.path)
        logger.info("Directory size: %s", format_size(candidate.size))

        check = space.check_capacity(
            candidate.size, self.endpoint, self.source_dataset, self.buffer_percent
        )
        if not check.sufficient:
            message = (
                f"Insufficient space for converting {candidate.path}: "
                f"{space.format_space_check(check)}, short by {format_size(check.shortfall)}"
            )
            logger.error(message)
            return ConversionResult(candidate.path, candidate.dataset, Outcome.SKIPPED_SPACE, message)

        if self.dry_run:
            logger.info("DRY RUN: Would create dataset %s", candidate.dataset)
            return ConversionResult(candidate.path, candidate.dataset, Outcome.DRY_RUN)

        staging = candidate.staging_path
        try:
            candidate.path.rename(staging)
        except OSError as e:
            message = f"Failed to rename {candidate.path} to temporary location: {e}"
            logger.error(message)
            return ConversionResult(candidate.path, candidate.dataset, Outcome.FAILED_STAGE, message)

        try:
            self.endpoint.create_dataset(candidate.dataset)
        except __util__.CommandError as e:
            message = f"Failed to create ZFS dataset {candidate.dataset}: {e}"
            logger.error(message)
            self._restore(staging, candidate.path)
            return ConversionResult(candidate.path, candidate.dataset, Outcome.FAILED_CREATE, message)
        logger.info("Created ZFS dataset: %s", candidate.dataset)

        target = self.endpoint.mountpoint(candidate.dataset)
        logger.info("Copying data to new dataset...")
        try:
            self.endpoint.copy_tree(staging, target)
        except __util__.CommandError as e:
            message = (
                f"Failed to copy data to {candidate.dataset}: {e}. "
                f"Temporary directory preserved: {staging}"
            )
            logger.error(message)
            return ConversionResult(candidate.path, candidate.dataset, Outcome.FAILED_COPY, message)

        if not self.cleanup:
            logger.info("Cleanup disabled - temporary directory preserved: %s", staging)
            return ConversionResult(candidate.path, candidate.dataset, Outcome.CONVERTED)

        logger.info("Validating data copy...")
        source_stats = space.tree_stats(staging)
        target_stats = space.tree_stats(target)
        if source_stats != target_stats:
            message = (
                f"Data validation failed for {candidate.dataset}. "
                f"Source: {source_stats.files} files, {source_stats.bytes} bytes. "
                f"Destination: {target_stats.files} files, {target_stats.bytes} bytes"
            )
            logger.error(message)
            return ConversionResult(
                candidate.path, candidate.dataset, Outcome.FAILED_VALIDATION, message
            )

        logger.info("Data validation successful - cleaning up temporary directory")
        try:
            shutil.rmtree(staging)
        except OSError as e:
            logger.error("Failed to remove temporary directory %s: %s", staging, e)
        return ConversionResult(candidate.path, candidate.dataset, Outcome.CONVERTED)

    @staticmethod
    def _restore(staging: Path, original: Path) -> None:
        try:
            staging.rename(original)
            logger.info("Restored original directory %s", original)
        except OSError as e:
            logger.critical(
                "Failed to restore %s from %s: %s - manual intervention required",
                original,
                staging,
                e,
            )
