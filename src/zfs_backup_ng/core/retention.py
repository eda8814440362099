"""Snapshot creation and pruning through sanoid.

Each target gets its own sanoid configuration directory. An existing
``sanoid.conf`` is never overwritten so operators can tune it by hand.
"""

import configparser
import io
import logging
import shutil
from pathlib import Path

from .. import __util__
from ..config.schema import RetentionConfig

logger = logging.getLogger(__name__)

CONFIG_NAME = "sanoid.conf"
DEFAULTS_NAME = "sanoid.defaults.conf"
TEMPLATE = "production"


def render_config(dataset: str, retention: RetentionConfig) -> str:
    """Render a sanoid.conf covering ``dataset`` and its children."""
    parser = configparser.ConfigParser(interpolation=None)
    parser[dataset] = {
        "use_template": TEMPLATE,
        "recursive": "yes",
    }
    parser[f"template_{TEMPLATE}"] = {
        "hourly": str(retention.hourly),
        "daily": str(retention.daily),
        "weekly": str(retention.weekly),
        "monthly": str(retention.monthly),
        "yearly": str(retention.yearly),
        "autosnap": "yes",
        "autoprune": "yes",
    }
    buffer = io.StringIO()
    parser.write(buffer)
    return buffer.getvalue()


class RetentionPolicy:
    """Sanoid invocations for one target.

    Args:
        endpoint: Local endpoint used to run sanoid
        sanoid_binary: Path of the sanoid executable
        config_dir: Configuration directory for this target
        defaults_file: Sanoid defaults copied next to the config
        enabled: Whether automatic snapshots are on for this run
        dry_run: Report instead of running sanoid
    """

    def __init__(
        self,
        endpoint,
        sanoid_binary,
        config_dir,
        defaults_file=None,
        enabled: bool = True,
        dry_run: bool = False,
    ) -> None:
        self.endpoint = endpoint
        self.sanoid_binary = str(sanoid_binary)
        self.config_dir = Path(config_dir)
        self.defaults_file = Path(defaults_file) if defaults_file else None
        self.enabled = enabled
        self.dry_run = dry_run

    @property
    def config_path(self) -> Path:
        return self.config_dir / CONFIG_NAME

    def ensure_config(self, dataset: str, retention: RetentionConfig) -> bool:
        """Create the sanoid configuration unless it already exists.

        Returns:
            True if a new configuration file was written
        """
        if not self.enabled:
            return False

        if self.config_path.is_file():
            logger.info("Sanoid configuration already exists: %s", self.config_path)
            return False

        if self.dry_run:
            logger.info("DRY RUN: Would create Sanoid configuration %s", self.config_path)
            return False

        logger.info("Creating Sanoid configuration for: %s", dataset)
        self.config_dir.mkdir(parents=True, exist_ok=True)

        defaults_copy = self.config_dir / DEFAULTS_NAME
        if not defaults_copy.is_file():
            if self.defaults_file and self.defaults_file.is_file():
                shutil.copyfile(self.defaults_file, defaults_copy)
            else:
                logger.warning(
                    "Default Sanoid configuration not found at %s", self.defaults_file
                )

        self.config_path.write_text(render_config(dataset, retention), encoding="utf-8")
        logger.info("Created Sanoid configuration: %s", self.config_path)
        return True

    def _command(self, action: str) -> list[str]:
        return [self.sanoid_binary, f"--configdir={self.config_dir}", action]

    def _run(self, action: str) -> bool:
        if not self.enabled:
            logger.info("Auto snapshots disabled - skipping %s", action)
            return True
        cmd = self._command(action)
        if self.dry_run:
            logger.info("DRY RUN: Would run %s", self.endpoint.format_command(cmd))
            return True
        try:
            self.endpoint.run(cmd)
        except __util__.CommandError as e:
            logger.error("Sanoid %s failed: %s", action, e)
            return False
        return True

    def take_snapshots(self) -> bool:
        return self._run("--take-snapshots")

    def prune_snapshots(self) -> bool:
        return self._run("--prune-snapshots")
