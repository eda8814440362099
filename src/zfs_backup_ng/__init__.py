"""zfs-backup-ng: zfs_backup_ng/__init__.py."""

__version__ = "0.3.0"


def encode_dataset_for_dir(dataset: str) -> str:
    """Replace '/' with '_' and remove leading slash"""
    return str(dataset).lstrip("/").replace("/", "_")
