"""Command line interface for zfs-backup-ng."""
