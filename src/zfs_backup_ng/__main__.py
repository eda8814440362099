# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/__main__.py
Entry point for ``python -m zfs_backup_ng``.
"""

import sys

from .cli.dispatcher import main

if __name__ == "__main__":
    sys.exit(main())
