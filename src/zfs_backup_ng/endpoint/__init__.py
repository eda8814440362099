# pyright: standard

"""zfs-backup-ng: zfs_backup_ng/endpoint/__init__.py."""

from ..__logger__ import logger

from .common import Endpoint
from .local import LocalEndpoint
from .ssh import SSHEndpoint

__all__ = ["Endpoint", "LocalEndpoint", "SSHEndpoint", "choose_endpoint"]


def choose_endpoint(remote=None, common_config=None):
    """
    Chooses the endpoint for a replication destination.

    Args:
        remote (RemoteConfig): Remote host settings; None or disabled means local.
        common_config (dict): Configuration settings shared by all endpoints.

    Returns:
        Endpoint: An instance of the appropriate `Endpoint` subclass.
    """
    config = dict(common_config or {})

    if remote is not None and remote.enabled:
        config["username"] = remote.user
        config["hostname"] = remote.server
        endpoint = SSHEndpoint(config=config)
    else:
        endpoint = LocalEndpoint(config=config)

    logger.debug("Endpoint created: %r", endpoint)
    return endpoint
