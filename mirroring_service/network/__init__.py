"""
Network — Contracts for the replication engine, drive resolution, and the
in-process local backend.
"""

from .base import ChainStore, DownloadRequest, LogHandle, Network, NetworkClient, discovery_key
from .drive import Drive, DriveLogs, DriveResolver
from .local import LocalNetworkClient, LocalSwarm

__all__ = [
    "ChainStore",
    "DownloadRequest",
    "Drive",
    "DriveLogs",
    "DriveResolver",
    "LocalNetworkClient",
    "LocalSwarm",
    "LogHandle",
    "Network",
    "NetworkClient",
    "discovery_key",
]
