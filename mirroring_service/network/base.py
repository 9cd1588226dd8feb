"""
Network Base Classes — Contracts for the replication engine.

The mirroring core never talks to peers directly. It only needs:

- a client that can become ready, replicate a log, and be closed
- per-discovery-key announce/lookup configuration
- namespaced chain stores that hand out log handles by key
- log handles that can start and cancel a full download
"""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass

DISCOVERY_NAMESPACE = b"hypercore"


def discovery_key(public_key: bytes) -> bytes:
    """Derive the key a log is announced and looked up under."""
    return hashlib.blake2b(DISCOVERY_NAMESPACE, key=public_key, digest_size=32).digest()


@dataclass(frozen=True)
class DownloadRequest:
    """Cancellation token returned by LogHandle.download()."""

    id: int
    key: bytes


class LogHandle(ABC):
    """Handle to one append-only, content-addressed log."""

    @property
    @abstractmethod
    def key(self) -> bytes:
        """The log's public key."""

    @property
    def discovery_key(self) -> bytes:
        return discovery_key(self.key)

    @property
    def key_hex(self) -> str:
        return self.key.hex()

    @abstractmethod
    def ready(self) -> None:
        """Open the log. Safe to call repeatedly."""

    @abstractmethod
    def get(self, index: int) -> bytes:
        """
        Read one block, fetching it from peers if needed.

        Raises:
            IndexError: If the block is not available locally or from peers
        """

    @abstractmethod
    def download(self) -> DownloadRequest:
        """Start downloading every block of the log."""

    @abstractmethod
    def undownload(self, request: DownloadRequest) -> None:
        """
        Cancel a download started by download().

        Raises:
            LogClosedError: If the handle has already been torn down
        """


class ChainStore(ABC):
    """A namespaced collection of log handles."""

    @property
    @abstractmethod
    def namespace(self) -> str:
        pass

    @abstractmethod
    def get(self, key: bytes) -> LogHandle:
        """Return the handle for key, creating it if needed."""


class Network(ABC):
    """Swarm-level configuration."""

    @abstractmethod
    def configure(self, discovery_key: bytes, announce: bool = True, lookup: bool = True) -> None:
        """Set whether a discovery key is announced to and looked up on the network."""


class NetworkClient(ABC):
    """Client of the replication engine."""

    @property
    @abstractmethod
    def network(self) -> Network:
        pass

    @abstractmethod
    def ready(self) -> None:
        """
        Connect to the engine.

        Raises:
            NetworkUnavailableError: If the engine cannot be reached
        """

    @abstractmethod
    def replicate(self, log: LogHandle) -> None:
        """Announce and look up a log so its data is exchanged with peers."""

    @abstractmethod
    def chainstore(self, namespace: str) -> ChainStore:
        pass

    @abstractmethod
    def close(self) -> None:
        """Release the client. Safe to call repeatedly."""
