"""
Local Network — In-process implementation of the replication contracts.

LocalSwarm stands in for "the peers": it holds the blocks of every log
that someone has published. Logs opened through a LocalNetworkClient pull
blocks from the swarm when they are read or downloaded.

Used as the default backend and by the test suite.
"""

from __future__ import annotations

import itertools
import logging
import threading
from typing import Dict, List, Optional, Set

from ..errors import LogClosedError, NetworkUnavailableError
from .base import ChainStore, DownloadRequest, LogHandle, Network, NetworkClient
from .drive import encode_header

logger = logging.getLogger(__name__)


class LocalSwarm:
    """Blocks available from peers, keyed by log key."""

    def __init__(self, online: bool = True):
        self.online = online
        self._blocks: Dict[bytes, List[bytes]] = {}
        self._lock = threading.Lock()

    def publish(self, key: bytes, blocks: List[bytes]) -> None:
        """Make a log's blocks available on the network."""
        with self._lock:
            self._blocks.setdefault(key, []).extend(blocks)

    def publish_drive(self, metadata_key: bytes, content_key: bytes,
                      content_blocks: Optional[List[bytes]] = None) -> None:
        """Publish a drive: header in the metadata log plus its content log."""
        self.publish(metadata_key, [encode_header(content_key)])
        self.publish(content_key, list(content_blocks or []))

    def blocks(self, key: bytes) -> List[bytes]:
        with self._lock:
            return list(self._blocks.get(key, []))


class LocalLog(LogHandle):
    """A log whose local copy is filled from the swarm."""

    _request_ids = itertools.count(1)

    def __init__(self, key: bytes, swarm: LocalSwarm):
        self._key = key
        self._swarm = swarm
        self.blocks: List[bytes] = []
        self.downloads: Dict[int, DownloadRequest] = {}
        self.opened = False
        self.closed = False
        self._lock = threading.Lock()

    @property
    def key(self) -> bytes:
        return self._key

    def _check_open(self) -> None:
        if self.closed:
            raise LogClosedError(f"Log {self.key_hex} is closed")

    def ready(self) -> None:
        self._check_open()
        self.opened = True

    def _sync(self) -> None:
        remote = self._swarm.blocks(self._key)
        if len(remote) > len(self.blocks):
            self.blocks.extend(remote[len(self.blocks):])

    def get(self, index: int) -> bytes:
        self._check_open()
        with self._lock:
            if index >= len(self.blocks) and self._swarm.online:
                self._sync()
            return self.blocks[index]

    def download(self) -> DownloadRequest:
        self._check_open()
        request = DownloadRequest(id=next(self._request_ids), key=self._key)
        with self._lock:
            self.downloads[request.id] = request
            if self._swarm.online:
                self._sync()
        return request

    def undownload(self, request: DownloadRequest) -> None:
        self._check_open()
        with self._lock:
            self.downloads.pop(request.id, None)

    def close(self) -> None:
        self.closed = True
        self.downloads.clear()


class LocalChainStore(ChainStore):
    """Caches one handle per key within a namespace."""

    def __init__(self, namespace: str, swarm: LocalSwarm):
        self._namespace = namespace
        self._swarm = swarm
        self.logs: Dict[bytes, LocalLog] = {}
        self._lock = threading.Lock()

    @property
    def namespace(self) -> str:
        return self._namespace

    def get(self, key: bytes) -> LocalLog:
        with self._lock:
            log = self.logs.get(key)
            if log is None or log.closed:
                log = LocalLog(key, self._swarm)
                self.logs[key] = log
            return log

    def close(self) -> None:
        with self._lock:
            for log in self.logs.values():
                log.close()


class LocalNetwork(Network):
    """Records announce/lookup configuration per discovery key."""

    def __init__(self) -> None:
        self.configurations: Dict[bytes, Dict[str, bool]] = {}

    def configure(self, discovery_key: bytes, announce: bool = True, lookup: bool = True) -> None:
        self.configurations[discovery_key] = {"announce": announce, "lookup": lookup}
        logger.debug(
            f"[network] {discovery_key.hex()[:12]} announce={announce} lookup={lookup}"
        )

    def is_announced(self, discovery_key: bytes) -> bool:
        return self.configurations.get(discovery_key, {}).get("announce", False)


class LocalNetworkClient(NetworkClient):
    """In-process replication engine client."""

    def __init__(self, swarm: Optional[LocalSwarm] = None):
        self.swarm = swarm or LocalSwarm()
        self._network = LocalNetwork()
        self._stores: Dict[str, LocalChainStore] = {}
        self.replicated: Set[bytes] = set()
        self.is_ready = False
        self.closed = False

    @property
    def network(self) -> LocalNetwork:
        return self._network

    def ready(self) -> None:
        if self.closed:
            raise NetworkUnavailableError("Network client is closed")
        if not self.swarm.online:
            raise NetworkUnavailableError("Replication network is offline")
        self.is_ready = True

    def replicate(self, log: LogHandle) -> None:
        if not self.is_ready or self.closed:
            raise NetworkUnavailableError("Network client is not ready")
        log.ready()
        self._network.configure(log.discovery_key, announce=True, lookup=True)
        self.replicated.add(log.discovery_key)

    def chainstore(self, namespace: str) -> LocalChainStore:
        store = self._stores.get(namespace)
        if store is None:
            store = LocalChainStore(namespace, self.swarm)
            self._stores[namespace] = store
        return store

    def close(self) -> None:
        if self.closed:
            return
        for store in self._stores.values():
            store.close()
        self.closed = True
        self.is_ready = False
        logger.debug("[network] Local client closed")
