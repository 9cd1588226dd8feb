"""
Mirror Manager — Owns the set of mirrored chains and drives.

This is the core of the service. It keeps three stores in step:

- the in-memory registry of active downloads (and the membership set
  derived from it)
- the persisted chain records (one per mirrored log, source of truth for
  startup reconciliation)
- the persisted type records (one per client-visible target)

A drive target expands into its metadata and content logs; each log is
mirrored, registered and persisted independently, while the type record
is kept under the drive's own key.

## Usage

    manager = MirrorManager(client, store, chains_db, types_db)
    manager.restart_mirroring()

    target = MirrorTarget.create(key_hex, "bitdrive")
    manager.mirror(target)
    manager.status(target).mirroring  # True
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Set

from .errors import LogClosedError, ServiceClosedError
from .models import MirrorList, MirrorStatus, MirrorTarget, MirrorType
from .network.base import ChainStore, DownloadRequest, LogHandle, NetworkClient
from .network.drive import DriveResolver
from .observability.metrics import MetricsRegistry, Timer, metrics as default_metrics
from .persistence.tree import KeyValueTree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActiveDownload:
    """An ongoing download of one log."""

    log: LogHandle
    request: DownloadRequest


@dataclass
class _KeyLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    users: int = 0


class KeyLocks:
    """
    One re-entrant lock per identifier.

    A key's lock exists only while some thread holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, _KeyLock] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    @contextmanager
    def hold(self, key_hex: str) -> Iterator[None]:
        with self._guard:
            entry = self._locks.setdefault(key_hex, _KeyLock())
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.users -= 1
                if entry.users == 0:
                    del self._locks[key_hex]


class MirrorManager:
    """
    Mirror lifecycle manager.

    Mirror and unmirror calls for the same identifier are serialized by a
    per-key lock held across the whole network + persistence sequence.
    Calls for different identifiers run concurrently.
    """

    def __init__(
        self,
        client: NetworkClient,
        store: ChainStore,
        chains_db: KeyValueTree,
        types_db: KeyValueTree,
        registry: Optional[MetricsRegistry] = None,
    ):
        self.client = client
        self.store = store
        self.chains_db = chains_db
        self.types_db = types_db
        self.resolver = DriveResolver(client, store)
        self.metrics = registry or default_metrics

        self.mirroring: Set[str] = set()
        self.downloads: Dict[str, ActiveDownload] = {}
        self.closed = False

        self._state_lock = threading.Lock()
        self._locks = KeyLocks()

    # ─── Client Operations ──────────────────────────────────

    def mirror(self, target: MirrorTarget) -> MirrorStatus:
        """Start mirroring a chain or drive and record its type."""
        with self._track("mirror", target.type), self._locks.hold(target.key_hex):
            if target.type == MirrorType.DRIVE:
                self._mirror_drive(target.key)
            else:
                self._mirror_chain(target.key)
            self.types_db.put(target.key_hex, target.type.value)
            logger.info(
                f"[mirror] Mirroring {target.type.value}",
                extra={"key": target.key_hex, "op": "mirror", "mirror_type": target.type.value},
            )
            return self.status(target)

    def unmirror(self, target: MirrorTarget) -> MirrorStatus:
        """Stop mirroring a target. Unknown targets are a no-op."""
        with self._track("unmirror", target.type), self._locks.hold(target.key_hex):
            if target.type == MirrorType.DRIVE:
                stopped = self._unmirror_drive(target.key)
            else:
                stopped = self._unmirror_chain(target.key)
            self.types_db.delete(target.key_hex)
            if stopped:
                logger.info(
                    f"[mirror] Stopped mirroring {target.type.value}",
                    extra={"key": target.key_hex, "op": "unmirror", "mirror_type": target.type.value},
                )
            return self.status(target)

    def status(self, target: MirrorTarget) -> MirrorStatus:
        return MirrorStatus(
            key=target.key,
            type=target.type,
            mirroring=target.key_hex in self.mirroring,
        )

    def list(self) -> MirrorList:
        """Every target recorded as mirrored, in storage order."""
        return MirrorList(mirroring=[
            MirrorStatus(
                key=bytes.fromhex(entry.key),
                type=MirrorType.parse(entry.value),
                mirroring=True,
            )
            for entry in self.types_db.create_read_stream()
        ])

    def active_keys(self) -> List[str]:
        with self._state_lock:
            return sorted(self.mirroring)

    # ─── Reconciliation ─────────────────────────────────────

    def restart_mirroring(self) -> int:
        """
        Re-establish a download for every persisted chain record.

        Drives were expanded into their logs when first mirrored, so each
        record is replayed as a plain chain.

        Returns the number of records replayed.
        """
        count = 0
        for entry in self.chains_db.create_read_stream():
            self._mirror_chain(bytes.fromhex(entry.key))
            count += 1
        self.metrics.increment("restart_replayed_total", count)
        logger.info(f"[mirror] Restarted mirroring for {count} chain(s)")
        return count

    def close(self) -> int:
        """
        Cancel every active download and clear the registries.

        Returns the number of downloads cancelled.
        """
        with self._state_lock:
            self.closed = True
            active = list(self.downloads.values())
            self.downloads.clear()
            self.mirroring.clear()

        for download in active:
            self._cancel(download)
        self.metrics.set_gauge("active_downloads", 0)
        if active:
            logger.info(f"[mirror] Cancelled {len(active)} download(s)")
        return len(active)

    # ─── Chains ─────────────────────────────────────────────

    def _mirror_chain(
        self,
        key: bytes,
        log: Optional[LogHandle] = None,
        replicate: bool = True,
    ) -> None:
        key_hex = key.hex()
        with self._locks.hold(key_hex):
            if self.closed:
                raise ServiceClosedError("Mirror manager is closed")

            log = log or self.store.get(key)
            log.ready()
            if replicate:
                self.client.replicate(log)
            download = ActiveDownload(log=log, request=log.download())

            try:
                # Value reserved for per-chain metadata
                self.chains_db.put(key_hex, {})
            except Exception:
                self._cancel(download)
                raise

            with self._state_lock:
                # close() may have run while the download was being set up
                closed = self.closed
                if not closed:
                    previous = self.downloads.get(key_hex)
                    self.downloads[key_hex] = download
                    self.mirroring.add(key_hex)
                    active_count = len(self.downloads)

            if closed:
                self._cancel(download)
                raise ServiceClosedError("Mirror manager closed during mirror")

            if previous is not None and previous.request != download.request:
                self._cancel(previous)
            self.metrics.set_gauge("active_downloads", active_count)
            logger.debug(f"[mirror] Downloading chain {key_hex}")

    def _unmirror_chain(self, key: bytes, unannounce: bool = True) -> bool:
        key_hex = key.hex()
        with self._locks.hold(key_hex):
            download = self.downloads.get(key_hex)
            if download is None:
                return False

            if unannounce:
                self.client.network.configure(download.log.discovery_key, announce=False)
            download.log.undownload(download.request)

            with self._state_lock:
                self.downloads.pop(key_hex, None)
                self.mirroring.discard(key_hex)
                active_count = len(self.downloads)

            self.chains_db.delete(key_hex)
            self.metrics.set_gauge("active_downloads", active_count)
            logger.debug(f"[mirror] Stopped downloading chain {key_hex}")
            return True

    # ─── Drives ─────────────────────────────────────────────

    # TODO: follow mounts so nested drives are mirrored with their parent
    def _mirror_drive(self, key: bytes) -> None:
        logs = self.resolver.resolve(key, replicate=True)
        self._mirror_chain(logs.metadata.key, logs.metadata, replicate=False)
        self._mirror_chain(logs.content.key, logs.content, replicate=False)

    def _unmirror_drive(self, key: bytes) -> bool:
        # The metadata log shares the drive key
        if key.hex() not in self.downloads:
            return False
        logs = self.resolver.resolve(key)
        self.client.network.configure(logs.metadata.discovery_key, announce=False)
        stopped_metadata = self._unmirror_chain(logs.metadata.key, unannounce=False)
        stopped_content = self._unmirror_chain(logs.content.key, unannounce=False)
        return stopped_metadata or stopped_content

    # ─── Helpers ────────────────────────────────────────────

    def _cancel(self, download: ActiveDownload) -> None:
        try:
            download.log.undownload(download.request)
        except LogClosedError:
            logger.debug(f"[mirror] Log {download.log.key_hex} already closed, nothing to cancel")

    @contextmanager
    def _track(self, op: str, mirror_type: MirrorType) -> Iterator[None]:
        labels = {"op": op, "type": mirror_type.value}
        self.metrics.increment("mirror_requests_total", labels=labels)
        try:
            with Timer(self.metrics, "mirror_duration_seconds", {"op": op}):
                yield
        except Exception as e:
            self.metrics.increment("mirror_errors_total", labels={"op": op})
            logger.warning(
                f"[mirror] {op} failed: {e}",
                extra={"op": op, "mirror_type": mirror_type.value},
            )
            raise
