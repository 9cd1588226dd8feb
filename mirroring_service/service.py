"""
Mirroring Service — Open/close sequencing for the daemon.

Open:
    1. Probe the control endpoint; refuse to start if a server answers
    2. Create the network client and wait for it to be ready
    3. Open the registry root and its chains/types namespaces
    4. Bind the control server
    5. Replay every persisted chain, then start dispatching requests

Close:
    Stop the control server, cancel every download, clear the registries,
    release the network client.

Events:
    "open"          service finished opening
    "close"         service finished closing
    "client-open"   ClientInfo for each control request
    "client-close"  ClientInfo when that request is torn down
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from .client import MirroringClient
from .config import ServiceSettings
from .errors import (
    AlreadyRunningError,
    ControlChannelError,
    NetworkUnavailableError,
    RequestFailedError,
    ServiceClosedError,
)
from .events import EventEmitter
from .manager import MirrorManager
from .network.base import ChainStore, NetworkClient
from .network.local import LocalNetworkClient
from .observability.metrics import MetricsRegistry, metrics as default_metrics
from .persistence.tree import KeyValueTree
from .server import ControlServer, create_app

logger = logging.getLogger(__name__)

DB_VERSION = "v1"
CHAINS_SUB = "chains"
TYPES_SUB = "types"

ClientFactory = Callable[[], NetworkClient]


class MirroringService(EventEmitter):
    """The mirroring daemon: network client, registry, manager and server."""

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        client_factory: Optional[ClientFactory] = None,
        registry: Optional[MetricsRegistry] = None,
    ):
        super().__init__()
        self.settings = settings or ServiceSettings()
        self.metrics = registry or default_metrics
        self._client_factory = client_factory or LocalNetworkClient

        self.client: Optional[NetworkClient] = None
        self.store: Optional[ChainStore] = None
        self.chains_db: Optional[KeyValueTree] = None
        self.types_db: Optional[KeyValueTree] = None
        self.manager: Optional[MirrorManager] = None
        self.server = ControlServer(create_app(self), self.settings.host, self.settings.port)

        self.opened = False
        self.closed = False
        self._started_at: Optional[float] = None
        self._lifecycle_lock = threading.RLock()
        self._closed_event = threading.Event()

    # ─── Lifecycle ──────────────────────────────────────────

    def open(self) -> None:
        """
        Open the service.

        Raises:
            AlreadyRunningError: If another server answers on the endpoint
            NetworkUnavailableError: If the network client cannot be readied
            ServiceClosedError: If the service was already closed
        """
        with self._lifecycle_lock:
            if self.closed:
                raise ServiceClosedError("A closed service cannot be reopened")
            if self.opened:
                return

            self._ensure_not_running()
            try:
                self._open_network()
                self._open_registry()
                self.manager = MirrorManager(
                    self.client, self.store, self.chains_db, self.types_db, self.metrics,
                )
                self.server.listen()
                self.manager.restart_mirroring()
                self.server.start()
            except Exception:
                logger.error("[service] Startup failed, releasing resources")
                self._release()
                raise

            self.opened = True
            self._started_at = time.monotonic()

        logger.info(
            f"[service] Mirroring service ready on {self.endpoint} "
            f"({len(self.manager.active_keys())} chain(s) active)"
        )
        self.emit("open")

    def close(self) -> None:
        """Close the service. Safe to call repeatedly, and before open()."""
        with self._lifecycle_lock:
            if self.closed:
                return
            self.closed = True
            was_open = self.opened
            self._release()
            self.opened = False
            self._closed_event.set()

        logger.info("[service] Mirroring service closed")
        if was_open:
            self.emit("close")

    def close_async(self, delay: float = 0.1) -> None:
        """Close on a background thread after a short delay."""
        timer = threading.Timer(delay, self.close)
        timer.name = "mirroring-service-close"
        timer.daemon = True
        timer.start()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the service is closed. Returns False on timeout."""
        return self._closed_event.wait(timeout)

    def __enter__(self) -> "MirroringService":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ─── Accessors ──────────────────────────────────────────

    @property
    def endpoint(self) -> str:
        return f"http://{self.settings.host}:{self.server.port}"

    def require_manager(self) -> MirrorManager:
        if self.manager is None or self.closed:
            raise ServiceClosedError("Mirroring service is not open")
        return self.manager

    def health(self) -> Dict[str, Any]:
        active = self.manager.active_keys() if self.manager is not None else []
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        if self.opened and not self.closed:
            status = "ok"
        elif self.closed:
            status = "closed"
        else:
            status = "starting"
        return {
            "status": status,
            "uptime_seconds": round(uptime, 3),
            "active_downloads": len(active),
            "mirroring": len(self.types_db.keys()) if self.types_db is not None else 0,
            "network": "ready" if self.client is not None and not self.closed else "down",
            "server": self.server.info(),
        }

    # ─── Open Steps ─────────────────────────────────────────

    def _ensure_not_running(self) -> None:
        probe = MirroringClient.from_settings(
            self.settings,
            no_retry=True,
            timeout=self.settings.probe_timeout,
        )
        try:
            probe.ready()
            running = True
        except ControlChannelError:
            running = False
        except RequestFailedError as e:
            # Something answered, but not a mirroring server
            logger.warning(f"[service] Unexpected reply on {self.settings.endpoint}: {e}")
            running = False
        finally:
            probe.close()

        if running:
            raise AlreadyRunningError(
                f"A mirroring server is already running on {self.settings.endpoint}",
                context={"endpoint": self.settings.endpoint},
            )

    def _open_network(self) -> None:
        self.client = self._client_factory()
        try:
            self.client.ready()
        except NetworkUnavailableError:
            raise
        except Exception as e:
            raise NetworkUnavailableError(f"Network client failed to become ready: {e}") from e
        self.store = self.client.chainstore(self.settings.namespace)

    def _open_registry(self) -> None:
        root = KeyValueTree.open(self.settings.registry_path).sub(DB_VERSION)
        root.ready()
        self.chains_db = root.sub(CHAINS_SUB)
        self.types_db = root.sub(TYPES_SUB)
        logger.debug(f"[service] Registry opened at {self.settings.registry_path}")

    # ─── Close Steps ────────────────────────────────────────

    def _release(self) -> None:
        # Downloads are cancelled before the client is closed
        try:
            self.server.close()
        finally:
            try:
                if self.manager is not None:
                    self.manager.close()
            finally:
                if self.client is not None:
                    self.client.close()
