"""
Mirroring Client — Talks to a running mirroring server over its control API.

## Usage

    from mirroring_service.client import MirroringClient

    with MirroringClient(port=9875) as client:
        client.ready()
        client.mirror("ab12...", type="bitdrive")
        print(client.list())
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, Optional, Union

import httpx

from .config import DEFAULT_HOST, DEFAULT_PORT, ServiceSettings
from .errors import ControlChannelError, RequestFailedError

logger = logging.getLogger(__name__)

RawKey = Union[bytes, str]


class MirroringClient:
    """
    HTTP client for the control API.

    With no_retry=True, ready() makes a single connection attempt; this is
    how the server probes for an already-running instance.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        timeout: float = 10.0,
        no_retry: bool = False,
        retries: int = 5,
        retry_delay: float = 0.5,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = f"http://{host}:{port}"
        self.no_retry = no_retry
        self.retries = retries
        self.retry_delay = retry_delay
        self._http = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings: ServiceSettings, **kwargs: Any) -> "MirroringClient":
        return cls(host=settings.host, port=settings.port, **kwargs)

    def __enter__(self) -> "MirroringClient":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        self._http.close()

    # ─── Connection ─────────────────────────────────────────

    def ready(self) -> Dict[str, Any]:
        """
        Wait until the server answers a health request.

        Raises:
            ControlChannelError: If no server answered
        """
        attempts = 1 if self.no_retry else max(1, self.retries)
        last_error: Optional[Exception] = None

        for attempt in range(1, attempts + 1):
            try:
                return self._request("GET", "/api/health")
            except ControlChannelError as e:
                last_error = e
                if attempt < attempts:
                    logger.debug(f"[client] Server not ready (attempt {attempt}/{attempts})")
                    time.sleep(self.retry_delay)

        raise ControlChannelError(
            f"No mirroring server at {self.base_url}: {last_error}"
        ) from last_error

    # ─── Operations ─────────────────────────────────────────

    def mirror(self, key: RawKey, type: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", "/api/mirror", json=self._target(key, type))

    def unmirror(self, key: RawKey, type: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", "/api/unmirror", json=self._target(key, type))

    def status(self, key: RawKey, type: Optional[str] = None) -> Dict[str, Any]:
        return self._request("POST", "/api/status", json=self._target(key, type))

    def list(self) -> Dict[str, Any]:
        return self._request("GET", "/api/list")

    def stop(self) -> Dict[str, Any]:
        return self._request("POST", "/api/stop")

    def health(self) -> Dict[str, Any]:
        return self._request("GET", "/api/health")

    def metrics(self) -> str:
        try:
            response = self._http.get("/api/metrics")
        except httpx.TransportError as e:
            raise ControlChannelError(f"Request to {self.base_url} failed: {e}") from e
        self._raise_for_status(response)
        return response.text

    # ─── Helpers ────────────────────────────────────────────

    @staticmethod
    def _target(key: RawKey, type: Optional[str]) -> Dict[str, Any]:
        body: Dict[str, Any] = {"key": key.hex() if isinstance(key, bytes) else key}
        if type:
            body["type"] = type
        return body

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = self._http.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise ControlChannelError(f"Request to {self.base_url}{path} failed: {e}") from e
        self._raise_for_status(response)
        try:
            return response.json()
        except ValueError as e:
            raise RequestFailedError(
                f"Unexpected non-JSON reply from {self.base_url}{path}",
                status_code=response.status_code,
            ) from e

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        if response.status_code < 400:
            return
        try:
            body = response.json()
        except ValueError:
            body = {}
        raise RequestFailedError(
            body.get("message") or f"HTTP {response.status_code}",
            status_code=response.status_code,
            remote_code=body.get("error", ""),
        )
