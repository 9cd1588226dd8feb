"""
Drive Resolution — Map a drive key to its two constituent logs.

A drive is a metadata log plus a content log. The metadata log's key is
the drive key, and its first block is a header naming the content log:

    {"type": "bitdrive", "content": "<hex content key>"}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from ..errors import DriveResolutionError, LogClosedError
from ..events import EventEmitter
from .base import ChainStore, LogHandle, NetworkClient

logger = logging.getLogger(__name__)

DRIVE_HEADER_TYPE = "bitdrive"


def encode_header(content_key: bytes) -> bytes:
    """Build the metadata header block for a drive."""
    return json.dumps(
        {"type": DRIVE_HEADER_TYPE, "content": content_key.hex()},
        sort_keys=True,
    ).encode("utf-8")


def decode_header(block: bytes) -> bytes:
    """
    Extract the content key from a metadata header block.

    Raises:
        ValueError: If the block is not a drive header
    """
    header = json.loads(block.decode("utf-8"))
    if not isinstance(header, dict) or header.get("type") != DRIVE_HEADER_TYPE:
        raise ValueError("Not a drive header")
    content_key = bytes.fromhex(header["content"])
    if len(content_key) != 32:
        raise ValueError("Content key has the wrong length")
    return content_key


class Drive(EventEmitter):
    """
    A drive opened over a chain store.

    Errors hit while reading the header are emitted as "error" events
    before being raised to the caller.
    """

    def __init__(self, store: ChainStore, key: bytes):
        super().__init__()
        self.key = key
        self._store = store
        self.metadata = store.get(key)

    def ready(self) -> None:
        self.metadata.ready()

    def get_content(self) -> LogHandle:
        """
        Resolve and open the content log.

        Raises:
            DriveResolutionError: If the header is missing or malformed
        """
        try:
            content_key = decode_header(self.metadata.get(0))
        except (IndexError, LogClosedError, ValueError, KeyError, TypeError) as e:
            self.emit("error", e)
            raise DriveResolutionError(
                f"Could not resolve content for drive {self.key.hex()}: {e}",
                context={"key": self.key.hex()},
            ) from e

        content = self._store.get(content_key)
        content.ready()
        return content


@dataclass(frozen=True)
class DriveLogs:
    """The two logs a drive expands into."""

    metadata: LogHandle
    content: LogHandle


class DriveResolver:
    """Resolves drive keys using a network client and chain store."""

    def __init__(self, client: NetworkClient, store: ChainStore):
        self.client = client
        self.store = store

    def resolve(self, key: bytes, replicate: bool = False) -> DriveLogs:
        """
        Open the drive for key and return its metadata and content logs.

        With replicate=True the drive's metadata log is replicated before
        the content log is looked up, which covers both logs on the wire.

        Raises:
            DriveResolutionError: If the content log cannot be resolved
        """
        drive = Drive(self.store, key)
        drive.on("error", _log_drive_error)
        drive.ready()
        if replicate:
            self.client.replicate(drive.metadata)
        content = drive.get_content()
        return DriveLogs(metadata=drive.metadata, content=content)


def _log_drive_error(error: Exception) -> None:
    # Drive listener errors are logged and ignored; resolution failures
    # still reach the caller as DriveResolutionError.
    logger.warning(f"[drive] Ignoring drive error: {error}")
