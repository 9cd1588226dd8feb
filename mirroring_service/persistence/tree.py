"""
Key-Value Tree — Durable namespaced key→value store.

A single JSON file holds every entry; sub-trees are key prefixes over
the same file, so the root and all of its namespaces share one lock and
one atomic write path.

## Usage

    root = KeyValueTree.open(Path("state/registry.json")).sub("v1")
    chains = root.sub("chains")

    chains.put("ab12...", {})
    for entry in chains.create_read_stream():
        print(entry.key, entry.value)
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

logger = logging.getLogger(__name__)

SEPARATOR = "/"


class Entry(NamedTuple):
    """One key/value pair yielded by a read stream."""

    key: str
    value: Any


class _TreeFile:
    """The backing file shared by a root tree and its sub-trees."""

    def __init__(self, path: Path):
        self.path = path
        self.lock = threading.RLock()
        self.data: Dict[str, Any] = {}
        # Incremented on every flush to disk
        self.version = 0
        self._loaded = False

    def load(self) -> None:
        with self.lock:
            if self._loaded:
                return
            if self.path.exists():
                with self.path.open("r", encoding="utf-8") as f:
                    self.data = json.load(f)
                logger.debug(f"Registry loaded: {len(self.data)} entries from {self.path}")
            self._loaded = True

    def commit(self, data: Dict[str, Any]) -> None:
        """
        Write data atomically (temp file, then rename) and make it current.

        The in-memory view only changes once the file is in place.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(".tmp")
        with temp_path.open("w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.write("\n")
        temp_path.replace(self.path)
        self.data = data
        self.version += 1


class KeyValueTree:
    """
    A view over the tree file rooted at a key prefix.

    Keys are strings; values are anything JSON-serializable.
    """

    def __init__(self, tree_file: _TreeFile, prefix: str = ""):
        self._file = tree_file
        self.prefix = prefix

    @classmethod
    def open(cls, path: Path) -> "KeyValueTree":
        """Open (or create on first write) the tree stored at path."""
        return cls(_TreeFile(Path(path)))

    @property
    def path(self) -> Path:
        return self._file.path

    @property
    def version(self) -> int:
        """Number of writes flushed to disk since the tree was opened."""
        return self._file.version

    def ready(self) -> None:
        """Load the backing file. Safe to call repeatedly."""
        self._file.load()

    def sub(self, name: str) -> "KeyValueTree":
        """Return an independent namespace nested under this one."""
        if not name or SEPARATOR in name:
            raise ValueError(f"Invalid namespace name: {name!r}")
        return KeyValueTree(self._file, f"{self.prefix}{name}{SEPARATOR}")

    def _full(self, key: str) -> str:
        if not isinstance(key, str) or not key:
            raise ValueError(f"Keys must be non-empty strings, got {key!r}")
        return self.prefix + key

    def put(self, key: str, value: Any) -> None:
        full_key = self._full(key)
        with self._file.lock:
            self._file.load()
            self._file.commit({**self._file.data, full_key: value})

    def get(self, key: str, default: Optional[Any] = None) -> Any:
        full_key = self._full(key)
        with self._file.lock:
            self._file.load()
            return self._file.data.get(full_key, default)

    def delete(self, key: str) -> bool:
        """
        Delete a key.

        Returns True if the key existed. Deleting an absent key writes nothing.
        """
        full_key = self._full(key)
        with self._file.lock:
            self._file.load()
            if full_key not in self._file.data:
                return False
            self._file.commit({k: v for k, v in self._file.data.items() if k != full_key})
            return True

    def __contains__(self, key: str) -> bool:
        with self._file.lock:
            self._file.load()
            return self._full(key) in self._file.data

    def keys(self) -> List[str]:
        return [entry.key for entry in self.create_read_stream()]

    def create_read_stream(self) -> Iterator[Entry]:
        """
        Iterate this namespace's direct entries in key order.

        The iterator works over a snapshot taken when it is created, so it
        is finite even if the tree is written to while it is consumed.
        Nested namespaces are not included. Each call starts a new scan.
        """
        with self._file.lock:
            self._file.load()
            snapshot = [
                (full_key[len(self.prefix):], value)
                for full_key, value in self._file.data.items()
                if full_key.startswith(self.prefix)
                and SEPARATOR not in full_key[len(self.prefix):]
            ]
        snapshot.sort(key=lambda item: item[0])
        return (Entry(key, value) for key, value in snapshot)
