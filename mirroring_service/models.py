"""
Mirror Models — Pydantic schemas for mirror targets and status replies.

Keys arrive either as hex strings (control API, CLI) or raw bytes (Python
callers). They are normalized to bytes here, at the boundary; everything
behind the models works with the canonical binary form only.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from .errors import InvalidKeyError, InvalidTargetError

# Length of a content identifier (public key / discovery key), in bytes.
KEY_LENGTH = 32

RawKey = Union[bytes, str]


class MirrorType(str, Enum):
    """Kinds of mirror targets."""

    CHAIN = "unichain"
    DRIVE = "bitdrive"

    @classmethod
    def parse(cls, value: Any) -> "MirrorType":
        """Parse a type name; missing or empty means a single chain."""
        if value is None or value == "":
            return cls.CHAIN
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise InvalidTargetError(
                f"Unknown mirror type: {value!r}",
                context={"type": str(value)},
            ) from None


def normalize_key(key: Any) -> bytes:
    """
    Normalize a hex string or bytes-like key into canonical bytes.

    Raises:
        InvalidKeyError: If the key is not valid hex or has the wrong length
    """
    if isinstance(key, (bytes, bytearray, memoryview)):
        raw = bytes(key)
    elif isinstance(key, str):
        try:
            raw = bytes.fromhex(key)
        except ValueError:
            raise InvalidKeyError(f"Key is not valid hex: {key!r}") from None
    else:
        raise InvalidKeyError(f"Key must be hex or bytes, got {type(key).__name__}")

    if len(raw) != KEY_LENGTH:
        raise InvalidKeyError(
            f"Key must be {KEY_LENGTH} bytes, got {len(raw)}",
            context={"length": len(raw)},
        )
    return raw


def key_to_hex(key: RawKey) -> str:
    """Render a key for the wire and for persistence."""
    if isinstance(key, str):
        return key
    return bytes(key).hex()


class MirrorTarget(BaseModel):
    """One thing a client asked to mirror. Identity is the key."""

    model_config = ConfigDict(frozen=True)

    key: bytes
    type: MirrorType = MirrorType.CHAIN

    @classmethod
    def create(cls, key: Any, type: Any = None) -> "MirrorTarget":
        """Build a target from untrusted input."""
        return cls(key=normalize_key(key), type=MirrorType.parse(type))

    @property
    def key_hex(self) -> str:
        return self.key.hex()


class MirrorRequest(BaseModel):
    """Body of a mirror/unmirror/status request."""

    key: RawKey
    type: Optional[str] = None

    def target(self) -> MirrorTarget:
        return MirrorTarget.create(self.key, self.type)


class MirrorStatus(BaseModel):
    """Status snapshot for one target."""

    key: RawKey
    type: MirrorType = MirrorType.CHAIN
    mirroring: bool = False

    def echo(self, key: RawKey) -> "MirrorStatus":
        """Return a copy reporting the key in the caller's original form."""
        return self.model_copy(update={"key": key})

    def to_api_dict(self) -> Dict[str, Any]:
        return {
            "key": key_to_hex(self.key),
            "type": self.type.value,
            "mirroring": self.mirroring,
        }


class MirrorList(BaseModel):
    """Everything currently mirrored."""

    mirroring: List[MirrorStatus] = Field(default_factory=list)

    def to_api_dict(self) -> Dict[str, Any]:
        return {"mirroring": [m.to_api_dict() for m in self.mirroring]}
