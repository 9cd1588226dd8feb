"""
Mirroring Service — Keep chains and drives replicated and downloaded.

The daemon persists which targets are mirrored and re-establishes every
download after a restart. Clients control it over a local HTTP API.
"""

from .config import ServiceSettings
from .manager import MirrorManager
from .models import MirrorStatus, MirrorTarget, MirrorType
from .service import MirroringService

__version__ = "1.0.0"

__all__ = [
    "MirrorManager",
    "MirrorStatus",
    "MirrorTarget",
    "MirrorType",
    "MirroringService",
    "ServiceSettings",
]
