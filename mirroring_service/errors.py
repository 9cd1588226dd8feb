"""
Error Hierarchy — Exceptions raised by the mirroring service.

All custom exceptions inherit from MirroringError so callers (and the
control server's error handlers) can catch them in one place.

## Usage

    from mirroring_service.errors import DriveResolutionError

    try:
        manager.mirror(target)
    except DriveResolutionError as e:
        logger.warning(f"Drive not resolvable: {e.message}")
"""

from __future__ import annotations

from typing import Any, Dict, Optional

__all__ = [
    "MirroringError",
    "AlreadyRunningError",
    "NetworkUnavailableError",
    "DriveResolutionError",
    "InvalidTargetError",
    "InvalidKeyError",
    "LogClosedError",
    "ServiceClosedError",
    "ControlChannelError",
    "RequestFailedError",
]


class MirroringError(Exception):
    """Base exception for all mirroring service errors.

    Attributes:
        code: Machine-readable error code
        message: Human-readable description
        context: Extra details for logging and API responses
    """

    code: str = "MIRRORING_ERROR"

    def __init__(
        self,
        message: str = "",
        *,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message or self.__class__.__doc__ or self.code
        self.context = context or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.context:
            result["context"] = self.context
        return result


class AlreadyRunningError(MirroringError):
    """A mirroring server is already running on that host/port."""

    code = "ALREADY_RUNNING"


class NetworkUnavailableError(MirroringError):
    """The network client could not be made ready."""

    code = "NETWORK_UNAVAILABLE"


class DriveResolutionError(MirroringError):
    """A drive's metadata or content log could not be resolved."""

    code = "DRIVE_RESOLUTION_FAILED"


class InvalidTargetError(MirroringError, ValueError):
    """The mirror target is malformed."""

    code = "INVALID_TARGET"


class InvalidKeyError(InvalidTargetError):
    """The key is not a valid content identifier."""

    code = "INVALID_KEY"


class LogClosedError(MirroringError):
    """The log handle has already been torn down."""

    code = "LOG_CLOSED"


class ServiceClosedError(MirroringError):
    """The service is not open."""

    code = "SERVICE_CLOSED"


class ControlChannelError(MirroringError):
    """Could not reach the mirroring server."""

    code = "CONTROL_CHANNEL_ERROR"


class RequestFailedError(MirroringError):
    """The mirroring server rejected a request."""

    code = "REQUEST_FAILED"

    def __init__(self, message: str = "", *, status_code: int = 0,
                 remote_code: str = "", context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context=context)
        self.status_code = status_code
        self.remote_code = remote_code
