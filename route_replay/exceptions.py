"""
Error taxonomy shared by the recorder, the playback engine and the stores.

Sensor and persistence errors are recoverable: the recorder absorbs them,
logs them and reflects them in its telemetry. InvalidState and NotFound
are raised at the call boundary before any side effect happens.
"""
from __future__ import annotations

from enum import Enum


class RouteReplayError(Exception):
    """Base class for every error raised by route_replay."""


class SensorErrorKind(Enum):
    """Recoverable failure reported by the position-sensing service."""

    PERMISSION_DENIED = "permission_denied"
    UNAVAILABLE = "unavailable"
    TIMEOUT = "timeout"


class SensorError(RouteReplayError):
    """A position subscription reported a transient failure."""

    def __init__(self, kind: SensorErrorKind, message: str = "") -> None:
        self.kind = kind
        self.message = message or kind.value.replace("_", " ")
        super().__init__(f"GPS error: {self.message}")


class PersistenceError(RouteReplayError):
    """A store operation failed (transport error, timeout, bad payload)."""


class InvalidState(RouteReplayError):
    """The operation is not allowed in the current state machine state."""


class NotFound(RouteReplayError):
    """A referenced route, point or stop does not exist in the store."""

    def __init__(self, kind: str, identifier) -> None:
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")
