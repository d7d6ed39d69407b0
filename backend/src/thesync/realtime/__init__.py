"""Realtime presence, room membership and event routing."""

from .coordinator import RealtimeCoordinator  # noqa: F401
from .lifecycle import (  # noqa: F401
    configure_realtime,
    get_coordinator,
    get_transport,
    shutdown_realtime,
    startup_realtime,
)
from .registry import Connection, ConnectionRegistry, UserPresence  # noqa: F401
from .rooms import CallParticipant, CallRoom, CallRoomTracker, GroupRoomTracker  # noqa: F401
from .transport import ConnectionTransport, WebSocketTransport  # noqa: F401

__all__ = [
    "configure_realtime",
    "startup_realtime",
    "shutdown_realtime",
    "get_coordinator",
    "get_transport",
    "RealtimeCoordinator",
    "Connection",
    "ConnectionRegistry",
    "UserPresence",
    "CallParticipant",
    "CallRoom",
    "CallRoomTracker",
    "GroupRoomTracker",
    "ConnectionTransport",
    "WebSocketTransport",
]
