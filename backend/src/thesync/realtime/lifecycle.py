"""Process level wiring of the realtime coordinator."""

from __future__ import annotations

import logging

from app.config import get_settings

from .coordinator import RealtimeCoordinator
from .presence import NullPresenceStore, PresenceStore
from .transport import WebSocketTransport

logger = logging.getLogger(__name__)

_transport: WebSocketTransport | None = None
_coordinator: RealtimeCoordinator | None = None


def _build_store() -> PresenceStore:
    settings = get_settings()
    if not settings.presence_persistence_enabled:
        logger.warning("Presence persistence disabled; online status will not be stored")
        return NullPresenceStore()
    from app.services.presence_store import SqlPresenceStore

    return SqlPresenceStore()


def configure_realtime(store: PresenceStore | None = None) -> RealtimeCoordinator:
    """(Re)create the process wide transport and coordinator."""

    global _transport, _coordinator
    settings = get_settings()
    _transport = WebSocketTransport()
    _coordinator = RealtimeCoordinator(
        _transport,
        store=store if store is not None else _build_store(),
        eviction_close_code=settings.realtime_eviction_close_code,
    )
    return _coordinator


def get_coordinator() -> RealtimeCoordinator:
    if _coordinator is None:
        return configure_realtime()
    return _coordinator


def get_transport() -> WebSocketTransport:
    if _transport is None:
        configure_realtime()
    return _transport  # type: ignore[return-value]


async def startup_realtime() -> None:
    coordinator = get_coordinator()
    logger.info(
        "Realtime coordinator ready (persistence: %s)",
        type(coordinator.persistence.store).__name__,
    )


async def shutdown_realtime() -> None:
    if _coordinator is None:
        return
    await _coordinator.shutdown()


__all__ = [
    "configure_realtime",
    "get_coordinator",
    "get_transport",
    "shutdown_realtime",
    "startup_realtime",
]
