"""Presence lifecycle: online/offline transitions and disconnect cleanup."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Protocol

from app.monitoring.metrics import presence_persist_errors_total, realtime_events_total

from .registry import Connection, ConnectionRegistry
from .rooms import CallRoomTracker, GroupRoomTracker
from .router import EventRouter
from .transport import ConnectionTransport

logger = logging.getLogger(__name__)

EVICTION_CLOSE_CODE = 4000
EVICTION_REASON = "Replaced by a newer connection"


class PresenceStore(Protocol):
    """Durable mirror of the online flag.

    Implementations must be idempotent last-write-wins on ``last_seen``:
    writes may complete out of order relative to the in-memory transitions.
    """

    async def persist_status(self, user_id: str, online: bool, last_seen: datetime) -> None:
        ...


class NullPresenceStore:
    """Store used when persistence is disabled."""

    async def persist_status(self, user_id: str, online: bool, last_seen: datetime) -> None:
        logger.debug("Presence persistence disabled; %s online=%s not stored", user_id, online)


class PresencePersistence:
    """Fire-and-forget scheduling of presence writes."""

    def __init__(self, store: PresenceStore) -> None:
        self._store = store
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def store(self) -> PresenceStore:
        return self._store

    @property
    def pending(self) -> int:
        return len(self._pending)

    def schedule(self, user_id: str, online: bool, last_seen: datetime) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(
            self._persist(user_id, online, last_seen)
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _persist(self, user_id: str, online: bool, last_seen: datetime) -> None:
        try:
            await self._store.persist_status(user_id, online, last_seen)
        except asyncio.CancelledError:  # pragma: no cover - shutdown
            raise
        except Exception:
            presence_persist_errors_total.inc()
            logger.exception(
                "Failed to persist presence for user %s (online=%s)", user_id, online
            )
        else:
            realtime_events_total.labels("presence", "persist", "online" if online else "offline").inc()

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


class PresenceLifecycleManager:
    """Drive each user through ``OFFLINE -> ONLINE -> OFFLINE``.

    In-memory state is mutated synchronously before any notification is
    awaited, so an event processed while notifications are in flight (for
    example the same user reconnecting) always sees a consistent registry.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        groups: GroupRoomTracker,
        calls: CallRoomTracker,
        router: EventRouter,
        transport: ConnectionTransport,
        persistence: PresencePersistence,
        *,
        eviction_close_code: int = EVICTION_CLOSE_CODE,
    ) -> None:
        self._registry = registry
        self._groups = groups
        self._calls = calls
        self._router = router
        self._transport = transport
        self._persistence = persistence
        self._eviction_close_code = eviction_close_code

    async def connect(
        self,
        connection_id: str,
        *,
        user_id: str,
        name: str,
        username: str,
        avatar: str | None,
    ) -> Connection:
        previous = self._registry.resolve_identity(connection_id)
        if previous is not None and previous.user_id != user_id:
            # The socket switches identity: the old user leaves as on a close.
            await self._go_offline(previous, "re-identified")

        connection, evicted = self._registry.register_connection(
            connection_id, user_id, name, username, avatar
        )
        presence = self._registry.presence(user_id)
        if presence is not None:
            self._persistence.schedule(user_id, True, presence.last_seen)

        if evicted is not None:
            await self._evict(evicted)

        logger.info("User %s online via connection %s", user_id, connection_id)
        await self._router.broadcast_all(
            "user-online", connection.to_public(), exclude={connection_id}
        )
        return connection

    async def _evict(self, evicted: Connection) -> None:
        # Identity was already purged by the registry; only call legs remain.
        departures = self._calls.remove_connection_from_all_calls(evicted.connection_id)
        for call_id, participant, remaining in departures:
            await self._router.notify_call_departure(call_id, participant, remaining)
        await self._transport.close(
            evicted.connection_id, code=self._eviction_close_code, reason=EVICTION_REASON
        )

    async def disconnect(self, connection_id: str, reason: str | None = None) -> bool:
        """Run cleanup for a closed connection.

        Returns True when the user transitioned to offline. Unknown ids are a
        normal race (the connection was evicted or never identified) and are
        ignored.
        """

        connection = self._registry.resolve_identity(connection_id)
        if connection is None:
            logger.debug(
                "Disconnect of unidentified connection %s (%s)", connection_id, reason or "closed"
            )
            return False

        await self._go_offline(connection, reason)
        return True

    async def _go_offline(self, connection: Connection, reason: str | None) -> None:
        connection_id = connection.connection_id
        user_id = connection.user_id
        departures = self._calls.remove_connection_from_all_calls(connection_id)

        presence = self._registry.mark_offline(user_id)
        self._persistence.schedule(user_id, False, presence.last_seen)
        rooms_left = self._groups.remove_user_from_all_rooms(user_id)
        self._registry.remove_connection(connection_id)
        logger.info(
            "User %s offline (connection %s, reason: %s)", user_id, connection_id, reason or "closed"
        )

        member_payload = {"userId": user_id, "username": connection.username}
        for group_id in rooms_left:
            await self._router.broadcast_group(
                group_id,
                "user-left-room",
                {"groupId": group_id, **member_payload},
                exclude={connection_id},
            )
        for call_id, participant, remaining in departures:
            await self._router.notify_call_departure(call_id, participant, remaining)

        if self._registry.resolve_connection(user_id) is not None:
            logger.debug("User %s reconnected during cleanup; skipping offline broadcast", user_id)
            return
        await self._router.broadcast_all(
            "user-offline",
            {"userId": user_id, "username": connection.username, "avatar": connection.avatar},
            exclude={connection_id},
        )


__all__ = [
    "EVICTION_CLOSE_CODE",
    "NullPresenceStore",
    "PresenceLifecycleManager",
    "PresencePersistence",
    "PresenceStore",
]
