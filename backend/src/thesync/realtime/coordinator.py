"""Single owner of realtime state and entry point for inbound events."""

from __future__ import annotations

import logging
from functools import partial
from typing import Any, Awaitable, Callable, Dict

from app.monitoring.metrics import realtime_dropped_events_total, realtime_events_total

from .events import (
    DirectMessagePayload,
    EndCallPayload,
    EventPayload,
    GroupMessagePayload,
    GroupRoomPayload,
    IdentifyPayload,
    InvalidEventError,
    JoinCallPayload,
    LeaveCallPayload,
    RelayPayload,
    StartCallPayload,
    TypingPayload,
    parse_event,
)
from .presence import (
    EVICTION_CLOSE_CODE,
    NullPresenceStore,
    PresenceLifecycleManager,
    PresencePersistence,
    PresenceStore,
)
from .registry import Connection, ConnectionRegistry
from .rooms import CallRoomTracker, GroupRoomTracker
from .router import EventRouter
from .transport import ConnectionTransport

logger = logging.getLogger(__name__)

Handler = Callable[[str, Any], Awaitable[None]]

LOGOUT_CLOSE_CODE = 1000


class RealtimeCoordinator:
    """Own the registry and room trackers and dispatch inbound events.

    The coordinator is created once per process and injected into the
    transport adapter. All state is in memory and starts empty.
    """

    def __init__(
        self,
        transport: ConnectionTransport,
        *,
        store: PresenceStore | None = None,
        eviction_close_code: int = EVICTION_CLOSE_CODE,
    ) -> None:
        self.transport = transport
        self.registry = ConnectionRegistry()
        self.groups = GroupRoomTracker()
        self.calls = CallRoomTracker()
        self.router = EventRouter(self.registry, self.groups, self.calls, transport)
        self.persistence = PresencePersistence(store or NullPresenceStore())
        self.presence = PresenceLifecycleManager(
            self.registry,
            self.groups,
            self.calls,
            self.router,
            transport,
            self.persistence,
            eviction_close_code=eviction_close_code,
        )
        self._handlers: Dict[str, Handler] = {
            "connect-identify": self._on_identify,
            "join-group-room": self._on_join_group,
            "leave-group-room": self._on_leave_group,
            "send-group-message": self._on_group_message,
            "send-direct-message": self._on_direct_message,
            "typing-start": partial(self._on_typing, "user-typing"),
            "typing-stop": partial(self._on_typing, "user-stopped-typing"),
            "start-call": self._on_start_call,
            "join-call": self._on_join_call,
            "relay-signal": partial(self._on_relay, "relay-signal"),
            "relay-offer": partial(self._on_relay, "relay-offer"),
            "relay-answer": partial(self._on_relay, "relay-answer"),
            "relay-ice": partial(self._on_relay, "relay-ice"),
            "leave-call": self._on_leave_call,
            "end-call": self._on_end_call,
            "ping": self._on_ping,
            "logout": self._on_logout,
        }

    # ------------------------------------------------------------------
    # Entry points used by the transport adapter
    # ------------------------------------------------------------------

    async def dispatch(self, connection_id: str, frame: Any) -> None:
        """Handle one decoded inbound frame. Never raises."""

        try:
            event, payload = parse_event(frame)
        except InvalidEventError as exc:
            realtime_dropped_events_total.labels("invalid").inc()
            if exc.event == "connect-identify":
                await self.router.send_to_connection(
                    connection_id, "identify-ack", {"success": False, "error": exc.detail}
                )
            else:
                await self.router.send_to_connection(
                    connection_id, "error", {"detail": exc.detail, "event": exc.event}
                )
            return

        realtime_events_total.labels("router", "in", event).inc()
        handler = self._handlers[event]
        try:
            await handler(connection_id, payload)
        except Exception:
            logger.exception("Unhandled error while processing %s from %s", event, connection_id)
            await self.router.send_to_connection(
                connection_id, "error", {"detail": "Failed to process event", "event": event}
            )

    async def disconnect(self, connection_id: str, reason: str | None = None) -> None:
        try:
            await self.presence.disconnect(connection_id, reason)
        except Exception:
            logger.exception("Disconnect cleanup failed for connection %s", connection_id)

    async def shutdown(self) -> None:
        await self.persistence.drain()

    # ------------------------------------------------------------------
    # Server-side publishing for HTTP collaborators
    # ------------------------------------------------------------------

    async def publish_to_group(self, group_id: str, event: str, payload: dict[str, Any]) -> int:
        return await self.router.broadcast_group(group_id, event, payload)

    async def publish_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> bool:
        return await self.router.send_to_user(user_id, event, payload)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _identity(self, connection_id: str, event: str) -> Connection | None:
        connection = self.registry.resolve_identity(connection_id)
        if connection is None:
            realtime_dropped_events_total.labels("unidentified").inc()
            logger.info("Ignoring %s from unidentified connection %s", event, connection_id)
        return connection

    async def _on_identify(self, connection_id: str, payload: IdentifyPayload) -> None:
        connection = await self.presence.connect(
            connection_id,
            user_id=payload.user_id,
            name=payload.name or payload.username,
            username=payload.username,
            avatar=payload.avatar,
        )
        await self.router.send_to_connection(
            connection_id,
            "identify-ack",
            {
                "success": True,
                "userId": connection.user_id,
                "connectionId": connection.connection_id,
            },
        )

    async def _on_join_group(self, connection_id: str, payload: GroupRoomPayload) -> None:
        connection = self._identity(connection_id, "join-group-room")
        if connection is None:
            return
        if not self.groups.join(payload.group_id, connection.user_id):
            return
        await self.router.broadcast_group(
            payload.group_id,
            "user-joined-room",
            {
                "groupId": payload.group_id,
                "userId": connection.user_id,
                "username": connection.username,
            },
            exclude={connection_id},
        )

    async def _on_leave_group(self, connection_id: str, payload: GroupRoomPayload) -> None:
        connection = self._identity(connection_id, "leave-group-room")
        if connection is None:
            return
        if not self.groups.leave(payload.group_id, connection.user_id):
            logger.debug(
                "User %s was not in group room %s", connection.user_id, payload.group_id
            )
            return
        await self.router.broadcast_group(
            payload.group_id,
            "user-left-room",
            {
                "groupId": payload.group_id,
                "userId": connection.user_id,
                "username": connection.username,
            },
            exclude={connection_id},
        )

    async def _on_group_message(self, connection_id: str, payload: GroupMessagePayload) -> None:
        connection = self._identity(connection_id, "send-group-message")
        if connection is None:
            return
        await self.router.broadcast_group(
            payload.group_id,
            "message-delivered",
            {
                "groupId": payload.group_id,
                "senderId": connection.user_id,
                "messageBody": payload.message_body,
            },
            exclude={connection_id},
        )

    async def _on_direct_message(self, connection_id: str, payload: DirectMessagePayload) -> None:
        connection = self._identity(connection_id, "send-direct-message")
        if connection is None:
            return
        await self.router.send_to_user(
            payload.receiver_id,
            "direct-message-delivered",
            {"senderId": connection.user_id, "messageBody": payload.message_body},
        )

    async def _on_typing(self, event: str, connection_id: str, payload: TypingPayload) -> None:
        connection = self._identity(connection_id, event)
        if connection is None:
            return
        await self.router.broadcast_group(
            payload.group_id,
            event,
            {
                "groupId": payload.group_id,
                "userId": connection.user_id,
                "username": payload.username or connection.username,
            },
            exclude={connection_id},
        )

    async def _on_start_call(self, connection_id: str, payload: StartCallPayload) -> None:
        connection = self._identity(connection_id, "start-call")
        if connection is None:
            return
        logger.info(
            "User %s starting call %s in group %s",
            connection.user_id,
            payload.call_id,
            payload.group_id,
        )
        await self.router.start_call(connection, payload.call_id, payload.group_id)

    async def _on_join_call(self, connection_id: str, payload: JoinCallPayload) -> None:
        connection = self._identity(connection_id, "join-call")
        if connection is None:
            return
        await self.router.join_call(connection, payload.call_id, payload.group_id)

    async def _on_relay(self, event: str, connection_id: str, payload: RelayPayload) -> None:
        await self.router.relay_signal(
            connection_id,
            event,
            target_connection_id=payload.target_connection_id,
            call_id=payload.call_id,
            payload=payload.payload,
            signal_type=payload.signal_type,
        )

    async def _on_leave_call(self, connection_id: str, payload: LeaveCallPayload) -> None:
        await self.router.leave_call(connection_id, payload.call_id)

    async def _on_end_call(self, connection_id: str, payload: EndCallPayload) -> None:
        logger.info("Connection %s ending call %s", connection_id, payload.call_id)
        await self.router.end_call(payload.call_id, payload.group_id)

    async def _on_ping(self, connection_id: str, payload: EventPayload) -> None:
        await self.router.send_to_connection(connection_id, "pong", {})

    async def _on_logout(self, connection_id: str, payload: EventPayload) -> None:
        await self.presence.disconnect(connection_id, "logout")
        await self.transport.close(connection_id, code=LOGOUT_CLOSE_CODE, reason="Logged out")


__all__ = ["RealtimeCoordinator"]
