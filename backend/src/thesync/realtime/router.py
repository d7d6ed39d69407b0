"""Recipient resolution and fan-out for realtime events."""

from __future__ import annotations

import logging
from typing import Any, Iterable

from app.monitoring.metrics import realtime_dropped_events_total, realtime_events_total

from .registry import Connection, ConnectionRegistry
from .rooms import CallParticipant, CallRoom, CallRoomTracker, GroupRoomTracker
from .signaling import build_relay_envelope, outbound_signal_event
from .transport import ConnectionTransport

logger = logging.getLogger(__name__)


class EventRouter:
    """Deliver outbound events to the connections that should see them.

    Delivery is fire-and-forget: a recipient whose socket is gone simply
    misses the live update. Lookup misses are logged and dropped, never
    raised, so one client's late or malformed event cannot affect others.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        groups: GroupRoomTracker,
        calls: CallRoomTracker,
        transport: ConnectionTransport,
    ) -> None:
        self._registry = registry
        self._groups = groups
        self._calls = calls
        self._transport = transport

    # ------------------------------------------------------------------
    # Delivery primitives
    # ------------------------------------------------------------------

    async def send_to_connection(
        self, connection_id: str, event: str, payload: dict[str, Any]
    ) -> bool:
        delivered = await self._transport.send(connection_id, event, payload)
        if delivered:
            realtime_events_total.labels("router", "out", event).inc()
        else:
            realtime_dropped_events_total.labels("send_failed").inc()
            logger.debug("Event %s not delivered to connection %s", event, connection_id)
        return delivered

    async def deliver(
        self, connection_ids: Iterable[str], event: str, payload: dict[str, Any]
    ) -> int:
        delivered = 0
        seen: set[str] = set()
        for connection_id in connection_ids:
            if connection_id in seen:
                continue
            seen.add(connection_id)
            if await self.send_to_connection(connection_id, event, payload):
                delivered += 1
        return delivered

    def group_connections(
        self, group_id: str, *, exclude: Iterable[str] | None = None
    ) -> list[str]:
        excluded = set(exclude or ())
        connections: list[str] = []
        for user_id in self._groups.members_of(group_id):
            connection_id = self._registry.resolve_connection(user_id)
            if connection_id is None or connection_id in excluded:
                continue
            connections.append(connection_id)
        return connections

    async def broadcast_group(
        self,
        group_id: str,
        event: str,
        payload: dict[str, Any],
        *,
        exclude: Iterable[str] | None = None,
    ) -> int:
        recipients = self.group_connections(group_id, exclude=exclude)
        if not recipients:
            logger.debug("No live members in group %s for %s", group_id, event)
            return 0
        return await self.deliver(recipients, event, payload)

    async def send_to_user(self, user_id: str, event: str, payload: dict[str, Any]) -> bool:
        connection_id = self._registry.resolve_connection(user_id)
        if connection_id is None:
            realtime_dropped_events_total.labels("offline").inc()
            logger.debug("User %s is offline; dropping %s", user_id, event)
            return False
        return await self.send_to_connection(connection_id, event, payload)

    async def broadcast_all(
        self,
        event: str,
        payload: dict[str, Any],
        *,
        exclude: Iterable[str] | None = None,
    ) -> int:
        excluded = set(exclude or ())
        recipients = [
            connection_id
            for connection_id in self._transport.connection_ids()
            if connection_id not in excluded
        ]
        return await self.deliver(recipients, event, payload)

    # ------------------------------------------------------------------
    # Signalling relay
    # ------------------------------------------------------------------

    async def relay_signal(
        self,
        sender_connection_id: str,
        inbound_event: str,
        *,
        target_connection_id: str,
        call_id: str | None,
        payload: Any,
        signal_type: str | None = None,
    ) -> bool:
        if not self._transport.is_connected(target_connection_id):
            realtime_dropped_events_total.labels("unknown_target").inc()
            logger.info(
                "Dropping %s from %s: target connection %s is not connected",
                inbound_event,
                sender_connection_id,
                target_connection_id,
            )
            return False
        envelope = build_relay_envelope(
            call_id=call_id,
            from_connection_id=sender_connection_id,
            payload=payload,
            signal_type=signal_type,
        )
        return await self.send_to_connection(
            target_connection_id, outbound_signal_event(inbound_event), envelope
        )

    # ------------------------------------------------------------------
    # Call rooms
    # ------------------------------------------------------------------

    async def start_call(self, connection: Connection, call_id: str, group_id: str) -> CallRoom:
        room = self._calls.start(
            call_id, CallParticipant.from_connection(connection), group_id=group_id
        )
        await self.broadcast_group(
            group_id,
            "call-started",
            {"callId": call_id, "initiator": connection.to_public(), "groupId": group_id},
        )
        return room

    async def join_call(
        self, connection: Connection, call_id: str, group_id: str | None = None
    ) -> list[CallParticipant]:
        participant = CallParticipant.from_connection(connection)
        existing = self._calls.join(call_id, participant, group_id=group_id)
        await self.send_to_connection(
            connection.connection_id,
            "existing-participants",
            {
                "callId": call_id,
                "participants": [entry.to_public() for entry in existing],
            },
        )
        await self.deliver(
            (entry.connection_id for entry in existing),
            "user-joined-call",
            {"callId": call_id, **participant.to_public()},
        )
        return existing

    async def leave_call(self, connection_id: str, call_id: str) -> bool:
        participant, remaining = self._calls.leave(call_id, connection_id)
        if participant is None:
            logger.debug("Connection %s is not part of call %s", connection_id, call_id)
            return False
        await self.notify_call_departure(call_id, participant, remaining)
        return True

    async def notify_call_departure(
        self,
        call_id: str,
        participant: CallParticipant,
        remaining: Iterable[CallParticipant],
    ) -> int:
        return await self.deliver(
            (entry.connection_id for entry in remaining),
            "user-left-call",
            {"callId": call_id, **participant.to_public()},
        )

    async def end_call(self, call_id: str, group_id: str | None = None) -> int:
        room = self._calls.end(call_id)
        if room is None:
            realtime_dropped_events_total.labels("unknown_call").inc()
            logger.info("Ignoring end of unknown call %s", call_id)
            return 0
        recipients = [participant.connection_id for participant in room.snapshot()]
        owning_group = group_id or room.group_id
        if owning_group is not None:
            recipients.extend(self.group_connections(owning_group))
        return await self.deliver(recipients, "call-ended", {"callId": call_id})


__all__ = ["EventRouter"]
