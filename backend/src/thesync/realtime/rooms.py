"""Group chat and video call room bookkeeping.

Rosters are kept here rather than in the socket library's native room
primitives so join/leave stay idempotent and disconnect cleanup can report
exactly which rooms a user left.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Set

from .registry import Connection, utcnow


class GroupRoomTracker:
    """Track which users are currently inside each group chat room."""

    def __init__(self) -> None:
        self._rooms: Dict[str, Set[str]] = defaultdict(set)

    def join(self, room_id: str, user_id: str) -> bool:
        members = self._rooms[room_id]
        if user_id in members:
            return False
        members.add(user_id)
        return True

    def leave(self, room_id: str, user_id: str) -> bool:
        members = self._rooms.get(room_id)
        if not members or user_id not in members:
            return False
        members.discard(user_id)
        if not members:
            self._rooms.pop(room_id, None)
        return True

    def members_of(self, room_id: str) -> set[str]:
        return set(self._rooms.get(room_id, ()))

    def is_member(self, room_id: str, user_id: str) -> bool:
        return user_id in self._rooms.get(room_id, ())

    def remove_user_from_all_rooms(self, user_id: str) -> list[str]:
        left: list[str] = []
        for room_id in list(self._rooms):
            if self.leave(room_id, user_id):
                left.append(room_id)
        return left

    def rooms(self) -> dict[str, list[str]]:
        return {room_id: sorted(members) for room_id, members in self._rooms.items()}


@dataclass(slots=True)
class CallParticipant:
    connection_id: str
    user_id: str
    username: str
    avatar: str | None = None

    @classmethod
    def from_connection(cls, connection: Connection) -> "CallParticipant":
        return cls(
            connection_id=connection.connection_id,
            user_id=connection.user_id,
            username=connection.username,
            avatar=connection.avatar,
        )

    def to_public(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "username": self.username,
            "avatar": self.avatar,
            "connectionId": self.connection_id,
        }


@dataclass(slots=True)
class CallRoom:
    call_id: str
    group_id: str | None = None
    participants: Dict[str, CallParticipant] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def snapshot(self) -> list[CallParticipant]:
        return list(self.participants.values())

    def to_public(self) -> dict[str, Any]:
        return {
            "callId": self.call_id,
            "groupId": self.group_id,
            "participants": [participant.to_public() for participant in self.participants.values()],
            "createdAt": self.created_at.isoformat(),
        }


class CallRoomTracker:
    """Video call rosters keyed by connection id."""

    def __init__(self) -> None:
        self._calls: Dict[str, CallRoom] = {}

    def _ensure(self, call_id: str, group_id: str | None) -> CallRoom:
        room = self._calls.get(call_id)
        if room is None:
            room = CallRoom(call_id=call_id, group_id=group_id)
            self._calls[call_id] = room
        elif room.group_id is None and group_id is not None:
            room.group_id = group_id
        return room

    def start(
        self, call_id: str, participant: CallParticipant, *, group_id: str | None = None
    ) -> CallRoom:
        room = self._ensure(call_id, group_id)
        room.participants[participant.connection_id] = participant
        return room

    def join(
        self, call_id: str, participant: CallParticipant, *, group_id: str | None = None
    ) -> list[CallParticipant]:
        room = self._ensure(call_id, group_id)
        # Snapshot before inserting so the joiner never receives itself.
        existing = [
            entry
            for connection_id, entry in room.participants.items()
            if connection_id != participant.connection_id
        ]
        room.participants[participant.connection_id] = participant
        return existing

    def leave(
        self, call_id: str, connection_id: str
    ) -> tuple[CallParticipant | None, list[CallParticipant]]:
        room = self._calls.get(call_id)
        if room is None:
            return None, []
        participant = room.participants.pop(connection_id, None)
        remaining = room.snapshot()
        if not room.participants:
            self._calls.pop(call_id, None)
        return participant, remaining

    def end(self, call_id: str) -> CallRoom | None:
        return self._calls.pop(call_id, None)

    def remove_connection_from_all_calls(
        self, connection_id: str
    ) -> list[tuple[str, CallParticipant, list[CallParticipant]]]:
        removed: list[tuple[str, CallParticipant, list[CallParticipant]]] = []
        for call_id in list(self._calls):
            participant, remaining = self.leave(call_id, connection_id)
            if participant is not None:
                removed.append((call_id, participant, remaining))
        return removed

    def get(self, call_id: str) -> CallRoom | None:
        return self._calls.get(call_id)

    def exists(self, call_id: str) -> bool:
        return call_id in self._calls

    def calls(self) -> list[CallRoom]:
        return list(self._calls.values())


__all__ = ["CallParticipant", "CallRoom", "CallRoomTracker", "GroupRoomTracker"]
