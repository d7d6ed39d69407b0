"""In-memory registry of identified realtime connections."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(slots=True)
class Connection:
    """Identity attached to a single live transport session."""

    connection_id: str
    user_id: str
    name: str
    username: str
    avatar: str | None = None

    def to_public(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "name": self.name,
            "username": self.username,
            "avatar": self.avatar,
        }


@dataclass(slots=True)
class UserPresence:
    """Cached presence snapshot mirrored to durable storage."""

    user_id: str
    connection_id: str | None = None
    online: bool = False
    last_seen: datetime = field(default_factory=utcnow)

    def to_public(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "connectionId": self.connection_id,
            "online": self.online,
            "lastSeen": self.last_seen.isoformat(),
        }


class ConnectionRegistry:
    """Bidirectional connection id <-> user id mapping.

    A user holds at most one live connection. Registering a second connection
    for the same user evicts the first one: its entries are purged and it is
    handed back to the caller, which is responsible for closing the socket.
    """

    def __init__(self) -> None:
        self._connections: Dict[str, Connection] = {}
        self._user_connections: Dict[str, str] = {}
        self._presence: Dict[str, UserPresence] = {}

    def __len__(self) -> int:
        return len(self._connections)

    def register_connection(
        self,
        connection_id: str,
        user_id: str,
        name: str,
        username: str,
        avatar: str | None = None,
        *,
        now: datetime | None = None,
    ) -> tuple[Connection, Connection | None]:
        evicted: Connection | None = None
        previous_id = self._user_connections.get(user_id)
        if previous_id is not None and previous_id != connection_id:
            evicted = self._connections.pop(previous_id, None)
            self._user_connections.pop(user_id, None)
            logger.info(
                "Evicting connection %s of user %s in favour of %s",
                previous_id,
                user_id,
                connection_id,
            )

        # The same socket may identify as somebody else.
        existing = self._connections.get(connection_id)
        if existing is not None and existing.user_id != user_id:
            self.remove_connection(connection_id)

        connection = Connection(
            connection_id=connection_id,
            user_id=user_id,
            name=name,
            username=username,
            avatar=avatar,
        )
        self._connections[connection_id] = connection
        self._user_connections[user_id] = connection_id

        presence = self._presence.setdefault(user_id, UserPresence(user_id=user_id))
        presence.connection_id = connection_id
        presence.online = True
        presence.last_seen = now or utcnow()
        return connection, evicted

    def resolve_connection(self, user_id: str) -> str | None:
        return self._user_connections.get(user_id)

    def resolve_identity(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def is_current(self, connection_id: str, user_id: str) -> bool:
        return self._user_connections.get(user_id) == connection_id

    def remove_connection(self, connection_id: str) -> Connection | None:
        """Drop both mapping directions for *connection_id*.

        Safe to call for unknown or already removed ids. The user entry is
        only cleared while it still points at this connection so a stale
        removal never detaches a newer session.
        """

        connection = self._connections.pop(connection_id, None)
        if connection is None:
            return None
        if self._user_connections.get(connection.user_id) == connection_id:
            self._user_connections.pop(connection.user_id, None)
        presence = self._presence.get(connection.user_id)
        if presence is not None and presence.connection_id == connection_id:
            presence.connection_id = None
        return connection

    def mark_offline(self, user_id: str, *, now: datetime | None = None) -> UserPresence:
        presence = self._presence.setdefault(user_id, UserPresence(user_id=user_id))
        presence.online = False
        presence.connection_id = None
        presence.last_seen = now or utcnow()
        return presence

    def presence(self, user_id: str) -> UserPresence | None:
        return self._presence.get(user_id)

    def online_users(self) -> list[Connection]:
        users = [
            self._connections[connection_id]
            for connection_id in self._user_connections.values()
            if connection_id in self._connections
        ]
        users.sort(key=lambda item: item.username.lower())
        return users


__all__ = ["Connection", "ConnectionRegistry", "UserPresence", "utcnow"]
