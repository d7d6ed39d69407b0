"""Shared pytest fixtures for backend tests."""

from __future__ import annotations

import asyncio
import os
from typing import Any, Iterator

os.environ.setdefault("PRESENCE_PERSISTENCE_ENABLED", "false")
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.models import Base
from app.monitoring.registry import registry
from thesync.realtime import RealtimeCoordinator, configure_realtime
from thesync.realtime.presence import NullPresenceStore


class FakeTransport:
    """Records frames instead of writing them to sockets."""

    def __init__(self) -> None:
        self.connected: set[str] = set()
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.closed: list[tuple[str, int, str]] = []

    def open(self, *connection_ids: str) -> None:
        self.connected.update(connection_ids)

    def drop(self, connection_id: str) -> None:
        self.connected.discard(connection_id)

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
        if connection_id not in self.connected:
            return False
        self.sent.append((connection_id, event, payload))
        return True

    async def close(self, connection_id: str, *, code: int, reason: str) -> None:
        self.closed.append((connection_id, code, reason))
        self.connected.discard(connection_id)

    def is_connected(self, connection_id: str) -> bool:
        return connection_id in self.connected

    def connection_ids(self) -> list[str]:
        return sorted(self.connected)

    def received(self, connection_id: str, event: str | None = None) -> list[dict[str, Any]]:
        return [
            payload
            for target, name, payload in self.sent
            if target == connection_id and (event is None or name == event)
        ]

    def events(self, connection_id: str) -> list[str]:
        return [name for target, name, _ in self.sent if target == connection_id]

    def clear(self) -> None:
        self.sent.clear()


class YieldingTransport(FakeTransport):
    """Suspends on every send so other tasks can interleave."""

    async def send(self, connection_id: str, event: str, payload: dict[str, Any]) -> bool:
        await asyncio.sleep(0)
        return await super().send(connection_id, event, payload)


class RecordingStore:
    def __init__(self) -> None:
        self.writes: list[tuple[str, bool, Any]] = []

    async def persist_status(self, user_id, online, last_seen) -> None:
        self.writes.append((user_id, online, last_seen))


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics() -> Iterator[None]:
    registry.reset()
    yield
    registry.reset()


@pytest.fixture()
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture()
def yielding_transport() -> YieldingTransport:
    return YieldingTransport()


@pytest.fixture()
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture()
def coordinator(transport, store) -> RealtimeCoordinator:
    return RealtimeCoordinator(transport, store=store)


@pytest.fixture()
def identify(coordinator, transport):
    """Open a fake connection and identify it as a user."""

    async def _identify(connection_id: str, user_id: str, username: str | None = None) -> None:
        transport.open(connection_id)
        await coordinator.dispatch(
            connection_id,
            {
                "type": "connect-identify",
                "userId": user_id,
                "username": username or user_id,
                "avatar": f"/avatars/{user_id}.png",
            },
        )

    return _identify


@pytest.fixture()
def test_engine() -> Iterator[Engine]:
    """Provide an in-memory SQLite engine for isolated tests."""

    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(test_engine) -> sessionmaker[Session]:
    return sessionmaker(bind=test_engine, future=True)


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """Yield a TestClient bound to a freshly configured coordinator."""

    configure_realtime(store=NullPresenceStore())
    with TestClient(app) as test_client:
        yield test_client
    configure_realtime(store=NullPresenceStore())
