"""SQL mirror of realtime presence transitions."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.models import UserPresenceRecord

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlPresenceStore:
    """Persist ``(user_id, online, last_seen)`` with last-write-wins semantics.

    Writes are issued from background tasks and may land out of order; a
    write older than the stored ``last_seen`` is discarded, and replaying the
    same write is harmless.
    """

    def __init__(self, session_factory: Callable[[], Session] = SessionLocal) -> None:
        self._session_factory = session_factory

    async def persist_status(self, user_id: str, online: bool, last_seen: datetime) -> None:
        applied = await asyncio.to_thread(self.write_status, user_id, online, last_seen)
        if not applied:
            logger.debug("Discarded stale presence write for user %s", user_id)

    def write_status(self, user_id: str, online: bool, last_seen: datetime) -> bool:
        try:
            return self._write(user_id, online, last_seen)
        except IntegrityError:
            # Another writer inserted the row first; retry as an update.
            return self._write(user_id, online, last_seen)

    def _write(self, user_id: str, online: bool, last_seen: datetime) -> bool:
        with self._session_factory() as session:
            record = session.get(UserPresenceRecord, user_id)
            if record is None:
                session.add(
                    UserPresenceRecord(user_id=user_id, is_online=online, last_seen=last_seen)
                )
            elif _as_utc(record.last_seen) > _as_utc(last_seen):
                return False
            else:
                record.is_online = online
                record.last_seen = last_seen
            try:
                session.commit()
            except Exception:
                session.rollback()
                raise
            return True

    def load(self, user_id: str) -> UserPresenceRecord | None:
        with self._session_factory() as session:
            record = session.get(UserPresenceRecord, user_id)
            if record is not None:
                session.expunge(record)
            return record
