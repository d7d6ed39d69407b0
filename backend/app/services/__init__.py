"""Application service helpers."""

from .presence_store import SqlPresenceStore

__all__ = ["SqlPresenceStore"]
