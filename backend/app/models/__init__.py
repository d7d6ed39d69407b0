"""Database models package."""

from .base import Base
from .presence import UserPresenceRecord

__all__ = ["Base", "UserPresenceRecord"]
