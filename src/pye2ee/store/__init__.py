from __future__ import annotations

from .base import GroupSessionRecord, SealedSession, SessionStore, StoredAccount
from .file import MultiFileSessionStore
from .memory import InMemorySessionStore

__all__ = [
    "GroupSessionRecord",
    "InMemorySessionStore",
    "MultiFileSessionStore",
    "SealedSession",
    "SessionStore",
    "StoredAccount",
]
