from __future__ import annotations

import asyncio
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """
    Table of `asyncio.Lock`s, one per key.

    Callers serialize read-modify-write sequences on a single device or
    conversation with `async with locks(key): ...` while unrelated keys
    proceed concurrently. A key's lock is dropped once nobody holds or waits
    on it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def __call__(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


_STORE_LOCKS: weakref.WeakKeyDictionary[object, dict[str, KeyedLock]] = weakref.WeakKeyDictionary()


def store_locks(store: object, scope: str) -> KeyedLock:
    """
    The lock table for `scope` ("device", "conversation", ...) on `store`.

    Every manager built on the same store instance gets the same table, so two
    codecs sharing a store still serialize on each device and conversation.
    """

    tables = _STORE_LOCKS.get(store)
    if tables is None:
        tables = {}
        _STORE_LOCKS[store] = tables
    table = tables.get(scope)
    if table is None:
        table = KeyedLock()
        tables[scope] = table
    return table
