from __future__ import annotations

import asyncio
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import Any

from ..exceptions import StoreError
from ..util import json as bufferjson
from .base import GroupSessionRecord, SealedSession, StoredAccount
from .serde import account_from_dict, group_record_from_dict, sealed_session_from_dict, to_dict

_FILE_LOCKS: dict[Path, asyncio.Lock] = {}

_ACCOUNT_FILE = "account.json"


def _fix_filename(name: str) -> str:
    return name.replace("/", "__").replace("\\", "__").replace(":", "-")


def _lock_for(path: Path) -> asyncio.Lock:
    lock = _FILE_LOCKS.get(path)
    if lock is None:
        lock = asyncio.Lock()
        _FILE_LOCKS[path] = lock
    return lock


def _read_json(path: Path) -> Any | None:
    try:
        raw = path.read_text("utf-8")
    except FileNotFoundError:
        return None
    try:
        return bufferjson.loads(raw)
    except ValueError as e:
        raise StoreError(f"corrupt record file {path}: {e}") from e


def _write_json_atomic(path: Path, obj: Any) -> None:
    # Write a sibling temp file, fsync it, then rename over the target so a
    # crash leaves either the old or the new record, never a torn one.
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(bufferjson.dumps(obj, indent=2))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


class MultiFileSessionStore:
    """
    One JSON file per key inside `folder`:

    - `account.json` holds the sealed account.
    - `session-{device_id}.json` holds a sealed pairwise session.
    - `group-{conversation_id}.json` holds a conversation's group sessions.
    """

    def __init__(self, folder: str | Path) -> None:
        self.folder = Path(folder).expanduser()
        self.folder.mkdir(parents=True, exist_ok=True)

    def _path(self, category: str, key_id: str) -> Path:
        return self.folder / _fix_filename(f"{category}-{key_id}.json")

    async def _read(self, path: Path) -> Any | None:
        async with _lock_for(path):
            return await asyncio.to_thread(_read_json, path)

    async def _write(self, path: Path, obj: Any) -> None:
        async with _lock_for(path):
            await asyncio.to_thread(_write_json_atomic, path, obj)

    async def _update(self, path: Path, fn: Callable[[Any | None], Any | None]) -> Any | None:
        async with _lock_for(path):
            current = await asyncio.to_thread(_read_json, path)
            updated = fn(current)
            if updated is not None:
                await asyncio.to_thread(_write_json_atomic, path, updated)
            return updated

    async def get_account(self) -> StoredAccount | None:
        d = await self._read(self.folder / _ACCOUNT_FILE)
        return account_from_dict(d) if d else None

    async def put_account(self, account: StoredAccount) -> None:
        await self._write(self.folder / _ACCOUNT_FILE, to_dict(account))

    async def get_pairwise_session(self, device_id: str) -> SealedSession | None:
        d = await self._read(self._path("session", device_id))
        return sealed_session_from_dict(d) if d else None

    async def put_pairwise_session(self, device_id: str, session: SealedSession) -> None:
        await self._write(self._path("session", device_id), to_dict(session))

    async def get_group_session(self, conversation_id: str) -> GroupSessionRecord | None:
        d = await self._read(self._path("group", conversation_id))
        return group_record_from_dict(d) if d else None

    async def put_group_session(self, record: GroupSessionRecord) -> None:
        await self._write(self._path("group", record.conversation_id), to_dict(record))

    async def add_inbound_group_session(
        self, conversation_id: str, session_id: str, session: SealedSession
    ) -> None:
        def _add(current: Any | None) -> dict[str, Any]:
            record = (
                group_record_from_dict(current)
                if current
                else GroupSessionRecord(conversation_id=conversation_id)
            )
            record.inbound_by_id[session_id] = session
            return to_dict(record)

        await self._update(self._path("group", conversation_id), _add)

    async def increment_group_message_count(self, conversation_id: str) -> int:
        def _increment(current: Any | None) -> dict[str, Any] | None:
            if not current:
                return None
            record = group_record_from_dict(current)
            record.message_count += 1
            return to_dict(record)

        updated = await self._update(self._path("group", conversation_id), _increment)
        return int(updated["message_count"]) if updated else 0

    async def clear(self) -> None:
        for p in self.folder.glob("*.json"):
            async with _lock_for(p):
                await asyncio.to_thread(p.unlink, missing_ok=True)
