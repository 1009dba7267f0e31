from __future__ import annotations

import copy

from .base import GroupSessionRecord, SealedSession, StoredAccount


class InMemorySessionStore:
    """
    Dict-backed session store.

    Records are copied on the way in and out so callers can never mutate
    stored state without going through a `put_*` call.
    """

    def __init__(self) -> None:
        self._account: StoredAccount | None = None
        self._pairwise: dict[str, SealedSession] = {}
        self._groups: dict[str, GroupSessionRecord] = {}

    async def get_account(self) -> StoredAccount | None:
        return copy.deepcopy(self._account)

    async def put_account(self, account: StoredAccount) -> None:
        self._account = copy.deepcopy(account)

    async def get_pairwise_session(self, device_id: str) -> SealedSession | None:
        return copy.deepcopy(self._pairwise.get(device_id))

    async def put_pairwise_session(self, device_id: str, session: SealedSession) -> None:
        self._pairwise[device_id] = copy.deepcopy(session)

    async def get_group_session(self, conversation_id: str) -> GroupSessionRecord | None:
        return copy.deepcopy(self._groups.get(conversation_id))

    async def put_group_session(self, record: GroupSessionRecord) -> None:
        self._groups[record.conversation_id] = copy.deepcopy(record)

    async def add_inbound_group_session(
        self, conversation_id: str, session_id: str, session: SealedSession
    ) -> None:
        record = self._groups.get(conversation_id)
        if record is None:
            record = GroupSessionRecord(conversation_id=conversation_id)
            self._groups[conversation_id] = record
        record.inbound_by_id[session_id] = copy.deepcopy(session)

    async def increment_group_message_count(self, conversation_id: str) -> int:
        record = self._groups.get(conversation_id)
        if record is None:
            return 0
        record.message_count += 1
        return record.message_count

    async def clear(self) -> None:
        self._account = None
        self._pairwise.clear()
        self._groups.clear()
