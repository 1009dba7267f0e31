from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol


@dataclass(slots=True)
class StoredAccount:
    device_id: str
    pickle: str
    created_at: float


@dataclass(slots=True)
class SealedSession:
    """
    A pickled session plus the non-secret metadata needed to order writes.

    `ratchet_index` is the session's ratchet position for pairwise sessions
    and the high-water mark (next unconsumed message index) for inbound
    group sessions.
    """

    pickle: str
    session_id: str | None = None
    ratchet_index: int = 0
    identity_key: str | None = None
    updated_at: float = 0.0


@dataclass(slots=True)
class GroupSessionRecord:
    conversation_id: str
    outbound: SealedSession | None = None
    inbound_by_id: dict[str, SealedSession] = field(default_factory=dict)
    message_count: int = 0
    outbound_created_at: float | None = None


class SessionStore(Protocol):
    """
    Durable storage for the local device's account and sessions.

    Writes must be atomic per key. Reads return `None` when nothing is stored.
    """

    async def get_account(self) -> StoredAccount | None: ...

    async def put_account(self, account: StoredAccount) -> None: ...

    async def get_pairwise_session(self, device_id: str) -> SealedSession | None: ...

    async def put_pairwise_session(self, device_id: str, session: SealedSession) -> None: ...

    async def get_group_session(self, conversation_id: str) -> GroupSessionRecord | None: ...

    async def put_group_session(self, record: GroupSessionRecord) -> None: ...

    async def add_inbound_group_session(
        self, conversation_id: str, session_id: str, session: SealedSession
    ) -> None: ...

    async def increment_group_message_count(self, conversation_id: str) -> int: ...

    async def clear(self) -> None: ...
