from __future__ import annotations

import logging
from dataclasses import dataclass

from .cipher import CipherLibrary, OlmCipherLibrary
from .config import SessionConfig
from .exceptions import MalformedPayload, NoSessionFound, ReplayedMessage, StaleSessionError
from .olm import GroupDecryption, GroupSession, InboundGroupSession
from .pickle_key import PickleKeyProvider
from .store.base import GroupSessionRecord, SealedSession, SessionStore
from .util.asyncio import store_locks

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OutboundSession:
    session: GroupSession
    is_new: bool


@dataclass(frozen=True, slots=True)
class GroupEncryption:
    ciphertext: str
    session_id: str
    session_key: str
    is_new: bool


def needs_rotation(record: GroupSessionRecord, now: float, config: SessionConfig) -> bool:
    if record.outbound is None:
        return True
    if record.message_count >= config.rotation_message_limit:
        return True
    return (
        record.outbound_created_at is not None
        and now - record.outbound_created_at >= config.rotation_age_s
    )


class GroupSessionManager:
    """
    Outbound group session lifecycle (create, reuse, rotate) and inbound
    group session import and decryption, serialized per conversation.
    """

    def __init__(
        self,
        store: SessionStore,
        pickle_keys: PickleKeyProvider,
        *,
        cipher: CipherLibrary | None = None,
        config: SessionConfig | None = None,
    ) -> None:
        self._store = store
        self._pickle_keys = pickle_keys
        self._cipher = cipher or OlmCipherLibrary()
        self._config = config or SessionConfig()
        self._locks = store_locks(store, "conversation")

    def _seal_inbound(self, session: InboundGroupSession, high_water_mark: int) -> SealedSession:
        return SealedSession(
            pickle=session.pickle(self._pickle_keys.get()),
            session_id=session.session_id,
            ratchet_index=high_water_mark,
            updated_at=self._config.now(),
        )

    def _seal_outbound(self, session: GroupSession) -> SealedSession:
        return SealedSession(
            pickle=session.pickle(self._pickle_keys.get()),
            session_id=session.session_id,
            ratchet_index=session.message_index,
            updated_at=self._config.now(),
        )

    # --- outbound ---

    async def _get_or_create_outbound_locked(self, conversation_id: str) -> OutboundSession:
        record = await self._store.get_group_session(conversation_id)
        now = self._config.now()

        if record is not None and record.outbound is not None:
            if not needs_rotation(record, now, self._config):
                session = self._cipher.group_session_from_pickle(
                    record.outbound.pickle, self._pickle_keys.get()
                )
                return OutboundSession(session=session, is_new=False)
            logger.debug(
                "rotating group session %s for conversation %s (messages=%d)",
                record.outbound.session_id,
                conversation_id,
                record.message_count,
            )

        session = self._cipher.create_group_session()
        # Keep a local inbound copy so this device can read its own messages.
        inbound = self._cipher.create_inbound_group_session(session.session_key)

        if record is None:
            record = GroupSessionRecord(conversation_id=conversation_id)
        record.outbound = self._seal_outbound(session)
        record.inbound_by_id[session.session_id] = self._seal_inbound(
            inbound, inbound.first_known_index
        )
        record.message_count = 0
        record.outbound_created_at = now
        await self._store.put_group_session(record)

        logger.info(
            "created group session %s for conversation %s", session.session_id, conversation_id
        )
        return OutboundSession(session=session, is_new=True)

    async def get_or_create_outbound(self, conversation_id: str) -> OutboundSession:
        async with self._locks(conversation_id):
            return await self._get_or_create_outbound_locked(conversation_id)

    async def _increment_locked(self, conversation_id: str, session: GroupSession) -> tuple[int, bool]:
        record = await self._store.get_group_session(conversation_id)
        if record is None or record.outbound is None:
            return 0, True
        if record.outbound.session_id != session.session_id:
            raise StaleSessionError(
                f"outbound session {session.session_id} for conversation {conversation_id} "
                f"was replaced by {record.outbound.session_id}"
            )
        if session.message_index <= record.outbound.ratchet_index:
            # Counting without storing an advanced ratchet would hand the same
            # message key to the next encrypt.
            raise StaleSessionError(
                f"outbound session {session.session_id} is at index {session.message_index}, "
                f"stored copy is at {record.outbound.ratchet_index}; encrypt before counting"
            )

        # Same write as the counter, so a crash cannot leave an old ratchet
        # position next to a bumped counter.
        record.outbound = self._seal_outbound(session)
        record.message_count += 1
        await self._store.put_group_session(record)
        return record.message_count, needs_rotation(record, self._config.now(), self._config)

    async def increment_and_maybe_rotate(
        self, conversation_id: str, session: GroupSession
    ) -> tuple[int, bool]:
        """
        Count one message sent on `session`, the conversation's outbound
        session, and store its advanced ratchet in the same write.

        Call it after every `session.encrypt`. Raises `StaleSessionError` when
        `session` has not moved past the stored copy or is no longer the
        conversation's outbound session. Returns `(message_count, should_rotate)`.
        """

        async with self._locks(conversation_id):
            return await self._increment_locked(conversation_id, session)

    async def encrypt(self, conversation_id: str, plaintext: str) -> GroupEncryption:
        async with self._locks(conversation_id):
            outbound = await self._get_or_create_outbound_locked(conversation_id)
            session = outbound.session
            # Captured before encrypting so recipients can read this message.
            session_key = session.session_key
            ciphertext = session.encrypt(plaintext)
            await self._increment_locked(conversation_id, session)
            return GroupEncryption(
                ciphertext=ciphertext,
                session_id=session.session_id,
                session_key=session_key,
                is_new=outbound.is_new,
            )

    # --- inbound ---

    async def import_inbound(self, conversation_id: str, session_id: str, session_key: str) -> bool:
        """
        Store an inbound session built from `session_key`.

        When a session with the same id is already stored, whichever copy has
        the higher high-water mark is kept. Returns True if the new copy was
        written.
        """

        inbound = self._cipher.create_inbound_group_session(session_key)
        if inbound.session_id != session_id:
            raise MalformedPayload(
                f"session key belongs to session {inbound.session_id}, not {session_id}"
            )

        async with self._locks(conversation_id):
            record = await self._store.get_group_session(conversation_id)
            existing = record.inbound_by_id.get(session_id) if record is not None else None
            if existing is not None and existing.ratchet_index >= inbound.first_known_index:
                logger.debug(
                    "keeping stored inbound session %s (index %d >= imported %d)",
                    session_id,
                    existing.ratchet_index,
                    inbound.first_known_index,
                )
                return False

            await self._store.add_inbound_group_session(
                conversation_id, session_id, self._seal_inbound(inbound, inbound.first_known_index)
            )
            logger.debug(
                "imported inbound session %s for conversation %s at index %d",
                session_id,
                conversation_id,
                inbound.first_known_index,
            )
            return True

    async def decrypt(self, conversation_id: str, session_id: str, ciphertext: str) -> GroupDecryption:
        async with self._locks(conversation_id):
            record = await self._store.get_group_session(conversation_id)
            sealed = record.inbound_by_id.get(session_id) if record is not None else None
            if sealed is None:
                raise NoSessionFound(
                    f"no inbound group session {session_id} for conversation {conversation_id}"
                )

            session = self._cipher.inbound_group_session_from_pickle(
                sealed.pickle, self._pickle_keys.get()
            )
            result = session.decrypt(ciphertext)
            if result.message_index < sealed.ratchet_index:
                raise ReplayedMessage(
                    session_id=session_id,
                    message_index=result.message_index,
                    high_water_mark=sealed.ratchet_index,
                )

            await self._store.add_inbound_group_session(
                conversation_id, session_id, self._seal_inbound(session, result.message_index + 1)
            )
            return result
