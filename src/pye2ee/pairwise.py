from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from .cipher import CipherLibrary, OlmCipherLibrary
from .config import SessionConfig
from .exceptions import NoSessionFound, NotReadyError, PrekeyUnavailable, StaleSessionError
from .olm import MESSAGE_TYPE_PREKEY, Account, OlmMessage, Session
from .payload import ClaimedPrekey, DeviceInfo
from .pickle_key import PickleKeyProvider
from .store.base import SealedSession, SessionStore, StoredAccount
from .util.asyncio import store_locks

logger = logging.getLogger(__name__)

ClaimPrekey = Callable[[str, str], Awaitable[ClaimedPrekey | None]]

_ACCOUNT_LOCK = "account"


class PairwiseSessionManager:
    """
    Creates, loads and advances one-to-one ratchet sessions.

    Every operation on a device's session runs under that device's lock and
    persists the advanced session before returning, so a retry after a later
    failure never rewinds the ratchet.
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
        self._locks = store_locks(store, "device")
        self._account_locks = store_locks(store, "account")

    # --- account ---

    async def load_account(self) -> tuple[StoredAccount, Account]:
        stored = await self._store.get_account()
        if stored is None:
            raise NotReadyError("no local account; provision this device first")
        return stored, self._cipher.account_from_pickle(stored.pickle, self._pickle_keys.get())

    async def device_id(self) -> str | None:
        stored = await self._store.get_account()
        return stored.device_id if stored is not None else None

    async def _save_account(self, stored: StoredAccount, account: Account) -> None:
        stored.pickle = account.pickle(self._pickle_keys.get())
        await self._store.put_account(stored)

    async def replenish_one_time_keys(self, count: int) -> dict[str, str]:
        """Generate `count` new one-time keys, mark them published and return them."""

        async with self._account_locks(_ACCOUNT_LOCK):
            stored, account = await self.load_account()
            account.generate_one_time_keys(count)
            keys = account.one_time_keys
            account.mark_keys_as_published()
            await self._save_account(stored, account)
        logger.debug("generated %d one-time keys", len(keys))
        return keys

    # --- sessions ---

    async def _load_session(self, device_id: str) -> tuple[SealedSession, Session] | None:
        sealed = await self._store.get_pairwise_session(device_id)
        if sealed is None:
            return None
        return sealed, self._cipher.session_from_pickle(sealed.pickle, self._pickle_keys.get())

    async def _persist(self, device_id: str, session: Session, identity_key: str | None) -> None:
        current = await self._store.get_pairwise_session(device_id)
        if (
            current is not None
            and current.session_id == session.session_id
            and current.ratchet_index > session.ratchet_index
        ):
            raise StaleSessionError(
                f"refusing to rewind session {session.session_id} for device {device_id} "
                f"from ratchet index {current.ratchet_index} to {session.ratchet_index}"
            )
        await self._store.put_pairwise_session(
            device_id,
            SealedSession(
                pickle=session.pickle(self._pickle_keys.get()),
                session_id=session.session_id,
                ratchet_index=session.ratchet_index,
                identity_key=identity_key,
                updated_at=self._config.now(),
            ),
        )

    async def _get_or_create_outbound_locked(
        self, recipient: DeviceInfo, claim_prekey: ClaimPrekey
    ) -> Session:
        loaded = await self._load_session(recipient.device_id)
        if loaded is not None:
            logger.debug("using stored pairwise session for device %s", recipient.device_id)
            return loaded[1]

        # The device lock stays held across the claim so a concurrent send to
        # the same device cannot build a second, divergent session.
        prekey = await claim_prekey(recipient.user_id, recipient.device_id)
        if prekey is None:
            logger.warning(
                "no prekey available for %s/%s", recipient.user_id, recipient.device_id
            )
            raise PrekeyUnavailable(user_id=recipient.user_id, device_id=recipient.device_id)

        _stored, account = await self.load_account()
        session = account.create_outbound_session(recipient.identity_key, prekey.public_key)
        await self._persist(recipient.device_id, session, recipient.identity_key)
        logger.debug(
            "created outbound pairwise session %s for device %s (prekey %s)",
            session.session_id,
            recipient.device_id,
            prekey.key_id,
        )
        return session

    async def get_or_create_outbound(self, recipient: DeviceInfo, claim_prekey: ClaimPrekey) -> Session:
        async with self._locks(recipient.device_id):
            return await self._get_or_create_outbound_locked(recipient, claim_prekey)

    async def encrypt(self, recipient: DeviceInfo, plaintext: str, claim_prekey: ClaimPrekey) -> OlmMessage:
        async with self._locks(recipient.device_id):
            session = await self._get_or_create_outbound_locked(recipient, claim_prekey)
            message = session.encrypt(plaintext)
            await self._persist(recipient.device_id, session, recipient.identity_key)
            return message

    async def process_inbound(
        self, sender_device_id: str, sender_identity_key: str, message: OlmMessage
    ) -> str:
        async with self._locks(sender_device_id):
            loaded = await self._load_session(sender_device_id)

            if message.type == MESSAGE_TYPE_PREKEY:
                if loaded is not None and loaded[1].matches_inbound(message.body):
                    # Peer has not seen a reply yet and keeps wrapping messages
                    # for the session we already built.
                    session = loaded[1]
                    plaintext = session.decrypt(message)
                else:
                    session, plaintext = await self._create_inbound(sender_identity_key, message)
                    logger.debug(
                        "created inbound pairwise session %s for device %s",
                        session.session_id,
                        sender_device_id,
                    )
            else:
                if loaded is None:
                    raise NoSessionFound(f"no pairwise session for device {sender_device_id}")
                sealed, session = loaded
                if sealed.identity_key and sealed.identity_key != sender_identity_key:
                    raise NoSessionFound(
                        f"stored session for device {sender_device_id} belongs to another identity key"
                    )
                plaintext = session.decrypt(message)

            await self._persist(sender_device_id, session, sender_identity_key)
            return plaintext

    async def _create_inbound(self, sender_identity_key: str, message: OlmMessage) -> tuple[Session, str]:
        async with self._account_locks(_ACCOUNT_LOCK):
            stored, account = await self.load_account()
            session, plaintext = account.create_inbound_session(sender_identity_key, message.body)
            account.remove_one_time_keys(session)
            await self._save_account(stored, account)
        return session, plaintext
