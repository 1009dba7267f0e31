from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Union

from .cipher import CipherLibrary, OlmCipherLibrary
from .config import SessionConfig
from .distributor import KeyDistributor
from .exceptions import DecryptionFailed, ErrorKind, MalformedPayload, NotReadyError, SessionError
from .group import GroupSessionManager
from .olm import MESSAGE_TYPE_NORMAL, MESSAGE_TYPE_PREKEY, CipherError, OlmMessage
from .pairwise import ClaimPrekey, PairwiseSessionManager
from .payload import (
    ConversationKind,
    DecryptResult,
    DeviceInfo,
    EncryptedMessagePayload,
    EncryptResult,
    MegolmPayload,
    OlmPayload,
    payload_from_dict,
)
from .pickle_key import PickleKeyProvider
from .store.base import SessionStore

logger = logging.getLogger(__name__)

PayloadLike = Union[EncryptedMessagePayload, Mapping[str, Any]]


def _parse_json_object(data: str, what: str) -> dict[str, Any]:
    try:
        obj = json.loads(data)
    except (TypeError, ValueError) as e:
        raise MalformedPayload(f"{what} is not valid JSON") from e
    if not isinstance(obj, dict):
        raise MalformedPayload(f"{what} must be a JSON object")
    return obj


class MessageCodec:
    """
    Top-level encrypt/decrypt entry point for chat messages.

    Picks a pairwise session for a direct conversation with a single device
    and the conversation's group session otherwise, distributing new group
    keys as they are minted. Recoverable failures come back as tagged
    results; only `NotReadyError` (no local account) is raised.
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
        self._config = config or SessionConfig()
        cipher = cipher or OlmCipherLibrary()
        self.pairwise = PairwiseSessionManager(store, pickle_keys, cipher=cipher, config=self._config)
        self.group = GroupSessionManager(store, pickle_keys, cipher=cipher, config=self._config)
        self.distributor = KeyDistributor(self.pairwise)

    # --- local device ---

    async def is_ready(self) -> bool:
        return await self._store.get_account() is not None

    async def current_device_id(self) -> str | None:
        return await self.pairwise.device_id()

    async def device_identity_key(self) -> str | None:
        if not await self.is_ready():
            return None
        _stored, account = await self.pairwise.load_account()
        return account.identity_keys.curve25519

    async def _require_account(self) -> None:
        if not await self.is_ready():
            raise NotReadyError("no local account; provision this device first")

    async def _local_identity(self) -> tuple[str, str]:
        stored, account = await self.pairwise.load_account()
        return stored.device_id, account.identity_keys.curve25519

    async def replenish_one_time_keys(self, count: int | None = None) -> dict[str, str]:
        return await self.pairwise.replenish_one_time_keys(
            self._config.one_time_key_count if count is None else count
        )

    # --- encrypt ---

    async def encrypt(
        self,
        conversation_id: str,
        plaintext: str,
        kind: ConversationKind | str,
        recipient_devices: Sequence[DeviceInfo],
        claim_prekey: ClaimPrekey,
    ) -> EncryptResult:
        kind = ConversationKind(kind)
        if kind is ConversationKind.DIRECT and not recipient_devices:
            raise ValueError("a direct conversation needs at least one recipient device")

        device_id, identity_key = await self._local_identity()
        try:
            if kind is ConversationKind.DIRECT and len(recipient_devices) == 1:
                return await self._encrypt_direct(
                    device_id, identity_key, plaintext, recipient_devices[0], claim_prekey
                )
            return await self._encrypt_group(
                conversation_id, device_id, identity_key, plaintext, recipient_devices, claim_prekey
            )
        except SessionError as e:
            logger.warning("encrypt failed for conversation %s: %s", conversation_id, e)
            return EncryptResult(success=False, error=e.kind, detail=str(e))
        except CipherError as e:
            logger.warning("cipher failure encrypting for conversation %s: %s", conversation_id, e)
            return EncryptResult(success=False, error=ErrorKind.DECRYPTION_FAILED, detail=str(e))

    async def _encrypt_direct(
        self,
        device_id: str,
        identity_key: str,
        plaintext: str,
        recipient: DeviceInfo,
        claim_prekey: ClaimPrekey,
    ) -> EncryptResult:
        message = await self.pairwise.encrypt(recipient, plaintext, claim_prekey)
        return EncryptResult(
            success=True,
            payload=OlmPayload(
                ciphertext=message.body,
                sender_device_id=device_id,
                sender_key=identity_key,
                olm_message_type=message.type,
            ),
        )

    async def _encrypt_group(
        self,
        conversation_id: str,
        device_id: str,
        identity_key: str,
        plaintext: str,
        recipient_devices: Iterable[DeviceInfo],
        claim_prekey: ClaimPrekey,
    ) -> EncryptResult:
        encrypted = await self.group.encrypt(conversation_id, plaintext)
        payload = MegolmPayload(
            ciphertext=encrypted.ciphertext,
            sender_device_id=device_id,
            sender_key=identity_key,
            session_id=encrypted.session_id,
        )
        if not encrypted.is_new:
            return EncryptResult(success=True, payload=payload)

        outcome = await self.distributor.share(
            conversation_id,
            encrypted.session_id,
            encrypted.session_key,
            recipient_devices,
            claim_prekey,
        )
        return EncryptResult(success=True, payload=payload, session_shares=outcome.shares)

    # --- decrypt ---

    async def decrypt(self, conversation_id: str, payload: PayloadLike) -> DecryptResult:
        await self._require_account()
        try:
            if not isinstance(payload, (OlmPayload, MegolmPayload)):
                payload = payload_from_dict(payload)
            if isinstance(payload, OlmPayload):
                plaintext = await self.pairwise.process_inbound(
                    payload.sender_device_id, payload.sender_key, payload.to_message()
                )
                return DecryptResult(success=True, plaintext=plaintext)

            if not payload.session_id:
                raise MalformedPayload("group payload is missing sessionId")
            result = await self.group.decrypt(conversation_id, payload.session_id, payload.ciphertext)
            return DecryptResult(
                success=True,
                plaintext=result.plaintext,
                session_id=payload.session_id,
                message_index=result.message_index,
            )
        except NotReadyError:
            raise
        except SessionError as e:
            logger.warning("decrypt failed for conversation %s: %s", conversation_id, e)
            return DecryptResult(success=False, error=e.kind, detail=str(e))
        except Exception as e:
            logger.warning(
                "decrypt failed for conversation %s", conversation_id, exc_info=True
            )
            return DecryptResult(success=False, error=ErrorKind.DECRYPTION_FAILED, detail=str(e))

    async def decrypt_many(
        self, conversation_id: str, payloads: Iterable[PayloadLike]
    ) -> list[DecryptResult]:
        return [await self.decrypt(conversation_id, p) for p in payloads]

    # --- key shares ---

    async def process_session_share(
        self,
        conversation_id: str,
        sender_device_id: str,
        sender_identity_key: str,
        encrypted_session_key: str,
    ) -> None:
        """
        Unwrap a group session key sent over a pairwise session and import it.

        Raises `MalformedPayload` for a share or envelope that does not parse,
        and the other `SessionError` kinds when unwrapping fails.
        """

        await self._require_account()
        wrapped = _parse_json_object(encrypted_session_key, "session share")
        t = wrapped.get("type")
        body = wrapped.get("body")
        if isinstance(t, bool) or t not in (MESSAGE_TYPE_PREKEY, MESSAGE_TYPE_NORMAL):
            raise MalformedPayload(f"invalid session share message type: {t!r}")
        if not isinstance(body, str) or not body:
            raise MalformedPayload("session share body must be a non-empty string")

        try:
            plaintext = await self.pairwise.process_inbound(
                sender_device_id, sender_identity_key, OlmMessage(type=t, body=body)
            )
        except CipherError as e:
            raise DecryptionFailed(f"could not unwrap session share: {e}") from e

        envelope = _parse_json_object(plaintext, "session share envelope")
        session_id = envelope.get("sessionId")
        session_key = envelope.get("sessionKey")
        if not isinstance(session_id, str) or not isinstance(session_key, str):
            raise MalformedPayload("session share envelope needs sessionId and sessionKey")

        try:
            await self.group.import_inbound(conversation_id, session_id, session_key)
        except CipherError as e:
            raise MalformedPayload(f"session key for {session_id} is invalid: {e}") from e
