from __future__ import annotations

import json
import logging
from collections.abc import Iterable

from .exceptions import ErrorKind, SessionError
from .olm import CipherError
from .pairwise import ClaimPrekey, PairwiseSessionManager
from .payload import DeviceInfo, SessionSharePayload, ShareOutcome

logger = logging.getLogger(__name__)


def encode_session_envelope(session_id: str, session_key: str) -> str:
    return json.dumps({"sessionId": session_id, "sessionKey": session_key}, separators=(",", ":"))


class KeyDistributor:
    """
    Fans a group session key out to recipient devices over their pairwise
    sessions, creating those sessions on demand.
    """

    def __init__(self, pairwise: PairwiseSessionManager) -> None:
        self._pairwise = pairwise

    async def share(
        self,
        conversation_id: str,
        session_id: str,
        session_key: str,
        recipient_devices: Iterable[DeviceInfo],
        claim_prekey: ClaimPrekey,
    ) -> ShareOutcome:
        """
        Encrypt the session key for every device. A device that fails is
        recorded in `ShareOutcome.failed` and skipped; the rest still get the key.
        """

        own_device_id = await self._pairwise.device_id()
        envelope = encode_session_envelope(session_id, session_key)
        outcome = ShareOutcome()

        for device in recipient_devices:
            if device.device_id == own_device_id:
                continue
            try:
                message = await self._pairwise.encrypt(device, envelope, claim_prekey)
            except SessionError as e:
                logger.warning(
                    "could not share session %s with %s/%s: %s",
                    session_id,
                    device.user_id,
                    device.device_id,
                    e,
                )
                outcome.failed[device.device_id] = e.kind
                continue
            except CipherError as e:
                logger.warning(
                    "cipher failure sharing session %s with %s/%s: %s",
                    session_id,
                    device.user_id,
                    device.device_id,
                    e,
                )
                outcome.failed[device.device_id] = ErrorKind.DECRYPTION_FAILED
                continue

            outcome.shares.append(
                SessionSharePayload(
                    recipient_user_id=device.user_id,
                    recipient_device_id=device.device_id,
                    encrypted_session_key=json.dumps(message.to_dict(), separators=(",", ":")),
                )
            )

        logger.info(
            "shared session %s for conversation %s with %d device(s), %d failed",
            session_id,
            conversation_id,
            len(outcome.shares),
            len(outcome.failed),
        )
        return outcome

    async def share_session_key(
        self,
        conversation_id: str,
        session_id: str,
        session_key: str,
        recipient_devices: Iterable[DeviceInfo],
        claim_prekey: ClaimPrekey,
    ) -> list[SessionSharePayload]:
        outcome = await self.share(
            conversation_id, session_id, session_key, recipient_devices, claim_prekey
        )
        return outcome.shares
