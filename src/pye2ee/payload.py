"""
Wire-visible payload types.

`EncryptedMessagePayload` is a closed union of `OlmPayload` and
`MegolmPayload`. Its dict form is the only bit-exact external contract of the
package::

    {"algorithm": "olm.v1", "ciphertext": ..., "senderDeviceId": ...,
     "senderKey": ..., "olmMessageType": 0 | 1}
    {"algorithm": "megolm.v1", "ciphertext": ..., "senderDeviceId": ...,
     "senderKey": ..., "sessionId": ...}
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, TypeAlias, Union

from .constants import ALGORITHM_MEGOLM, ALGORITHM_OLM
from .exceptions import ErrorKind, MalformedPayload
from .olm import MESSAGE_TYPE_NORMAL, MESSAGE_TYPE_PREKEY, OlmMessage


class ConversationKind(str, Enum):
    DIRECT = "direct"
    GROUP = "group"


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    user_id: str
    device_id: str
    identity_key: str  # Curve25519, unpadded base64


@dataclass(frozen=True, slots=True)
class ClaimedPrekey:
    key_id: str | int
    public_key: str


@dataclass(frozen=True, slots=True)
class OlmPayload:
    ciphertext: str
    sender_device_id: str
    sender_key: str
    olm_message_type: int | None = None

    algorithm = ALGORITHM_OLM

    def to_message(self) -> OlmMessage:
        # A missing type means the sender only ever sends normal messages.
        t = MESSAGE_TYPE_NORMAL if self.olm_message_type is None else self.olm_message_type
        return OlmMessage(type=t, body=self.ciphertext)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "algorithm": ALGORITHM_OLM,
            "ciphertext": self.ciphertext,
            "senderDeviceId": self.sender_device_id,
            "senderKey": self.sender_key,
        }
        if self.olm_message_type is not None:
            d["olmMessageType"] = self.olm_message_type
        return d


@dataclass(frozen=True, slots=True)
class MegolmPayload:
    ciphertext: str
    sender_device_id: str
    sender_key: str
    session_id: str | None

    algorithm = ALGORITHM_MEGOLM

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "algorithm": ALGORITHM_MEGOLM,
            "ciphertext": self.ciphertext,
            "senderDeviceId": self.sender_device_id,
            "senderKey": self.sender_key,
        }
        if self.session_id is not None:
            d["sessionId"] = self.session_id
        return d


EncryptedMessagePayload: TypeAlias = Union[OlmPayload, MegolmPayload]


def _require_str(d: Mapping[str, Any], name: str) -> str:
    v = d.get(name)
    if not isinstance(v, str) or not v:
        raise MalformedPayload(f"payload field {name!r} must be a non-empty string")
    return v


def payload_from_dict(d: Mapping[str, Any]) -> EncryptedMessagePayload:
    """Parse the wire form of a payload. Unknown algorithms are rejected, never guessed."""

    if not isinstance(d, Mapping):
        raise MalformedPayload("payload must be an object")
    algorithm = d.get("algorithm")
    if algorithm == ALGORITHM_OLM:
        t = d.get("olmMessageType")
        if t is not None and (isinstance(t, bool) or t not in (MESSAGE_TYPE_PREKEY, MESSAGE_TYPE_NORMAL)):
            raise MalformedPayload(f"invalid olmMessageType: {t!r}")
        return OlmPayload(
            ciphertext=_require_str(d, "ciphertext"),
            sender_device_id=_require_str(d, "senderDeviceId"),
            sender_key=_require_str(d, "senderKey"),
            olm_message_type=t,
        )
    if algorithm == ALGORITHM_MEGOLM:
        session_id = d.get("sessionId")
        if session_id is not None and not isinstance(session_id, str):
            raise MalformedPayload("payload field 'sessionId' must be a string")
        return MegolmPayload(
            ciphertext=_require_str(d, "ciphertext"),
            sender_device_id=_require_str(d, "senderDeviceId"),
            sender_key=_require_str(d, "senderKey"),
            session_id=session_id or None,
        )
    raise MalformedPayload(f"unknown encryption algorithm: {algorithm!r}")


@dataclass(frozen=True, slots=True)
class SessionSharePayload:
    recipient_user_id: str
    recipient_device_id: str
    encrypted_session_key: str  # JSON: {"type": 0|1, "body": "..."}

    def to_dict(self) -> dict[str, Any]:
        return {
            "recipientUserId": self.recipient_user_id,
            "recipientDeviceId": self.recipient_device_id,
            "encryptedSessionKey": self.encrypted_session_key,
        }


@dataclass(frozen=True, slots=True)
class EncryptResult:
    success: bool
    payload: EncryptedMessagePayload | None = None
    session_shares: list[SessionSharePayload] | None = None
    error: ErrorKind | None = None
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class DecryptResult:
    success: bool
    plaintext: str = ""
    error: ErrorKind | None = None
    detail: str | None = None
    session_id: str | None = None
    message_index: int | None = None

    @property
    def placeholder(self) -> str:
        """Text to render in place of a message that could not be decrypted."""

        return self.plaintext if self.success else "Unable to decrypt this message."


@dataclass(slots=True)
class ShareOutcome:
    shares: list[SessionSharePayload] = field(default_factory=list)
    failed: dict[str, ErrorKind] = field(default_factory=dict)
