"""
Group (Megolm-style) ratchet sessions.

One sender owns an outbound `GroupSession`: a hash-chain ratchet plus an
Ed25519 signing key. Every message advances the ratchet by one, so each
message index has its own key. The sender shares a signed session key
(ratchet position + chain key + public signing key) with each recipient
device over pairwise sessions; recipients build an `InboundGroupSession` from
it and can decrypt every message from that index on.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Any

from ..crypto.aes import aes_decrypt_cbc_pkcs7, aes_encrypt_cbc_pkcs7
from ..crypto.curve import Curve25519Provider, DefaultCurve25519Provider, KeyPair
from ..crypto.hkdf import constant_time_equal, hmac_sha256
from ..util.bytes import b64decode_unpadded, b64encode_unpadded
from .exceptions import MacError, OlmSessionError, SignatureError
from .kdf import INFO_GROUP_MESSAGE_KEYS, kdf_chain, kdf_message_keys
from .messages import MAC_LEN, GroupMessage, SessionKey
from .pickle import seal, unseal

_OUTBOUND_PICKLE_KIND = "group_session"
_INBOUND_PICKLE_KIND = "inbound_group_session"

_MAX_FUTURE_MESSAGES = 2000


@dataclass(frozen=True, slots=True)
class GroupDecryption:
    plaintext: str
    message_index: int


@dataclass(frozen=True, slots=True)
class _Ratchet:
    index: int
    key: bytes

    def next(self) -> _Ratchet:
        next_key, _seed = kdf_chain(self.key)
        return _Ratchet(self.index + 1, next_key)

    def advance_to(self, index: int) -> _Ratchet:
        if index < self.index:
            raise OlmSessionError(f"cannot rewind ratchet from {self.index} to {index}")
        if index - self.index > _MAX_FUTURE_MESSAGES:
            raise OlmSessionError("message index too far in the future")
        r = self
        while r.index < index:
            r = r.next()
        return r

    def message_keys(self) -> tuple[bytes, bytes, bytes]:
        _next_key, seed = kdf_chain(self.key)
        return kdf_message_keys(seed, info=INFO_GROUP_MESSAGE_KEYS)


def _decode_b64(data: str, what: str) -> bytes:
    try:
        return b64decode_unpadded(data)
    except ValueError as e:
        raise OlmSessionError(f"{what} is not valid base64") from e


class GroupSession:
    """Outbound group session owned by the local device."""

    def __init__(
        self,
        *,
        ratchet: _Ratchet,
        signing: KeyPair,
        curve: Curve25519Provider | None = None,
    ) -> None:
        self._ratchet = ratchet
        self._signing = signing
        self._curve = curve or DefaultCurve25519Provider()

    @classmethod
    def create(cls, *, curve: Curve25519Provider | None = None) -> GroupSession:
        c = curve or DefaultCurve25519Provider()
        return cls(ratchet=_Ratchet(0, secrets.token_bytes(32)), signing=c.generate_signing_keypair(), curve=c)

    @property
    def session_id(self) -> str:
        return b64encode_unpadded(self._signing.public)

    @property
    def message_index(self) -> int:
        """Index the next encrypted message will carry."""

        return self._ratchet.index

    @property
    def session_key(self) -> str:
        """Signed key material for the current ratchet position."""

        unsigned = SessionKey(self._ratchet.index, self._ratchet.key, self._signing.public).unsigned_part()
        return b64encode_unpadded(unsigned + self._curve.sign(self._signing.private, unsigned))

    def encrypt(self, plaintext: str) -> str:
        cipher_key, mac_key, iv = self._ratchet.message_keys()
        ct = aes_encrypt_cbc_pkcs7(plaintext.encode("utf-8"), key=cipher_key, iv=iv)

        msg = GroupMessage(message_index=self._ratchet.index, ciphertext=ct)
        mac = hmac_sha256(mac_key, msg.authenticated_part())[:MAC_LEN]
        msg = GroupMessage(msg.message_index, ct, mac)
        signature = self._curve.sign(self._signing.private, msg.signed_part())
        msg = GroupMessage(msg.message_index, ct, mac, signature)

        self._ratchet = self._ratchet.next()
        return b64encode_unpadded(msg.encode())

    def to_state(self) -> dict[str, Any]:
        return {
            "index": self._ratchet.index,
            "key": self._ratchet.key,
            "signing": {"public": self._signing.public, "private": self._signing.private},
        }

    @classmethod
    def from_state(cls, state: dict[str, Any], *, curve: Curve25519Provider | None = None) -> GroupSession:
        return cls(
            ratchet=_Ratchet(int(state["index"]), bytes(state["key"])),
            signing=KeyPair(
                public=bytes(state["signing"]["public"]),
                private=bytes(state["signing"]["private"]),
            ),
            curve=curve,
        )

    def pickle(self, key: bytes) -> str:
        return seal(_OUTBOUND_PICKLE_KIND, self.to_state(), key)

    @classmethod
    def from_pickle(cls, pickle: str, key: bytes, *, curve: Curve25519Provider | None = None) -> GroupSession:
        return cls.from_state(unseal(_OUTBOUND_PICKLE_KIND, pickle, key), curve=curve)


class InboundGroupSession:
    """
    Receiving side of a group session.

    Keeps the ratchet at the first known index (so any later message can be
    decrypted) plus the most recently used position to avoid re-hashing from
    the start on every message. Replay tracking is left to the caller.
    """

    def __init__(
        self,
        *,
        initial: _Ratchet,
        latest: _Ratchet | None = None,
        signing_key: bytes,
        curve: Curve25519Provider | None = None,
    ) -> None:
        self._initial = initial
        self._latest = latest or initial
        self._signing_key = signing_key
        self._curve = curve or DefaultCurve25519Provider()

    @classmethod
    def from_session_key(cls, session_key: str, *, curve: Curve25519Provider | None = None) -> InboundGroupSession:
        c = curve or DefaultCurve25519Provider()
        key = SessionKey.decode(_decode_b64(session_key, "session key"))
        if not c.verify(key.signing_key, key.unsigned_part(), key.signature):
            raise SignatureError("session key signature mismatch")
        return cls(
            initial=_Ratchet(key.message_index, key.chain_key),
            signing_key=key.signing_key,
            curve=c,
        )

    @property
    def session_id(self) -> str:
        return b64encode_unpadded(self._signing_key)

    @property
    def first_known_index(self) -> int:
        return self._initial.index

    def decrypt(self, ciphertext: str) -> GroupDecryption:
        msg = GroupMessage.decode(_decode_b64(ciphertext, "group message"))
        if not self._curve.verify(self._signing_key, msg.signed_part(), msg.signature):
            raise SignatureError("group message signature mismatch")

        index = msg.message_index
        if index < self._initial.index:
            raise OlmSessionError(
                f"message index {index} is before the first known index {self._initial.index}"
            )
        start = self._latest if self._latest.index <= index else self._initial
        ratchet = start.advance_to(index)

        cipher_key, mac_key, iv = ratchet.message_keys()
        expected = hmac_sha256(mac_key, msg.authenticated_part())[:MAC_LEN]
        if not constant_time_equal(expected, msg.mac):
            raise MacError("group message MAC mismatch")
        try:
            plaintext = aes_decrypt_cbc_pkcs7(msg.ciphertext, key=cipher_key, iv=iv).decode("utf-8")
        except ValueError as e:
            raise OlmSessionError(f"could not decrypt group message body: {e}") from e

        self._latest = ratchet
        return GroupDecryption(plaintext=plaintext, message_index=index)

    def to_state(self) -> dict[str, Any]:
        return {
            "initial": [self._initial.index, self._initial.key],
            "latest": [self._latest.index, self._latest.key],
            "signing_key": self._signing_key,
        }

    @classmethod
    def from_state(cls, state: dict[str, Any], *, curve: Curve25519Provider | None = None) -> InboundGroupSession:
        initial = state["initial"]
        latest = state.get("latest") or initial
        return cls(
            initial=_Ratchet(int(initial[0]), bytes(initial[1])),
            latest=_Ratchet(int(latest[0]), bytes(latest[1])),
            signing_key=bytes(state["signing_key"]),
            curve=curve,
        )

    def pickle(self, key: bytes) -> str:
        return seal(_INBOUND_PICKLE_KIND, self.to_state(), key)

    @classmethod
    def from_pickle(
        cls, pickle: str, key: bytes, *, curve: Curve25519Provider | None = None
    ) -> InboundGroupSession:
        return cls.from_state(unseal(_INBOUND_PICKLE_KIND, pickle, key), curve=curve)
