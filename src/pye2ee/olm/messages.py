"""
Binary framing for pairwise and group ratchet messages.

Layouts (all integers big-endian):

- ratchet message: ``version(1) || ratchet_key(32) || counter(4) || previous_counter(4)
  || ciphertext || mac(8)``
- prekey message: ``version(1) || one_time_key(32) || base_key(32) || identity_key(32)
  || ratchet message``
- group message: ``version(1) || message_index(4) || ciphertext || mac(8) || signature(64)``
- session key: ``version(1) || message_index(4) || chain_key(32) || signing_key(32)
  || signature(64)``

The MAC covers everything before it; the group signature covers everything before it.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass

from .exceptions import OlmSessionError

MESSAGE_VERSION = 3
SESSION_KEY_VERSION = 2

KEY_LEN = 32
MAC_LEN = 8
SIGNATURE_LEN = 64

_RATCHET_HEADER = struct.Struct(">B32sII")
_PREKEY_HEADER = struct.Struct(">B32s32s32s")
_GROUP_HEADER = struct.Struct(">BI")
_SESSION_KEY = struct.Struct(">BI32s32s")


@dataclass(frozen=True, slots=True)
class RatchetMessage:
    ratchet_key: bytes
    counter: int
    previous_counter: int
    ciphertext: bytes
    mac: bytes = b""

    def authenticated_part(self) -> bytes:
        return (
            _RATCHET_HEADER.pack(
                MESSAGE_VERSION, self.ratchet_key, self.counter, self.previous_counter
            )
            + self.ciphertext
        )

    def encode(self) -> bytes:
        if len(self.mac) != MAC_LEN:
            raise ValueError("ratchet message MAC must be 8 bytes")
        return self.authenticated_part() + self.mac

    @classmethod
    def decode(cls, data: bytes) -> RatchetMessage:
        if len(data) <= _RATCHET_HEADER.size + MAC_LEN:
            raise OlmSessionError("ratchet message too short")
        version, ratchet_key, counter, previous_counter = _RATCHET_HEADER.unpack_from(data)
        if version != MESSAGE_VERSION:
            raise OlmSessionError(f"unsupported message version: {version}")
        return cls(
            ratchet_key=ratchet_key,
            counter=counter,
            previous_counter=previous_counter,
            ciphertext=bytes(data[_RATCHET_HEADER.size : -MAC_LEN]),
            mac=bytes(data[-MAC_LEN:]),
        )


@dataclass(frozen=True, slots=True)
class PreKeyMessage:
    one_time_key: bytes
    base_key: bytes
    identity_key: bytes
    message: bytes

    def encode(self) -> bytes:
        return (
            _PREKEY_HEADER.pack(
                MESSAGE_VERSION, self.one_time_key, self.base_key, self.identity_key
            )
            + self.message
        )

    @classmethod
    def decode(cls, data: bytes) -> PreKeyMessage:
        if len(data) <= _PREKEY_HEADER.size:
            raise OlmSessionError("prekey message too short")
        version, one_time_key, base_key, identity_key = _PREKEY_HEADER.unpack_from(data)
        if version != MESSAGE_VERSION:
            raise OlmSessionError(f"unsupported message version: {version}")
        return cls(
            one_time_key=one_time_key,
            base_key=base_key,
            identity_key=identity_key,
            message=bytes(data[_PREKEY_HEADER.size :]),
        )


@dataclass(frozen=True, slots=True)
class GroupMessage:
    message_index: int
    ciphertext: bytes
    mac: bytes = b""
    signature: bytes = b""

    def authenticated_part(self) -> bytes:
        return _GROUP_HEADER.pack(MESSAGE_VERSION, self.message_index) + self.ciphertext

    def signed_part(self) -> bytes:
        return self.authenticated_part() + self.mac

    def encode(self) -> bytes:
        if len(self.mac) != MAC_LEN or len(self.signature) != SIGNATURE_LEN:
            raise ValueError("group message is missing its MAC or signature")
        return self.signed_part() + self.signature

    @classmethod
    def decode(cls, data: bytes) -> GroupMessage:
        if len(data) <= _GROUP_HEADER.size + MAC_LEN + SIGNATURE_LEN:
            raise OlmSessionError("group message too short")
        version, message_index = _GROUP_HEADER.unpack_from(data)
        if version != MESSAGE_VERSION:
            raise OlmSessionError(f"unsupported message version: {version}")
        return cls(
            message_index=message_index,
            ciphertext=bytes(data[_GROUP_HEADER.size : -(MAC_LEN + SIGNATURE_LEN)]),
            mac=bytes(data[-(MAC_LEN + SIGNATURE_LEN) : -SIGNATURE_LEN]),
            signature=bytes(data[-SIGNATURE_LEN:]),
        )


@dataclass(frozen=True, slots=True)
class SessionKey:
    message_index: int
    chain_key: bytes
    signing_key: bytes
    signature: bytes = b""

    def unsigned_part(self) -> bytes:
        return _SESSION_KEY.pack(SESSION_KEY_VERSION, self.message_index, self.chain_key, self.signing_key)

    def encode(self) -> bytes:
        return self.unsigned_part() + self.signature

    @classmethod
    def decode(cls, data: bytes) -> SessionKey:
        if len(data) < _SESSION_KEY.size:
            raise OlmSessionError("session key too short")
        version, index, chain_key, signing_key = _SESSION_KEY.unpack_from(data)
        if version != SESSION_KEY_VERSION:
            raise OlmSessionError(f"unsupported session key version: {version}")
        if len(data) != _SESSION_KEY.size + SIGNATURE_LEN:
            raise OlmSessionError("invalid session key length")
        return cls(index, chain_key, signing_key, bytes(data[_SESSION_KEY.size :]))
