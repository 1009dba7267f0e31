"""
pye2ee: an asyncio-first end-to-end encryption session layer for chat.

Pairwise ratchet sessions for one-to-one messages, group ratchet sessions for
conversations, key distribution between devices and a message codec that
decides which of them to use.
"""

from __future__ import annotations

from .codec import MessageCodec
from .config import SessionConfig
from .devices import PublishedKeys, provision_device
from .exceptions import ErrorKind, NotReadyError, Pye2eeError, SessionError
from .payload import (
    ClaimedPrekey,
    ConversationKind,
    DecryptResult,
    DeviceInfo,
    EncryptResult,
    MegolmPayload,
    OlmPayload,
    SessionSharePayload,
    payload_from_dict,
)
from .pickle_key import PickleKeyProvider

__all__ = [
    "ClaimedPrekey",
    "ConversationKind",
    "DecryptResult",
    "DeviceInfo",
    "EncryptResult",
    "ErrorKind",
    "MegolmPayload",
    "MessageCodec",
    "NotReadyError",
    "OlmPayload",
    "PickleKeyProvider",
    "Pye2eeError",
    "PublishedKeys",
    "SessionConfig",
    "SessionError",
    "SessionSharePayload",
    "payload_from_dict",
    "provision_device",
]

__version__ = "0.1.0"
