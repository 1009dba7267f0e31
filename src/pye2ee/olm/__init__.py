"""
Ratchet cryptography: accounts, pairwise sessions and group sessions.

Built directly on `cryptography` (X25519, Ed25519, AES, HMAC-SHA256). Every
object can be pickled: serialized and sealed with AES-256-GCM under a 32-byte
pickle key.
"""

from __future__ import annotations

from .account import Account, IdentityKeys
from .exceptions import (
    CipherError,
    MacError,
    OlmSessionError,
    PickleError,
    SignatureError,
    UnknownOneTimeKey,
)
from .group import GroupDecryption, GroupSession, InboundGroupSession
from .session import MESSAGE_TYPE_NORMAL, MESSAGE_TYPE_PREKEY, OlmMessage, Session

__all__ = [
    "MESSAGE_TYPE_NORMAL",
    "MESSAGE_TYPE_PREKEY",
    "Account",
    "CipherError",
    "GroupDecryption",
    "GroupSession",
    "IdentityKeys",
    "InboundGroupSession",
    "MacError",
    "OlmMessage",
    "OlmSessionError",
    "PickleError",
    "Session",
    "SignatureError",
    "UnknownOneTimeKey",
]
