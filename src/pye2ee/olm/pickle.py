from __future__ import annotations

import secrets
from typing import Any

from cryptography.exceptions import InvalidTag

from ..crypto.aes import aes_decrypt_gcm, aes_encrypt_gcm
from ..util import json as bufferjson
from ..util.bytes import b64decode_unpadded, b64encode_unpadded
from .exceptions import PickleError

PICKLE_KEY_LEN = 32
_NONCE_LEN = 12
_AAD_PREFIX = b"pye2ee.pickle:"


def _check_key(key: bytes) -> None:
    if len(key) != PICKLE_KEY_LEN:
        raise PickleError("pickle key must be 32 bytes")


def seal(kind: str, state: dict[str, Any], key: bytes) -> str:
    """
    Serialize `state` and seal it with AES-256-GCM under `key`.

    `kind` is bound in as associated data so an account pickle can never be
    unsealed as a session (and vice versa).
    """

    _check_key(key)
    nonce = secrets.token_bytes(_NONCE_LEN)
    ct = aes_encrypt_gcm(
        bufferjson.dumps(state).encode("utf-8"),
        key=key,
        iv=nonce,
        aad=_AAD_PREFIX + kind.encode("ascii"),
    )
    return b64encode_unpadded(nonce + ct)


def unseal(kind: str, pickle: str, key: bytes) -> dict[str, Any]:
    _check_key(key)
    try:
        raw = b64decode_unpadded(pickle)
    except ValueError as e:
        raise PickleError(f"invalid {kind} pickle encoding") from e
    if len(raw) <= _NONCE_LEN:
        raise PickleError(f"{kind} pickle too short")
    try:
        plain = aes_decrypt_gcm(
            raw[_NONCE_LEN:],
            key=key,
            iv=raw[:_NONCE_LEN],
            aad=_AAD_PREFIX + kind.encode("ascii"),
        )
    except InvalidTag as e:
        raise PickleError(f"{kind} pickle authentication failed (wrong key?)") from e
    state = bufferjson.loads(plain.decode("utf-8"))
    if not isinstance(state, dict):
        raise PickleError(f"{kind} pickle did not contain an object")
    return state
