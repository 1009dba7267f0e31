from __future__ import annotations

import secrets

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .constants import PASSPHRASE_KDF_ITERATIONS, PICKLE_KEY_LEN


class PickleKeyProvider:
    """
    Holds the symmetric key that seals every persisted account and session.

    A key passed in is used as-is; otherwise a random one is generated on the
    first `get()` and kept in memory for the lifetime of the provider. The
    provider never writes the key anywhere: persisting it is the caller's job.
    """

    def __init__(self, key: bytes | None = None) -> None:
        if key is not None and len(key) != PICKLE_KEY_LEN:
            raise ValueError(f"pickle key must be {PICKLE_KEY_LEN} bytes")
        self._key = bytes(key) if key is not None else None

    @classmethod
    def from_passphrase(
        cls, passphrase: str, *, salt: bytes, iterations: int = PASSPHRASE_KDF_ITERATIONS
    ) -> PickleKeyProvider:
        """Derive the key from a passphrase with PBKDF2-HMAC-SHA256."""

        if not salt:
            raise ValueError("salt is required")
        if iterations < 1:
            raise ValueError("iterations must be >= 1")
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=PICKLE_KEY_LEN, salt=salt, iterations=iterations)
        return cls(kdf.derive(passphrase.encode("utf-8")))

    def get(self) -> bytes:
        if self._key is None:
            self._key = secrets.token_bytes(PICKLE_KEY_LEN)
        return self._key
