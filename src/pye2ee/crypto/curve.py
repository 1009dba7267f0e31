from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey


@dataclass(slots=True)
class KeyPair:
    public: bytes
    private: bytes


class Curve25519Provider(Protocol):
    def generate_keypair(self) -> KeyPair: ...

    def shared_key(self, private_key: bytes, public_key: bytes) -> bytes: ...

    def generate_signing_keypair(self) -> KeyPair: ...

    def sign(self, private_key: bytes, message: bytes) -> bytes: ...

    def verify(self, public_key: bytes, message: bytes, signature: bytes) -> bool: ...


def _raw_private(key: X25519PrivateKey | Ed25519PrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PrivateFormat.Raw,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _raw_public(key: X25519PublicKey | Ed25519PublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )


class DefaultCurve25519Provider:
    """
    X25519 key agreement and Ed25519 signatures via `cryptography`.

    All keys are raw 32-byte values; signatures are 64 bytes.
    """

    def generate_keypair(self) -> KeyPair:
        priv = X25519PrivateKey.generate()
        return KeyPair(private=_raw_private(priv), public=_raw_public(priv.public_key()))

    def shared_key(self, private_key: bytes, public_key: bytes) -> bytes:
        priv = X25519PrivateKey.from_private_bytes(private_key)
        pub = X25519PublicKey.from_public_bytes(public_key)
        return priv.exchange(pub)

    def generate_signing_keypair(self) -> KeyPair:
        priv = Ed25519PrivateKey.generate()
        return KeyPair(private=_raw_private(priv), public=_raw_public(priv.public_key()))

    def sign(self, private_key: bytes, message: bytes) -> bytes:
        return Ed25519PrivateKey.from_private_bytes(private_key).sign(message)

    def verify(self, public_key: bytes, message: bytes, signature: bytes) -> bool:
        try:
            Ed25519PublicKey.from_public_bytes(public_key).verify(signature, message)
        except (InvalidSignature, ValueError):
            return False
        return True
