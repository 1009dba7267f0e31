from __future__ import annotations


class CipherError(Exception):
    """Base error for ratchet cryptography failures."""


class OlmSessionError(CipherError):
    """Pairwise or group session failure (bad message, unknown index, ...)."""


class MacError(CipherError):
    """Message authentication code mismatch."""


class SignatureError(CipherError):
    """Ed25519 signature verification failure."""


class PickleError(CipherError):
    """A pickle could not be unsealed (wrong key, wrong kind or corrupted)."""


class UnknownOneTimeKey(CipherError):
    """A prekey message referenced a one-time key this account does not hold."""
