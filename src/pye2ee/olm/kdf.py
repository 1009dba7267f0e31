from __future__ import annotations

from ..crypto.hkdf import hkdf_sha256, hmac_sha256

# Derivation labels.
INFO_ROOT = b"OLM_ROOT"
INFO_RATCHET = b"OLM_RATCHET"
INFO_MESSAGE_KEYS = b"OLM_KEYS"
INFO_GROUP_MESSAGE_KEYS = b"MEGOLM_KEYS"

# Chain key derivation constants.
_MESSAGE_KEY_SEED = b"\x01"
_CHAIN_KEY_SEED = b"\x02"


def kdf_root_secret(shared_secret: bytes) -> tuple[bytes, bytes]:
    """
    Derive (root_key, chain_key) from the triple Diffie-Hellman secret.
    """

    derived = hkdf_sha256(ikm=shared_secret, length=64, salt=b"", info=INFO_ROOT)
    return derived[:32], derived[32:]


def kdf_ratchet(root_key: bytes, dh_out: bytes) -> tuple[bytes, bytes]:
    """
    Derive (new_root_key, chain_key) for a Diffie-Hellman ratchet step.
    """

    derived = hkdf_sha256(ikm=dh_out, length=64, salt=root_key, info=INFO_RATCHET)
    return derived[:32], derived[32:]


def kdf_chain(chain_key: bytes) -> tuple[bytes, bytes]:
    """
    Derive (next_chain_key, message_key_seed) from a chain key.
    """

    message_key_seed = hmac_sha256(chain_key, _MESSAGE_KEY_SEED)
    next_chain_key = hmac_sha256(chain_key, _CHAIN_KEY_SEED)
    return next_chain_key, message_key_seed


def kdf_message_keys(message_key_seed: bytes, *, info: bytes = INFO_MESSAGE_KEYS) -> tuple[bytes, bytes, bytes]:
    """
    Derive (cipher_key, mac_key, iv) from a message key seed: 32/32/16 bytes.
    """

    mk = hkdf_sha256(ikm=message_key_seed, length=80, salt=b"", info=info)
    return mk[:32], mk[32:64], mk[64:80]
