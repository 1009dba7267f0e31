from __future__ import annotations

from .aes import aes_decrypt_cbc_pkcs7, aes_decrypt_gcm, aes_encrypt_cbc_pkcs7, aes_encrypt_gcm
from .curve import Curve25519Provider, DefaultCurve25519Provider, KeyPair
from .hkdf import hkdf_sha256, hmac_sha256, sha256

__all__ = [
    "Curve25519Provider",
    "DefaultCurve25519Provider",
    "KeyPair",
    "aes_decrypt_cbc_pkcs7",
    "aes_decrypt_gcm",
    "aes_encrypt_cbc_pkcs7",
    "aes_encrypt_gcm",
    "hkdf_sha256",
    "hmac_sha256",
    "sha256",
]
