from __future__ import annotations

import hashlib

import pytest

from pye2ee.constants import PASSPHRASE_KDF_ITERATIONS
from pye2ee.olm import Account, PickleError
from pye2ee.pickle_key import PickleKeyProvider


def test_generated_key_is_stable() -> None:
    keys = PickleKeyProvider()
    k1 = keys.get()
    k2 = keys.get()
    assert len(k1) == 32
    assert k1 == k2


def test_wrong_length_key_rejected() -> None:
    with pytest.raises(ValueError):
        PickleKeyProvider(b"short")


def test_passphrase_key_is_deterministic() -> None:
    a = PickleKeyProvider.from_passphrase("correct horse", salt=b"device-1")
    b = PickleKeyProvider.from_passphrase("correct horse", salt=b"device-1")
    c = PickleKeyProvider.from_passphrase("correct horse", salt=b"device-2")

    assert a.get() == b.get()
    assert a.get() != c.get()

    with pytest.raises(ValueError):
        PickleKeyProvider.from_passphrase("correct horse", salt=b"")


def test_passphrase_key_uses_pbkdf2_sha256() -> None:
    # PBKDF2-HMAC-SHA256 test vector (P="password", S="salt", c=4096, dkLen=32).
    keys = PickleKeyProvider.from_passphrase("password", salt=b"salt", iterations=4096)
    assert keys.get().hex() == "c5e478d59288c841aa530db6845c4c8d962893a001ce4e11a4963873aa98134a"

    default = PickleKeyProvider.from_passphrase("correct horse", salt=b"device-1")
    expected = hashlib.pbkdf2_hmac("sha256", b"correct horse", b"device-1", PASSPHRASE_KDF_ITERATIONS, 32)
    assert default.get() == expected
    assert PASSPHRASE_KDF_ITERATIONS >= 100_000


def test_pickle_is_opaque_and_bound_to_key() -> None:
    keys = PickleKeyProvider()
    account = Account.create()
    pickle = account.pickle(keys.get())

    # The private identity key never shows up in the clear.
    assert account.identity_keys.curve25519 not in pickle

    restored = Account.from_pickle(pickle, keys.get())
    assert restored.identity_keys == account.identity_keys

    with pytest.raises(PickleError):
        Account.from_pickle(pickle, PickleKeyProvider().get())
