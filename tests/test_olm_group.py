from __future__ import annotations

import pytest

from pye2ee.olm import GroupSession, InboundGroupSession, OlmSessionError, SignatureError


def test_group_encrypt_decrypt_in_order_and_out_of_order() -> None:
    outbound = GroupSession.create()
    inbound = InboundGroupSession.from_session_key(outbound.session_key)
    assert inbound.session_id == outbound.session_id
    assert inbound.first_known_index == 0

    c0 = outbound.encrypt("zero")
    c1 = outbound.encrypt("one")
    c2 = outbound.encrypt("two")
    assert outbound.message_index == 3

    r2 = inbound.decrypt(c2)
    assert (r2.plaintext, r2.message_index) == ("two", 2)
    # Older messages stay decryptable from the initial ratchet.
    assert inbound.decrypt(c0).plaintext == "zero"
    assert inbound.decrypt(c1).message_index == 1


def test_late_joiner_cannot_read_history() -> None:
    outbound = GroupSession.create()
    early = outbound.encrypt("before you joined")

    inbound = InboundGroupSession.from_session_key(outbound.session_key)
    assert inbound.first_known_index == 1

    with pytest.raises(OlmSessionError):
        inbound.decrypt(early)
    assert inbound.decrypt(outbound.encrypt("welcome")).plaintext == "welcome"


def test_forged_session_key_rejected() -> None:
    outbound = GroupSession.create()
    other = GroupSession.create()
    inbound = InboundGroupSession.from_session_key(outbound.session_key)

    # Signed by a different session's key.
    with pytest.raises(SignatureError):
        inbound.decrypt(other.encrypt("not from this sender"))


def test_late_session_key_starts_at_its_index() -> None:
    outbound = GroupSession.create()
    early = outbound.encrypt("m0")
    for i in range(1, 3):
        outbound.encrypt(f"m{i}")

    inbound = InboundGroupSession.from_session_key(outbound.session_key)
    assert inbound.first_known_index == 3
    assert inbound.decrypt(outbound.encrypt("m3")).plaintext == "m3"
    with pytest.raises(OlmSessionError):
        inbound.decrypt(early)


def test_group_pickle_roundtrip() -> None:
    key = b"p" * 32
    outbound = GroupSession.create()
    inbound = InboundGroupSession.from_session_key(outbound.session_key)
    outbound.encrypt("advance")

    outbound2 = GroupSession.from_pickle(outbound.pickle(key), key)
    assert outbound2.session_id == outbound.session_id
    assert outbound2.message_index == 1

    inbound2 = InboundGroupSession.from_pickle(inbound.pickle(key), key)
    assert inbound2.decrypt(outbound2.encrypt("after")).message_index == 1
