from __future__ import annotations

import pytest

from pye2ee.exceptions import ErrorKind, MalformedPayload
from pye2ee.olm import MESSAGE_TYPE_NORMAL
from pye2ee.payload import (
    DecryptResult,
    MegolmPayload,
    OlmPayload,
    SessionSharePayload,
    payload_from_dict,
)


def test_olm_payload_wire_shape() -> None:
    p = OlmPayload(ciphertext="ct", sender_device_id="dev", sender_key="ik", olm_message_type=0)
    assert p.to_dict() == {
        "algorithm": "olm.v1",
        "ciphertext": "ct",
        "senderDeviceId": "dev",
        "senderKey": "ik",
        "olmMessageType": 0,
    }
    assert payload_from_dict(p.to_dict()) == p


def test_megolm_payload_wire_shape() -> None:
    p = MegolmPayload(ciphertext="ct", sender_device_id="dev", sender_key="ik", session_id="sid")
    assert p.to_dict() == {
        "algorithm": "megolm.v1",
        "ciphertext": "ct",
        "senderDeviceId": "dev",
        "senderKey": "ik",
        "sessionId": "sid",
    }
    assert payload_from_dict(p.to_dict()) == p


def test_missing_olm_message_type_means_normal() -> None:
    p = payload_from_dict(
        {"algorithm": "olm.v1", "ciphertext": "ct", "senderDeviceId": "dev", "senderKey": "ik"}
    )
    assert isinstance(p, OlmPayload)
    assert p.olm_message_type is None
    assert p.to_message().type == MESSAGE_TYPE_NORMAL
    assert "olmMessageType" not in p.to_dict()


@pytest.mark.parametrize(
    "d",
    [
        {},
        {"algorithm": "aes.v9", "ciphertext": "ct", "senderDeviceId": "dev", "senderKey": "ik"},
        {"algorithm": "olm.v1", "senderDeviceId": "dev", "senderKey": "ik"},
        {"algorithm": "olm.v1", "ciphertext": "ct", "senderDeviceId": "", "senderKey": "ik"},
        {"algorithm": "olm.v1", "ciphertext": "ct", "senderDeviceId": "dev", "senderKey": "ik", "olmMessageType": 2},
        {"algorithm": "olm.v1", "ciphertext": "ct", "senderDeviceId": "dev", "senderKey": "ik", "olmMessageType": True},
        {"algorithm": "megolm.v1", "ciphertext": 5, "senderDeviceId": "dev", "senderKey": "ik"},
        {"algorithm": "megolm.v1", "ciphertext": "ct", "senderDeviceId": "dev", "senderKey": "ik", "sessionId": 1},
    ],
)
def test_malformed_payloads_rejected(d) -> None:
    with pytest.raises(MalformedPayload) as exc:
        payload_from_dict(d)
    assert exc.value.kind is ErrorKind.MALFORMED_PAYLOAD


def test_non_mapping_rejected() -> None:
    with pytest.raises(MalformedPayload):
        payload_from_dict(["olm.v1"])  # type: ignore[arg-type]


def test_session_share_wire_shape() -> None:
    share = SessionSharePayload("@bob", "bob-1", '{"type":0,"body":"abc"}')
    assert share.to_dict() == {
        "recipientUserId": "@bob",
        "recipientDeviceId": "bob-1",
        "encryptedSessionKey": '{"type":0,"body":"abc"}',
    }


def test_decrypt_result_placeholder() -> None:
    assert DecryptResult(success=True, plaintext="hi").placeholder == "hi"
    failed = DecryptResult(success=False, error=ErrorKind.NO_SESSION_FOUND)
    assert failed.placeholder == "Unable to decrypt this message."
