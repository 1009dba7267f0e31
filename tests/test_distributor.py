from __future__ import annotations

import json

import pytest

from pye2ee.devices import provision_device
from pye2ee.distributor import KeyDistributor, encode_session_envelope
from pye2ee.exceptions import ErrorKind
from pye2ee.olm import MESSAGE_TYPE_PREKEY, OlmMessage
from pye2ee.pairwise import PairwiseSessionManager
from pye2ee.payload import ClaimedPrekey, DeviceInfo
from pye2ee.pickle_key import PickleKeyProvider
from pye2ee.store import InMemorySessionStore


class Device:
    def __init__(self, user_id: str, device_id: str) -> None:
        self.user_id = user_id
        self.device_id = device_id
        self.store = InMemorySessionStore()
        self.keys = PickleKeyProvider()
        self.pairwise = PairwiseSessionManager(self.store, self.keys)
        self.info: DeviceInfo | None = None
        self.prekeys: list[tuple[str, str]] = []

    async def provision(self) -> Device:
        published = await provision_device(self.store, self.keys, self.device_id)
        self.prekeys = list(published.one_time_keys.items())
        self.info = DeviceInfo(self.user_id, self.device_id, published.identity_key)
        return self


def _claimer(devices: list[Device], *, unavailable: frozenset[str] = frozenset()):
    by_id = {d.device_id: d for d in devices}

    async def claim(user_id: str, device_id: str) -> ClaimedPrekey | None:
        d = by_id.get(device_id)
        if d is None or device_id in unavailable or not d.prekeys:
            return None
        key_id, public_key = d.prekeys.pop()
        return ClaimedPrekey(key_id, public_key)

    return claim


def test_envelope_shape() -> None:
    assert json.loads(encode_session_envelope("sid", "skey")) == {"sessionId": "sid", "sessionKey": "skey"}


@pytest.mark.asyncio
async def test_share_with_every_device() -> None:
    alice = await Device("@alice", "alice-1").provision()
    others = [await Device("@bob", f"bob-{i}").provision() for i in range(3)]
    distributor = KeyDistributor(alice.pairwise)

    shares = await distributor.share_session_key(
        "conv", "sid", "skey", [d.info for d in others], _claimer(others)
    )
    assert [s.recipient_device_id for s in shares] == ["bob-0", "bob-1", "bob-2"]

    for share, bob in zip(shares, others):
        wrapped = json.loads(share.encrypted_session_key)
        assert wrapped["type"] == MESSAGE_TYPE_PREKEY
        plaintext = await bob.pairwise.process_inbound(
            "alice-1", alice.info.identity_key, OlmMessage(wrapped["type"], wrapped["body"])
        )
        assert json.loads(plaintext) == {"sessionId": "sid", "sessionKey": "skey"}


@pytest.mark.asyncio
async def test_share_is_best_effort() -> None:
    alice = await Device("@alice", "alice-1").provision()
    others = [await Device("@bob", f"bob-{i}").provision() for i in range(3)]
    distributor = KeyDistributor(alice.pairwise)

    outcome = await distributor.share(
        "conv", "sid", "skey", [d.info for d in others], _claimer(others, unavailable=frozenset({"bob-1"}))
    )
    assert [s.recipient_device_id for s in outcome.shares] == ["bob-0", "bob-2"]
    assert outcome.failed == {"bob-1": ErrorKind.PREKEY_UNAVAILABLE}


@pytest.mark.asyncio
async def test_share_skips_own_device() -> None:
    alice = await Device("@alice", "alice-1").provision()
    bob = await Device("@bob", "bob-1").provision()
    distributor = KeyDistributor(alice.pairwise)

    shares = await distributor.share_session_key(
        "conv", "sid", "skey", [alice.info, bob.info], _claimer([alice, bob])
    )
    assert [s.recipient_device_id for s in shares] == ["bob-1"]
