from __future__ import annotations

import pytest

from pye2ee.config import SessionConfig
from pye2ee.devices import provision_device, replenish_one_time_keys
from pye2ee.olm import Account
from pye2ee.pickle_key import PickleKeyProvider
from pye2ee.store import InMemorySessionStore


@pytest.mark.asyncio
async def test_provision_device() -> None:
    store = InMemorySessionStore()
    keys = PickleKeyProvider()
    config = SessionConfig(one_time_key_count=7, clock=lambda: 42.0)

    published = await provision_device(store, keys, "dev-1", config=config)
    assert published.device_id == "dev-1"
    assert len(published.one_time_keys) == 7
    assert len(published.fallback_key) == 1

    stored = await store.get_account()
    assert stored.device_id == "dev-1"
    assert stored.created_at == 42.0

    account = Account.from_pickle(stored.pickle, keys.get())
    assert account.identity_keys.curve25519 == published.identity_key
    assert account.identity_keys.ed25519 == published.signing_key
    # Everything handed out is already marked published.
    assert account.one_time_keys == {}
    assert account.fallback_key == {}


@pytest.mark.asyncio
async def test_replenish_one_time_keys() -> None:
    store = InMemorySessionStore()
    keys = PickleKeyProvider()
    first = await provision_device(store, keys, "dev-1", config=SessionConfig(one_time_key_count=3))

    more = await replenish_one_time_keys(store, keys, 4)
    assert len(more) == 4
    assert not set(more) & set(first.one_time_keys)

    account = Account.from_pickle((await store.get_account()).pickle, keys.get())
    assert account.stored_one_time_key_count == 7
