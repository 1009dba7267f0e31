from __future__ import annotations

import pytest

from pye2ee.exceptions import StoreError
from pye2ee.store import (
    GroupSessionRecord,
    InMemorySessionStore,
    MultiFileSessionStore,
    SealedSession,
    StoredAccount,
)


@pytest.fixture(params=["memory", "file"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemorySessionStore()
    return MultiFileSessionStore(tmp_path)


@pytest.mark.asyncio
async def test_missing_records_read_as_none(store) -> None:
    assert await store.get_account() is None
    assert await store.get_pairwise_session("dev-1") is None
    assert await store.get_group_session("conv-1") is None
    assert await store.increment_group_message_count("conv-1") == 0
    assert await store.get_group_session("conv-1") is None


@pytest.mark.asyncio
async def test_account_and_pairwise_roundtrip(store) -> None:
    await store.put_account(StoredAccount(device_id="dev-a", pickle="sealed", created_at=1.5))
    got = await store.get_account()
    assert got == StoredAccount(device_id="dev-a", pickle="sealed", created_at=1.5)

    s = SealedSession(pickle="p1", session_id="sid", ratchet_index=3, identity_key="ik", updated_at=2.0)
    await store.put_pairwise_session("dev-b", s)
    assert await store.get_pairwise_session("dev-b") == s


@pytest.mark.asyncio
async def test_group_record_lifecycle(store) -> None:
    # Adding an inbound session creates the record.
    await store.add_inbound_group_session("conv", "s1", SealedSession(pickle="in1", session_id="s1"))
    record = await store.get_group_session("conv")
    assert record is not None
    assert record.outbound is None
    assert set(record.inbound_by_id) == {"s1"}

    record.outbound = SealedSession(pickle="out", session_id="s2")
    record.outbound_created_at = 100.0
    await store.put_group_session(record)

    assert await store.increment_group_message_count("conv") == 1
    assert await store.increment_group_message_count("conv") == 2

    await store.add_inbound_group_session("conv", "s2", SealedSession(pickle="in2", session_id="s2", ratchet_index=4))
    record = await store.get_group_session("conv")
    assert record.message_count == 2
    assert record.outbound_created_at == 100.0
    assert record.outbound.pickle == "out"
    assert record.inbound_by_id["s2"].ratchet_index == 4
    assert record.inbound_by_id["s1"].pickle == "in1"


@pytest.mark.asyncio
async def test_returned_records_are_copies(store) -> None:
    await store.put_group_session(GroupSessionRecord(conversation_id="conv"))
    record = await store.get_group_session("conv")
    record.message_count = 99

    again = await store.get_group_session("conv")
    assert again.message_count == 0


@pytest.mark.asyncio
async def test_clear(store) -> None:
    await store.put_account(StoredAccount(device_id="dev-a", pickle="sealed", created_at=0.0))
    await store.put_pairwise_session("dev-b", SealedSession(pickle="p"))
    await store.put_group_session(GroupSessionRecord(conversation_id="conv"))

    await store.clear()
    assert await store.get_account() is None
    assert await store.get_pairwise_session("dev-b") is None
    assert await store.get_group_session("conv") is None


@pytest.mark.asyncio
async def test_file_store_persists_across_instances(tmp_path) -> None:
    s1 = MultiFileSessionStore(tmp_path)
    await s1.put_pairwise_session("user/dev:1", SealedSession(pickle="p", session_id="sid", ratchet_index=7))

    s2 = MultiFileSessionStore(tmp_path)
    got = await s2.get_pairwise_session("user/dev:1")
    assert got is not None
    assert got.ratchet_index == 7
    assert not list(tmp_path.glob("*.tmp"))


@pytest.mark.asyncio
async def test_file_store_corrupt_record(tmp_path) -> None:
    store = MultiFileSessionStore(tmp_path)
    (tmp_path / "account.json").write_text("{not json", "utf-8")

    with pytest.raises(StoreError):
        await store.get_account()
