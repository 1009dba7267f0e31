from __future__ import annotations

import asyncio

import pytest

from pye2ee.config import SessionConfig
from pye2ee.exceptions import MalformedPayload, NoSessionFound, ReplayedMessage, StaleSessionError
from pye2ee.group import GroupSessionManager, needs_rotation
from pye2ee.olm import InboundGroupSession
from pye2ee.pickle_key import PickleKeyProvider
from pye2ee.store import GroupSessionRecord, InMemorySessionStore, SealedSession

DAY = 24 * 60 * 60


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _manager(clock: FakeClock | None = None) -> tuple[GroupSessionManager, InMemorySessionStore]:
    store = InMemorySessionStore()
    config = SessionConfig(clock=clock or FakeClock())
    return GroupSessionManager(store, PickleKeyProvider(), config=config), store


@pytest.mark.asyncio
async def test_outbound_created_once_and_reused() -> None:
    manager, store = _manager()

    first = await manager.get_or_create_outbound("conv")
    assert first.is_new
    second = await manager.get_or_create_outbound("conv")
    assert not second.is_new
    assert second.session.session_id == first.session.session_id

    record = await store.get_group_session("conv")
    assert record.message_count == 0
    # The sender keeps an inbound copy of its own session.
    assert first.session.session_id in record.inbound_by_id


@pytest.mark.asyncio
async def test_sender_reads_own_messages() -> None:
    manager, _ = _manager()

    enc = await manager.encrypt("conv", "note to self")
    out = await manager.decrypt("conv", enc.session_id, enc.ciphertext)
    assert out.plaintext == "note to self"
    assert out.message_index == 0


@pytest.mark.asyncio
async def test_rotation_after_message_limit() -> None:
    manager, store = _manager()

    first = await manager.encrypt("conv", "m0")
    assert first.is_new
    for i in range(1, 100):
        enc = await manager.encrypt("conv", f"m{i}")
        assert not enc.is_new
        assert enc.session_id == first.session_id

    record = await store.get_group_session("conv")
    assert record.message_count == 100

    rotated = await manager.encrypt("conv", "m100")
    assert rotated.is_new
    assert rotated.session_id != first.session_id

    record = await store.get_group_session("conv")
    assert record.message_count == 1
    # History stays readable after rotation.
    assert {first.session_id, rotated.session_id} <= set(record.inbound_by_id)


@pytest.mark.asyncio
async def test_rotation_after_seven_days() -> None:
    clock = FakeClock()
    manager, _ = _manager(clock)

    first = await manager.encrypt("conv", "monday")
    clock.now += 7 * DAY - 1
    assert not (await manager.encrypt("conv", "still fresh")).is_new

    clock.now += 1
    rotated = await manager.encrypt("conv", "a week later")
    assert rotated.is_new
    assert rotated.session_id != first.session_id


@pytest.mark.asyncio
async def test_increment_reports_rotation() -> None:
    manager, store = _manager()
    session = (await manager.get_or_create_outbound("conv")).session

    record = await store.get_group_session("conv")
    record.message_count = 98
    await store.put_group_session(record)

    session.encrypt("m98")
    assert await manager.increment_and_maybe_rotate("conv", session) == (99, False)
    session.encrypt("m99")
    assert await manager.increment_and_maybe_rotate("conv", session) == (100, True)
    assert await manager.increment_and_maybe_rotate("unknown", session) == (0, True)


@pytest.mark.asyncio
async def test_step_by_step_encrypt_stores_advanced_ratchet() -> None:
    sender, _ = _manager()
    receiver, _ = _manager()

    outbound = await sender.get_or_create_outbound("conv")
    session_id = outbound.session.session_id
    await receiver.import_inbound("conv", session_id, outbound.session.session_key)

    one = outbound.session.encrypt("one")
    assert await sender.increment_and_maybe_rotate("conv", outbound.session) == (1, False)

    reloaded = await sender.get_or_create_outbound("conv")
    assert not reloaded.is_new
    assert reloaded.session.message_index == 1
    two = reloaded.session.encrypt("two")
    assert await sender.increment_and_maybe_rotate("conv", reloaded.session) == (2, False)

    first = await receiver.decrypt("conv", session_id, one)
    second = await receiver.decrypt("conv", session_id, two)
    assert (first.plaintext, first.message_index) == ("one", 0)
    assert (second.plaintext, second.message_index) == ("two", 1)


@pytest.mark.asyncio
async def test_increment_without_encrypt_is_refused() -> None:
    manager, store = _manager()
    session = (await manager.get_or_create_outbound("conv")).session

    with pytest.raises(StaleSessionError):
        await manager.increment_and_maybe_rotate("conv", session)
    record = await store.get_group_session("conv")
    assert record.message_count == 0
    assert record.outbound.ratchet_index == 0


@pytest.mark.asyncio
async def test_increment_on_replaced_session_is_refused() -> None:
    manager, store = _manager()
    old = (await manager.get_or_create_outbound("conv")).session

    record = await store.get_group_session("conv")
    record.message_count = 100
    await store.put_group_session(record)
    new = await manager.get_or_create_outbound("conv")
    assert new.is_new

    old.encrypt("late")
    with pytest.raises(StaleSessionError):
        await manager.increment_and_maybe_rotate("conv", old)
    record = await store.get_group_session("conv")
    assert record.outbound.session_id == new.session.session_id
    assert record.message_count == 0


def test_needs_rotation() -> None:
    config = SessionConfig()
    sealed = SealedSession(pickle="p", session_id="s")
    now = 10 * DAY

    assert needs_rotation(GroupSessionRecord("c"), now, config)
    fresh = GroupSessionRecord("c", outbound=sealed, message_count=5, outbound_created_at=now - DAY)
    assert not needs_rotation(fresh, now, config)
    old = GroupSessionRecord("c", outbound=sealed, message_count=5, outbound_created_at=now - 8 * DAY)
    assert needs_rotation(old, now, config)
    busy = GroupSessionRecord("c", outbound=sealed, message_count=100, outbound_created_at=now)
    assert needs_rotation(busy, now, config)


@pytest.mark.asyncio
async def test_outbound_ratchet_survives_reload() -> None:
    manager, store = _manager()
    await manager.encrypt("conv", "m0")
    await manager.encrypt("conv", "m1")

    record = await store.get_group_session("conv")
    assert record.outbound.ratchet_index == 2

    outbound = await manager.get_or_create_outbound("conv")
    assert outbound.session.message_index == 2


@pytest.mark.asyncio
async def test_replay_rejected_without_touching_other_sessions() -> None:
    sender, _ = _manager()
    receiver, receiver_store = _manager()

    a = await sender.encrypt("conv-a", "a0")
    b = await sender.encrypt("conv-b", "b0")
    await receiver.import_inbound("conv-a", a.session_id, a.session_key)
    await receiver.import_inbound("conv-b", b.session_id, b.session_key)

    assert (await receiver.decrypt("conv-a", a.session_id, a.ciphertext)).plaintext == "a0"
    with pytest.raises(ReplayedMessage) as exc:
        await receiver.decrypt("conv-a", a.session_id, a.ciphertext)
    assert exc.value.message_index == 0
    assert exc.value.high_water_mark == 1

    assert (await receiver.decrypt("conv-b", b.session_id, b.ciphertext)).plaintext == "b0"
    record = await receiver_store.get_group_session("conv-a")
    assert record.inbound_by_id[a.session_id].ratchet_index == 1


@pytest.mark.asyncio
async def test_import_keeps_most_advanced_copy() -> None:
    sender, _ = _manager()
    receiver, receiver_store = _manager()

    m0 = await sender.encrypt("conv", "m0")
    m1 = await sender.encrypt("conv", "m1")
    assert await receiver.import_inbound("conv", m0.session_id, m0.session_key)

    await receiver.decrypt("conv", m0.session_id, m0.ciphertext)
    await receiver.decrypt("conv", m1.session_id, m1.ciphertext)

    # Importing the same key again must not rewind the replay mark.
    assert not await receiver.import_inbound("conv", m0.session_id, m0.session_key)
    record = await receiver_store.get_group_session("conv")
    assert record.inbound_by_id[m0.session_id].ratchet_index == 2

    with pytest.raises(ReplayedMessage):
        await receiver.decrypt("conv", m1.session_id, m1.ciphertext)


@pytest.mark.asyncio
async def test_import_later_key_advances() -> None:
    sender, _ = _manager()
    receiver, receiver_store = _manager()

    m0 = await sender.encrypt("conv", "m0")
    await sender.encrypt("conv", "m1")
    m2 = await sender.encrypt("conv", "m2")

    await receiver.import_inbound("conv", m0.session_id, m0.session_key)
    assert await receiver.import_inbound("conv", m2.session_id, m2.session_key)
    record = await receiver_store.get_group_session("conv")
    assert record.inbound_by_id[m0.session_id].ratchet_index == 2


@pytest.mark.asyncio
async def test_import_with_mismatched_session_id() -> None:
    sender, _ = _manager()
    receiver, _ = _manager()
    enc = await sender.encrypt("conv", "hi")

    with pytest.raises(MalformedPayload):
        await receiver.import_inbound("conv", "some-other-session", enc.session_key)


@pytest.mark.asyncio
async def test_decrypt_unknown_session() -> None:
    sender, _ = _manager()
    receiver, _ = _manager()
    enc = await sender.encrypt("conv", "hi")

    with pytest.raises(NoSessionFound):
        await receiver.decrypt("conv", enc.session_id, enc.ciphertext)


@pytest.mark.asyncio
async def test_concurrent_encrypts_use_distinct_indices() -> None:
    sender, store = _manager()

    first = await sender.encrypt("conv", "m0")
    inbound = InboundGroupSession.from_session_key(first.session_key)
    rest = await asyncio.gather(*(sender.encrypt("conv", f"m{i}") for i in range(1, 20)))

    indices = {inbound.decrypt(enc.ciphertext).message_index for enc in rest}
    assert indices == set(range(1, 20))
    assert (await store.get_group_session("conv")).message_count == 20
