from __future__ import annotations

import asyncio

import pytest

from pye2ee.store import InMemorySessionStore
from pye2ee.util.asyncio import KeyedLock, store_locks


@pytest.mark.asyncio
async def test_same_key_serializes_and_lock_is_dropped() -> None:
    locks = KeyedLock()
    order: list[str] = []

    async def worker(name: str) -> None:
        async with locks("dev"):
            order.append(f"{name} in")
            await asyncio.sleep(0)
            order.append(f"{name} out")

    await asyncio.gather(worker("a"), worker("b"), worker("c"))
    assert order == ["a in", "a out", "b in", "b out", "c in", "c out"]
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_kept_while_waiters_remain() -> None:
    locks = KeyedLock()
    release = asyncio.Event()

    async def holder() -> None:
        async with locks("conv"):
            await release.wait()

    async def waiter() -> None:
        async with locks("conv"):
            pass

    tasks = [asyncio.create_task(holder()), asyncio.create_task(waiter())]
    await asyncio.sleep(0)
    assert len(locks) == 1

    release.set()
    await asyncio.gather(*tasks)
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_different_keys_do_not_block() -> None:
    locks = KeyedLock()
    async with locks("a"):
        async with locks("b"):
            assert len(locks) == 2


def test_tables_are_shared_per_store_and_scope() -> None:
    store = InMemorySessionStore()
    assert store_locks(store, "device") is store_locks(store, "device")
    assert store_locks(store, "device") is not store_locks(store, "conversation")
    assert store_locks(store, "device") is not store_locks(InMemorySessionStore(), "device")
