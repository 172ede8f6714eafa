from __future__ import annotations

import asyncio

import pytest

from rewardgate.domain.locks import KeyedLocks, LockBusy


async def test_same_key_serializes():
    locks = KeyedLocks()
    order = []

    async def worker(name):
        async with locks.hold("claim:a", timeout=1):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    await asyncio.gather(worker("first"), worker("second"))
    assert order == ["first-in", "first-out", "second-in", "second-out"]


async def test_distinct_keys_do_not_block():
    locks = KeyedLocks()
    async with locks.hold("claim:a"):
        async with locks.hold("claim:b", timeout=0.01):
            assert locks.locked("claim:a") and locks.locked("claim:b")


async def test_wait_is_bounded():
    locks = KeyedLocks()
    async with locks.hold("claim:a"):
        with pytest.raises(LockBusy):
            async with locks.hold("claim:a", timeout=0.01):
                pass
        assert locks.locked("claim:a")
    assert not locks.locked("claim:a")


async def test_unused_locks_are_dropped():
    locks = KeyedLocks()
    async with locks.hold("claim:a"):
        assert len(locks) == 1
    assert len(locks) == 0

    async with locks.hold("claim:a"):
        with pytest.raises(LockBusy):
            async with locks.hold("claim:a", timeout=0.01):
                pass
    assert len(locks) == 0
