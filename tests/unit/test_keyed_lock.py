import asyncio

import pytest

from meeting_triage.services.locks import KeyedLock


@pytest.mark.asyncio
async def test_same_key_is_serialised():
    locks = KeyedLock()
    order = []

    async def work(name):
        async with locks.hold("meeting-1"):
            order.append(f"{name}:start")
            await asyncio.sleep(0.01)
            order.append(f"{name}:end")

    await asyncio.gather(work("a"), work("b"))

    assert order == ["a:start", "a:end", "b:start", "b:end"]


@pytest.mark.asyncio
async def test_different_keys_run_in_parallel():
    locks = KeyedLock()
    inside = asyncio.Event()

    async def first():
        async with locks.hold("meeting-1"):
            await asyncio.wait_for(inside.wait(), timeout=1)

    async def second():
        async with locks.hold("meeting-2"):
            inside.set()

    await asyncio.gather(first(), second())


@pytest.mark.asyncio
async def test_entries_are_dropped_when_released():
    locks = KeyedLock()

    async with locks.hold("meeting-1"):
        assert locks.is_locked("meeting-1")
        assert len(locks) == 1

    assert not locks.is_locked("meeting-1")
    assert len(locks) == 0


@pytest.mark.asyncio
async def test_lock_released_on_error():
    locks = KeyedLock()

    with pytest.raises(RuntimeError):
        async with locks.hold("meeting-1"):
            raise RuntimeError("boom")

    assert len(locks) == 0
