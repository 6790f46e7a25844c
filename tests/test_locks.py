"""Tests for KeyedLock per-key serialization."""
import asyncio

import pytest

from context.locks import KeyedLock


@pytest.mark.asyncio
class TestKeyedLock:

    async def test_same_key_runs_in_arrival_order(self):
        locks = KeyedLock()
        events: list[str] = []

        async def worker(name: str, delay: float):
            async with locks.acquire(("t", "u", "c")):
                events.append(f"{name}:start")
                await asyncio.sleep(delay)
                events.append(f"{name}:end")

        await asyncio.gather(worker("a", 0.02), worker("b", 0.0), worker("c", 0.0))

        assert events == ["a:start", "a:end", "b:start", "b:end", "c:start", "c:end"]

    async def test_different_keys_overlap(self):
        locks = KeyedLock()
        inside = asyncio.Event()
        released = asyncio.Event()

        async def holder():
            async with locks.acquire("k1"):
                inside.set()
                await released.wait()

        task = asyncio.create_task(holder())
        await inside.wait()

        async with locks.acquire("k2"):
            assert locks.locked("k1")
            assert locks.locked("k2")

        released.set()
        await task

    async def test_idle_locks_are_dropped(self):
        locks = KeyedLock()
        async with locks.acquire("k"):
            assert len(locks) == 1
        assert len(locks) == 0
        assert not locks.locked("k")

    async def test_lock_released_on_error(self):
        locks = KeyedLock()
        with pytest.raises(RuntimeError):
            async with locks.acquire("k"):
                raise RuntimeError("boom")

        assert len(locks) == 0
        async with locks.acquire("k"):
            pass
