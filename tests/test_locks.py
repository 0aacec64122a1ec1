"""Tests for per-key asyncio locks."""

import asyncio

import pytest

from gitrelay.locks import KeyedLocks


class TestKeyedLocks:

    def test_entry_dropped_after_release(self):
        locks = KeyedLocks()

        async def use():
            async with locks.hold('/repos/a.git'):
                assert '/repos/a.git' in locks

        asyncio.run(use())
        assert len(locks) == 0

    def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        order = []

        async def worker(name):
            async with locks.hold('a'):
                order.append(f"{name}-in")
                await asyncio.sleep(0)
                order.append(f"{name}-out")

        async def run():
            await asyncio.gather(worker('first'), worker('second'), worker('third'))

        asyncio.run(run())
        assert order == ['first-in', 'first-out', 'second-in', 'second-out', 'third-in', 'third-out']
        assert len(locks) == 0

    def test_waiters_keep_the_entry(self):
        """A released lock with tasks still queued stays registered."""
        locks = KeyedLocks()
        seen = []

        async def first(release):
            async with locks.hold('a'):
                await release.wait()
            seen.append('a' in locks)

        async def second():
            async with locks.hold('a'):
                pass

        async def run():
            release = asyncio.Event()
            tasks = [asyncio.create_task(first(release)), asyncio.create_task(second())]
            await asyncio.sleep(0)
            release.set()
            await asyncio.gather(*tasks)

        asyncio.run(run())
        assert seen == [True]
        assert len(locks) == 0

    def test_released_on_error(self):
        locks = KeyedLocks()

        async def fail():
            async with locks.hold('a'):
                raise ValueError('boom')

        with pytest.raises(ValueError):
            asyncio.run(fail())
        assert len(locks) == 0
