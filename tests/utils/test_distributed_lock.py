"""
Distributed lock tests against the in-memory Redis double.
"""

import asyncio

import pytest

from arenacore.utils.distributed_lock import (
    LockAcquisitionError,
    LockType,
    MultiLockManager,
)


class TestDistributedLock:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self, lock_manager):
        info = await lock_manager.acquire("t1", LockType.TOURNAMENT)

        assert info.lock_key == "lock:tournament:t1"
        assert await lock_manager.is_locked("t1", LockType.TOURNAMENT)

        assert await lock_manager.release(info) is True
        assert not await lock_manager.is_locked("t1", LockType.TOURNAMENT)

    @pytest.mark.asyncio
    async def test_contention_times_out(self, lock_manager):
        await lock_manager.acquire("t1", LockType.TOURNAMENT)

        with pytest.raises(LockAcquisitionError):
            await lock_manager.acquire("t1", LockType.TOURNAMENT, acquire_timeout_ms=30)

    @pytest.mark.asyncio
    async def test_scopes_are_independent(self, lock_manager):
        await lock_manager.acquire("ranked", LockType.QUEUE)

        info = await lock_manager.acquire("ranked", LockType.RATING, acquire_timeout_ms=30)

        assert info.lock_key == "lock:rating:ranked"

    @pytest.mark.asyncio
    async def test_release_ignores_foreign_owner(self, lock_manager, mock_redis):
        info = await lock_manager.acquire("t1", LockType.TOURNAMENT)
        # Lock expired and was taken by someone else
        await mock_redis.set(info.lock_key, "other-owner")

        assert await lock_manager.release(info) is False
        assert await mock_redis.get(info.lock_key) == "other-owner"

    @pytest.mark.asyncio
    async def test_context_manager_waits_for_holder(self, lock_manager):
        order = []

        async def worker(name, hold):
            async with lock_manager.lock("t1", LockType.TOURNAMENT):
                order.append(f"{name}-in")
                await asyncio.sleep(hold)
                order.append(f"{name}-out")

        await asyncio.gather(worker("a", 0.02), worker("b", 0))

        assert order in (["a-in", "a-out", "b-in", "b-out"], ["b-in", "b-out", "a-in", "a-out"])

    @pytest.mark.asyncio
    async def test_renew_and_cleanup(self, lock_manager):
        info = await lock_manager.acquire("m1", LockType.QUEUE_MATCH)

        assert await lock_manager.renew(info) is True
        assert await lock_manager.cleanup_all() == 1
        assert not await lock_manager.is_locked("m1", LockType.QUEUE_MATCH)


class TestMultiLock:
    @pytest.mark.asyncio
    async def test_acquires_in_key_order(self, lock_manager):
        multi = MultiLockManager(lock_manager)

        async with multi.multi_lock(
            [("solo", LockType.QUEUE), ("duo", LockType.QUEUE), ("duo", LockType.QUEUE)]
        ) as held:
            assert [i.lock_key for i in held] == ["lock:queue:duo", "lock:queue:solo"]

        assert not await lock_manager.is_locked("duo", LockType.QUEUE)

    @pytest.mark.asyncio
    async def test_partial_acquisition_released(self, lock_manager):
        multi = MultiLockManager(lock_manager)
        await lock_manager.acquire("solo", LockType.QUEUE)

        with pytest.raises(LockAcquisitionError):
            async with multi.multi_lock(
                [("duo", LockType.QUEUE), ("solo", LockType.QUEUE)], acquire_timeout_ms=30
            ):
                pass

        assert not await lock_manager.is_locked("duo", LockType.QUEUE)
