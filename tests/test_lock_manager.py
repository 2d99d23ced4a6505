"""Tests for the Redis per-user lock manager."""

import asyncio
import random

import pytest

from trade_engine.core.lock_manager import LockManager


class TestSingleLock:
    @pytest.mark.asyncio
    async def test_second_acquire_fails_until_release(self, trade_locks):
        assert await trade_locks.try_acquire(1, "s1") is True
        assert await trade_locks.try_acquire(1, "s2") is False
        assert await trade_locks.holder(1) == "s1"

        assert await trade_locks.release(1, "s1") is True
        assert await trade_locks.is_locked(1) is False
        assert await trade_locks.try_acquire(1, "s2") is True

    @pytest.mark.asyncio
    async def test_lock_expires_after_ttl(self, fake_redis, trade_locks):
        await trade_locks.try_acquire(1, "s1", ttl_sec=10)
        fake_redis.advance(11)
        assert await trade_locks.is_locked(1) is False
        assert await trade_locks.try_acquire(1, "s2") is True

    @pytest.mark.asyncio
    async def test_namespaces_do_not_collide(self, trade_locks, op_locks):
        assert await trade_locks.try_acquire(7, "session")
        assert await op_locks.try_acquire(7, "call")

    @pytest.mark.asyncio
    async def test_release_by_other_holder_keeps_lock(self, trade_locks):
        await trade_locks.try_acquire(4, "s1")
        assert await trade_locks.release(4, "s2") is False
        assert await trade_locks.holder(4) == "s1"

    @pytest.mark.asyncio
    async def test_expired_holder_cannot_free_new_holder(self, fake_redis, trade_locks):
        await trade_locks.try_acquire(1, "s1", ttl_sec=10)
        fake_redis.advance(11)
        assert await trade_locks.try_acquire(1, "s2") is True

        await trade_locks.release_many([1], "s1")
        assert await trade_locks.holder(1) == "s2"

    @pytest.mark.asyncio
    async def test_clear_all_locks_ignores_holder(self, trade_locks):
        await trade_locks.try_acquire(3, "someone-else")
        await trade_locks.clear_all_locks(3)
        assert await trade_locks.holder(3) is None


class TestMultiLock:
    @pytest.mark.asyncio
    async def test_all_or_nothing(self, trade_locks):
        await trade_locks.try_acquire(2, "other")
        blocked = await trade_locks.acquire_many([3, 1, 2], holder="mine")
        assert blocked == 2
        # lock on 1 was taken first and must have been rolled back
        assert await trade_locks.is_locked(1) is False
        assert await trade_locks.is_locked(3) is False

    @pytest.mark.asyncio
    async def test_opposite_orders_cannot_both_win(self, fake_redis):
        locks = LockManager(fake_redis, "pair_lock", 30)
        first, second = await asyncio.gather(
            locks.acquire_many([10, 20], holder="a"),
            locks.acquire_many([20, 10], holder="b"),
        )
        assert [first, second].count(None) == 1

    @pytest.mark.asyncio
    async def test_with_lock_runs_action_and_releases(self, op_locks):
        async def action():
            assert await op_locks.is_locked(1)
            assert await op_locks.is_locked(2)
            return "done"

        outcome = await op_locks.with_lock([2, 1], action)
        assert outcome.acquired is True
        assert outcome.value == "done"
        assert not await op_locks.is_locked(1)
        assert not await op_locks.is_locked(2)

    @pytest.mark.asyncio
    async def test_with_lock_releases_on_error(self, op_locks):
        async def action():
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await op_locks.with_lock([1, 2], action)
        assert not await op_locks.is_locked(1)

    @pytest.mark.asyncio
    async def test_with_lock_reports_blocker(self, op_locks):
        await op_locks.try_acquire(5, "busy")
        called = False

        async def action():
            nonlocal called
            called = True

        outcome = await op_locks.with_lock([4, 5], action)
        assert outcome.acquired is False
        assert outcome.blocked_by == 5
        assert called is False

    @pytest.mark.asyncio
    async def test_overrunning_action_leaves_newer_lock_alone(self, fake_redis, op_locks):
        taken_over = False

        async def slow_action():
            nonlocal taken_over
            fake_redis.advance(31)
            taken_over = await op_locks.try_acquire(1, "newcomer")

        outcome = await op_locks.with_lock([1], slow_action)
        assert outcome.acquired is True
        assert taken_over is True
        assert await op_locks.holder(1) == "newcomer"


class TestLockOrdering:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("seed", [1, 7, 42, 1337, 2026])
    async def test_shuffled_pairs_never_double_grant(self, fake_redis, seed):
        rng = random.Random(seed)
        locks = LockManager(fake_redis, "pair_lock", 30)
        users = list(range(1, 9))
        pairs = [rng.sample(users, 2) for _ in range(40)]
        holders = [f"h{i}" for i in range(len(pairs))]

        results = await asyncio.wait_for(
            asyncio.gather(*(
                locks.acquire_many(pair, holder=holder)
                for pair, holder in zip(pairs, holders)
            )),
            timeout=5,
        )

        winners = [(set(pair), holder) for pair, holder, res in zip(pairs, holders, results) if res is None]
        assert winners
        granted = [uid for ids, _ in winners for uid in ids]
        assert len(granted) == len(set(granted))

        owner = {uid: holder for ids, holder in winners for uid in ids}
        for uid in users:
            assert await locks.holder(uid) == owner.get(uid)

        for ids, holder in winners:
            await locks.release_many(ids, holder)
        for uid in users:
            assert await locks.is_locked(uid) is False
