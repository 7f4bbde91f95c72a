"""Tests for the exclusive access implementations."""

from __future__ import annotations

import asyncio

import pytest

from spark_rewards.ledger.errors import TransientIOError
from spark_rewards.ledger.lock import (
    ExclusiveAccess,
    LocalExclusiveAccess,
    NoopExclusiveAccess,
    RedisExclusiveAccess,
)


class _FakeRedisLock:
    def __init__(self, owner, name, timeout, blocking_timeout):
        self.owner = owner
        self.name = name
        self.timeout = timeout
        self.blocking_timeout = blocking_timeout

    async def acquire(self):
        if self.owner.held:
            return False
        self.owner.held = True
        return True

    async def release(self):
        self.owner.held = False
        self.owner.released += 1


class _FakeRedis:
    def __init__(self):
        self.held = False
        self.released = 0
        self.locks = []

    def lock(self, name, timeout, blocking_timeout):
        lock = _FakeRedisLock(self, name, timeout, blocking_timeout)
        self.locks.append(lock)
        return lock


@pytest.mark.asyncio
class TestExclusiveAccess:

    async def test_protocol(self):
        assert isinstance(LocalExclusiveAccess(), ExclusiveAccess)
        assert isinstance(NoopExclusiveAccess(), ExclusiveAccess)

    async def test_local_serializes(self):
        access = LocalExclusiveAccess()
        active = 0
        peak = 0

        async def critical():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return "ok"

        results = await asyncio.gather(*(
            access.with_exclusive_access("k", critical) for _ in range(5)
        ))
        assert results == ["ok"] * 5
        assert peak == 1

    async def test_local_independent_keys(self):
        access = LocalExclusiveAccess()
        inside = asyncio.Event()
        release = asyncio.Event()

        async def holder():
            inside.set()
            await release.wait()

        task = asyncio.create_task(access.with_exclusive_access("a", holder))
        await inside.wait()

        async def other():
            return 1

        assert await asyncio.wait_for(access.with_exclusive_access("b", other), 1.0) == 1
        release.set()
        await task

    async def test_redis_lock_lease_and_release(self):
        redis = _FakeRedis()
        access = RedisExclusiveAccess(redis, lease_seconds=20)

        async def fn():
            assert redis.held
            return 42

        assert await access.with_exclusive_access("res", fn) == 42
        assert redis.locks[0].timeout == 20
        assert redis.locks[0].name == "res"
        assert redis.released == 1

    async def test_redis_lock_released_on_error(self):
        redis = _FakeRedis()
        access = RedisExclusiveAccess(redis)

        async def boom():
            raise RuntimeError("x")

        with pytest.raises(RuntimeError):
            await access.with_exclusive_access("res", boom)
        assert not redis.held

    async def test_redis_lock_timeout_is_transient(self):
        redis = _FakeRedis()
        redis.held = True
        access = RedisExclusiveAccess(redis, acquire_timeout=0.1)

        async def fn():
            return 1

        with pytest.raises(TransientIOError):
            await access.with_exclusive_access("res", fn)
