"""Exclusive access to the ledger's read-modify-write section.

The mutation service wraps every balance update in
`with_exclusive_access(resource_key, fn)`. Which implementation is wired in
depends on the deployment:

- LocalExclusiveAccess: single process, asyncio locks keyed by resource
- RedisExclusiveAccess: several instances sharing one store, lease-bound
  Redis lock
- NoopExclusiveAccess: the store already serializes multi-key transactions
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Protocol, TypeVar, runtime_checkable

import bittensor as bt

from .errors import TransientIOError

T = TypeVar("T")

LEDGER_RESOURCE = "spark-rewards:scheduled-rewards"


@runtime_checkable
class ExclusiveAccess(Protocol):
    """Runs `fn` while holding the lock for `resource_key`."""

    async def with_exclusive_access(
        self, resource_key: str, fn: Callable[[], Awaitable[T]],
    ) -> T:
        ...


class NoopExclusiveAccess:
    """For stores with native multi-key transactions."""

    async def with_exclusive_access(
        self, resource_key: str, fn: Callable[[], Awaitable[T]],
    ) -> T:
        return await fn()


class LocalExclusiveAccess:
    """Process-wide mutual exclusion, one asyncio.Lock per resource key."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    async def with_exclusive_access(
        self, resource_key: str, fn: Callable[[], Awaitable[T]],
    ) -> T:
        lock = self._locks.setdefault(resource_key, asyncio.Lock())
        async with lock:
            return await fn()


class RedisExclusiveAccess:
    """Cluster-wide mutual exclusion backed by a Redis lock with a lease.

    The lease bounds how long a crashed holder can block other instances.
    """

    def __init__(
        self,
        redis_client: Any,
        lease_seconds: float = 20.0,
        acquire_timeout: float | None = None,
    ):
        self._redis = redis_client
        self.lease_seconds = lease_seconds
        self.acquire_timeout = acquire_timeout if acquire_timeout is not None else lease_seconds

    @classmethod
    def from_url(cls, redis_url: str, lease_seconds: float = 20.0) -> RedisExclusiveAccess:
        import redis.asyncio as aioredis

        return cls(aioredis.from_url(redis_url), lease_seconds=lease_seconds)

    async def with_exclusive_access(
        self, resource_key: str, fn: Callable[[], Awaitable[T]],
    ) -> T:
        from redis.exceptions import LockError, RedisError

        lock = self._redis.lock(
            resource_key,
            timeout=self.lease_seconds,
            blocking_timeout=self.acquire_timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            raise TransientIOError(f"Lock backend unavailable: {e}") from e
        if not acquired:
            bt.logging.warning({"ledger_lock": {"event": "acquire_timeout", "resource": resource_key}})
            raise TransientIOError(f"Timed out acquiring {resource_key}")
        try:
            return await fn()
        finally:
            try:
                await lock.release()
            except LockError:
                # Lease expired while we held it; another holder may have run.
                bt.logging.error({"ledger_lock": {"event": "lease_expired", "resource": resource_key}})

    async def close(self) -> None:
        await self._redis.aclose()


__all__ = [
    "LEDGER_RESOURCE",
    "ExclusiveAccess",
    "LocalExclusiveAccess",
    "NoopExclusiveAccess",
    "RedisExclusiveAccess",
]
