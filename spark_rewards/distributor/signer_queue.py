"""Single-slot queue for signer operations.

Hardware signers handle one request at a time: a transaction approval and
a message signature must never be outstanding together. Every signer call
goes through this queue and is executed by one worker in submission order.
Blocking signer calls run in a thread so the event loop keeps serving
other tasks (screening, receipt polling) meanwhile.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, TypeVar

import bittensor as bt

T = TypeVar("T")


class SignerQueue:
    """Serializes signer operations through a queue of capacity one."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[tuple[Callable[[], Any], asyncio.Future, str]] = asyncio.Queue(maxsize=1)
        self._worker: asyncio.Task | None = None

    async def run(self, fn: Callable[[], T], label: str = "sign") -> T:
        """Queue `fn` and wait for its result."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._work())
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        await self._queue.put((fn, future, label))
        return await future

    async def _work(self) -> None:
        while True:
            fn, future, label = await self._queue.get()
            try:
                bt.logging.debug({"signer_queue": {"op": label, "status": "started"}})
                result = await asyncio.to_thread(fn)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)
            finally:
                self._queue.task_done()

    async def close(self) -> None:
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None


__all__ = ["SignerQueue"]
