"""Generic retry policy driven by an explicit error kind.

Callers pass a `classify` function that tags each exception TRANSIENT or
DEFINITIVE. Transient failures are retried with capped exponential backoff,
forever when `retries` is None. Definitive failures propagate immediately.
"""

from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, TypeVar

import bittensor as bt
import httpx

from .errors import ErrorKind, LedgerError

T = TypeVar("T")


def classify_http_error(exc: BaseException) -> ErrorKind:
    """Network errors, 5xx and 429 are transient. Everything else is definitive."""
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.TRANSIENT
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status >= 500 or status == 429:
            return ErrorKind.TRANSIENT
        return ErrorKind.DEFINITIVE
    if isinstance(exc, LedgerError):
        return exc.kind
    return ErrorKind.DEFINITIVE


def classify_ledger_error(exc: BaseException) -> ErrorKind:
    """A LedgerError carries its own kind. Anything else is definitive."""
    if isinstance(exc, LedgerError):
        return exc.kind
    return ErrorKind.DEFINITIVE


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    classify: Callable[[BaseException], ErrorKind] = classify_http_error,
    retries: int | None = None,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    label: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run `fn` until it succeeds, fails definitively, or retries run out."""
    attempt = 0
    while True:
        try:
            return await fn()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if classify(e) is ErrorKind.DEFINITIVE:
                raise
            if retries is not None and attempt >= retries:
                raise
            wait = min(max_delay, base_delay * 2 ** min(attempt, 16))
            wait = wait * (0.5 + random.random() / 2)
            bt.logging.warning({"retry": {"label": label, "attempt": attempt + 1, "wait": round(wait, 2), "error": str(e)}})
            attempt += 1
            await sleep(wait)


__all__ = ["classify_http_error", "classify_ledger_error", "retry_async"]
