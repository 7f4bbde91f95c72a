"""Compliance filter applied to scheduled rewards before payout.

Two passes, cheap first:
1. Threshold: drop addresses whose total scheduled rewards (ledger balance
   plus whatever the contract already holds for them) is below the minimum
   payout.
2. Screening: ask the wallet screening service about each remaining
   address. A non-OK response is a policy rejection; network failures are
   transient and retried without limit.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, Protocol, Sequence, TypeVar

import bittensor as bt
import httpx

from spark_rewards.ledger.errors import ErrorKind
from spark_rewards.ledger.retry import retry_async

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class Payable:
    """An address and the amount it is about to be paid."""

    address: str
    amount: int


class Screening(Protocol):
    async def is_allowed(self, address: str) -> bool:
        ...


class HTTPScreening:
    """Wallet screening service: GET {url}/{address}, 2xx means allowed."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
        retry_delay: float = 1.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.retry_delay = retry_delay
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        await self._client.aclose()

    async def is_allowed(self, address: str) -> bool:
        async def _check() -> httpx.Response:
            return await self._client.get(f"{self.base_url}/{address}")

        resp = await retry_async(
            _check,
            classify=_transport_only,
            retries=None,
            base_delay=self.retry_delay,
            max_delay=30.0,
            label="screening",
        )
        if not resp.is_success:
            bt.logging.debug({"screening": {"address": address, "status": resp.status_code}})
        return resp.is_success


def sort_payables(balances: dict[str, int]) -> list[Payable]:
    """Positive balances, largest first."""
    payables = [Payable(address, amount) for address, amount in balances.items() if amount > 0]
    payables.sort(key=lambda p: (-p.amount, p.address))
    return payables


async def bounded_map(
    items: Sequence[T],
    fn: Callable[[T], Awaitable[R]],
    concurrency: int,
    label: str,
) -> list[R]:
    """Run `fn` over `items` with at most `concurrency` calls in flight. Keeps order."""
    semaphore = asyncio.Semaphore(concurrency)
    done = 0

    async def _run(item: T) -> R:
        nonlocal done
        async with semaphore:
            result = await fn(item)
        done += 1
        if done % 100 == 0:
            bt.logging.info({"compliance": {"stage": label, "progress": f"{done}/{len(items)}"}})
        return result

    return list(await asyncio.gather(*(_run(item) for item in items)))


class ComplianceFilter:
    """Drops dust and sanctioned addresses from a balance snapshot."""

    def __init__(
        self,
        screening: Screening,
        min_payout: int,
        scheduled_on_chain: Callable[[str], Awaitable[int]] | None = None,
        concurrency: int = 100,
    ):
        self.screening = screening
        self.min_payout = min_payout
        self.scheduled_on_chain = scheduled_on_chain
        self.concurrency = concurrency

    async def apply(self, balances: dict[str, int]) -> list[Payable]:
        """Return payable entries, sorted descending by amount."""
        candidates = sort_payables(balances)
        bt.logging.info({"compliance": {"scheduled": len(candidates)}})

        above = await self._threshold(candidates)
        bt.logging.info({"compliance": {
            "below_threshold": len(candidates) - len(above),
            "min_payout": str(self.min_payout),
        }})

        allowed = await bounded_map(
            above, lambda p: self.screening.is_allowed(p.address), self.concurrency, "screening",
        )
        passed = []
        for payable, ok in zip(above, allowed):
            if ok:
                passed.append(payable)
            else:
                bt.logging.warning({"compliance": {"event": "screening_failed", "address": payable.address}})
        bt.logging.info({"compliance": {"sanctioned": len(above) - len(passed), "payable": len(passed)}})
        return passed

    async def _threshold(self, candidates: list[Payable]) -> list[Payable]:
        if self.scheduled_on_chain is None:
            return [p for p in candidates if p.amount >= self.min_payout]

        async def _total(p: Payable) -> int:
            on_chain = await retry_async(
                lambda: self.scheduled_on_chain(p.address),
                classify=_transient_always,
                retries=10,
                label="rewards_scheduled_for",
            )
            return p.amount + on_chain

        totals = await bounded_map(candidates, _total, self.concurrency, "threshold")
        return [p for p, total in zip(candidates, totals) if total >= self.min_payout]


def _transient_always(exc: BaseException) -> ErrorKind:
    # RPC read failures are all retried.
    return ErrorKind.TRANSIENT


def _transport_only(exc: BaseException) -> ErrorKind:
    # Any HTTP answer from the screening service is final.
    if isinstance(exc, httpx.TransportError):
        return ErrorKind.TRANSIENT
    return ErrorKind.DEFINITIVE


__all__ = ["ComplianceFilter", "HTTPScreening", "Payable", "Screening", "bounded_map", "sort_payables"]
