"""In-memory LedgerStore implementation.

Mutations build the new state on a copy and swap it in only after every
delta passed, so a rejected batch leaves nothing behind.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import AsyncIterator, Sequence

from spark_rewards.ledger.errors import NegativeBalanceError
from spark_rewards.ledger.models import BalanceDelta, LogEntry


class MemoryLedgerStore:
    """Dict-backed store. Not shared across processes."""

    def __init__(self, retention_days: int = 30, max_log_entries: int | None = None):
        self.retention_days = retention_days
        self.max_log_entries = max_log_entries
        self._balances: dict[str, int] = {}
        self._log: list[LogEntry] = []
        self._next_id = 1

    async def apply_deltas(
        self,
        deltas: Sequence[BalanceDelta],
        timestamp: datetime,
        allow_negative: bool = True,
    ) -> dict[str, int]:
        balances = dict(self._balances)
        entries: list[LogEntry] = []
        updated: dict[str, int] = {}

        for i, d in enumerate(deltas):
            amount = balances.get(d.address, 0) + d.delta
            if amount < 0 and not allow_negative:
                raise NegativeBalanceError(d.address, amount)
            balances[d.address] = amount
            updated[d.address] = amount
            entries.append(LogEntry(
                id=self._next_id + i,
                timestamp=timestamp,
                address=d.address,
                score=d.score,
                delta=d.delta,
            ))

        self._balances = balances
        self._log.extend(entries)
        self._next_id += len(entries)
        return updated

    async def get_balances(self) -> dict[str, int]:
        return dict(self._balances)

    async def get_balance(self, address: str) -> int:
        return self._balances.get(address, 0)

    async def iter_log(
        self, after: int | None = None, page_size: int = 1000,
    ) -> AsyncIterator[list[LogEntry]]:
        entries = [e for e in self._log if after is None or e.id > after]
        for start in range(0, len(entries), page_size):
            yield entries[start:start + page_size]

    async def trim_log(self, now: datetime) -> int:
        cutoff = now - timedelta(days=self.retention_days)
        kept = [e for e in self._log if e.timestamp >= cutoff]
        if self.max_log_entries is not None and len(kept) > self.max_log_entries:
            kept = kept[len(kept) - self.max_log_entries:]
        removed = len(self._log) - len(kept)
        self._log = kept
        return removed


__all__ = ["MemoryLedgerStore"]
