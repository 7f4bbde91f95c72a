"""LedgerStore protocol - pluggable balance + log storage.

Implementations: MemoryLedgerStore (tests, single process),
SqlLedgerStore (SQLite / Postgres via SQLAlchemy).
"""

from __future__ import annotations

from datetime import datetime
from typing import AsyncIterator, Protocol, Sequence, runtime_checkable

from spark_rewards.ledger.models import BalanceDelta, LogEntry


@runtime_checkable
class LedgerStore(Protocol):
    """Transactional address -> balance map plus an append-only log."""

    async def apply_deltas(
        self,
        deltas: Sequence[BalanceDelta],
        timestamp: datetime,
        allow_negative: bool = True,
    ) -> dict[str, int]:
        """Apply all deltas and append one log entry per delta, atomically.

        Returns the resulting balance of every touched address. Raises
        NegativeBalanceError (and applies nothing) if `allow_negative` is
        False and any balance would drop below zero.
        """
        ...

    async def get_balances(self) -> dict[str, int]:
        """Snapshot of all balances."""
        ...

    async def get_balance(self, address: str) -> int:
        """Balance of one address, 0 if unknown."""
        ...

    def iter_log(
        self, after: int | None = None, page_size: int = 1000,
    ) -> AsyncIterator[list[LogEntry]]:
        """Yield log entries in append order, one page at a time."""
        ...

    async def trim_log(self, now: datetime) -> int:
        """Apply the retention policy. Returns the number of entries removed."""
        ...


__all__ = ["LedgerStore"]
