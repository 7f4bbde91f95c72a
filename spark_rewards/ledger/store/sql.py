"""SQLAlchemy-backed LedgerStore.

Every mutation runs in one database transaction: the touched balance rows
are read with SELECT ... FOR UPDATE (a no-op on SQLite, which serializes
writers itself), updated in Python with exact integers, and written back
together with their log rows. Any failure rolls the whole batch back.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Sequence

import bittensor as bt
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from spark_rewards.database.migrate import upgrade_connection
from spark_rewards.database.schema import RewardLogRow, ScheduledRewardRow
from spark_rewards.ledger.errors import NegativeBalanceError, TransientIOError
from spark_rewards.ledger.models import BalanceDelta, LogEntry


def _as_utc(ts: datetime) -> datetime:
    # SQLite drops tzinfo on the way back.
    return ts if ts.tzinfo is not None else ts.replace(tzinfo=timezone.utc)


def _to_entry(row: RewardLogRow) -> LogEntry:
    return LogEntry(
        id=row.id,
        timestamp=_as_utc(row.timestamp),
        address=row.address,
        score=row.score,
        delta=row.delta,
    )


class SqlLedgerStore:
    """LedgerStore over any SQLAlchemy async engine."""

    def __init__(
        self,
        engine: AsyncEngine,
        retention_days: int = 30,
        max_log_entries: int | None = None,
    ):
        self.engine = engine
        self.retention_days = retention_days
        self.max_log_entries = max_log_entries
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, **kwargs) -> SqlLedgerStore:
        return cls(create_async_engine(database_url), **kwargs)

    async def init(self) -> None:
        """Upgrade the schema to the latest migration."""
        async with self.engine.begin() as conn:
            await conn.run_sync(upgrade_connection)

    async def close(self) -> None:
        await self.engine.dispose()

    async def apply_deltas(
        self,
        deltas: Sequence[BalanceDelta],
        timestamp: datetime,
        allow_negative: bool = True,
    ) -> dict[str, int]:
        addresses = sorted({d.address for d in deltas})
        updated: dict[str, int] = {}
        try:
            async with self._sessions() as session, session.begin():
                result = await session.scalars(
                    select(ScheduledRewardRow)
                    .where(ScheduledRewardRow.address.in_(addresses))
                    .order_by(ScheduledRewardRow.address)
                    .with_for_update()
                )
                rows = {row.address: row for row in result.all()}

                for d in deltas:
                    row = rows.get(d.address)
                    if row is None:
                        row = ScheduledRewardRow(address=d.address, amount=0)
                        session.add(row)
                        rows[d.address] = row
                    amount = row.amount + d.delta
                    if amount < 0 and not allow_negative:
                        raise NegativeBalanceError(d.address, amount)
                    row.amount = amount
                    updated[d.address] = amount
                    session.add(RewardLogRow(
                        timestamp=timestamp,
                        address=d.address,
                        score=d.score,
                        delta=d.delta,
                    ))
        except (IntegrityError, OperationalError) as e:
            bt.logging.warning({"ledger_store": {"event": "transaction_failed", "error": str(e)}})
            raise TransientIOError(f"Ledger transaction failed: {e}") from e
        return updated

    async def get_balances(self) -> dict[str, int]:
        async with self._sessions() as session:
            result = await session.scalars(select(ScheduledRewardRow))
            return {row.address: row.amount for row in result.all()}

    async def get_balance(self, address: str) -> int:
        async with self._sessions() as session:
            row = await session.get(ScheduledRewardRow, address)
            return row.amount if row is not None else 0

    async def iter_log(
        self, after: int | None = None, page_size: int = 1000,
    ) -> AsyncIterator[list[LogEntry]]:
        cursor = after or 0
        while True:
            async with self._sessions() as session:
                result = await session.scalars(
                    select(RewardLogRow)
                    .where(RewardLogRow.id > cursor)
                    .order_by(RewardLogRow.id)
                    .limit(page_size)
                )
                page = [_to_entry(row) for row in result.all()]
            if not page:
                return
            yield page
            if len(page) < page_size:
                return
            cursor = page[-1].id

    async def trim_log(self, now: datetime) -> int:
        cutoff = now - timedelta(days=self.retention_days)
        removed = 0
        async with self._sessions() as session, session.begin():
            result = await session.execute(
                delete(RewardLogRow).where(RewardLogRow.timestamp < cutoff)
            )
            removed += result.rowcount or 0

            if self.max_log_entries is not None:
                total = await session.scalar(select(func.count()).select_from(RewardLogRow))
                excess = (total or 0) - self.max_log_entries
                if excess > 0:
                    oldest_kept = await session.scalar(
                        select(RewardLogRow.id)
                        .order_by(RewardLogRow.id)
                        .offset(excess)
                        .limit(1)
                    )
                    stmt = delete(RewardLogRow)
                    if oldest_kept is not None:
                        stmt = stmt.where(RewardLogRow.id < oldest_kept)
                    result = await session.execute(stmt)
                    removed += result.rowcount or 0
        return removed


__all__ = ["SqlLedgerStore"]
