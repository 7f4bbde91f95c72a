"""Tables backing SqlLedgerStore."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class Base(DeclarativeBase):
    pass


class IntAmount(TypeDecorator):
    """Arbitrary-precision integer stored as decimal text.

    SQLite has no exact numeric type wider than 64 bits, and balances of
    a few thousand FIL in attoFIL already exceed that.
    """

    impl = String(80)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(int(value))

    def process_result_value(self, value, dialect):
        return None if value is None else int(value)


class ScheduledRewardRow(Base):
    """Current balance per participant address."""

    __tablename__ = "scheduled_rewards"

    address: Mapped[str] = mapped_column(
        String(42),
        primary_key=True,
        comment="Checksummed 0x address",
    )
    amount: Mapped[int] = mapped_column(
        IntAmount,
        nullable=False,
        default=0,
        comment="Net attoFIL owed",
    )


class RewardLogRow(Base):
    """Append-only history of balance changes."""

    __tablename__ = "reward_log"
    __table_args__ = (Index("ix_reward_log_timestamp", "timestamp"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    address: Mapped[str] = mapped_column(String(42), nullable=False)
    score: Mapped[int | None] = mapped_column(
        IntAmount,
        nullable=True,
        comment="Only set for score increases",
    )
    delta: Mapped[int] = mapped_column(IntAmount, nullable=False)


__all__ = ["Base", "IntAmount", "RewardLogRow", "ScheduledRewardRow"]
