"""SQLAlchemy schema for the SQL ledger store."""

from .schema import Base, IntAmount, RewardLogRow, ScheduledRewardRow

__all__ = ["Base", "IntAmount", "RewardLogRow", "ScheduledRewardRow"]
