"""Pydantic models for the rewards ledger API.

Request bodies:
- ScoresRequest: scorer-signed increments (participants + scores)
- PaidRequest: operator-signed payout confirmations (participants + rewards)

Amounts and scores are arbitrary-precision integers and travel as decimal
strings on the wire.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_serializer


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BURN_ADDRESS = "0x000000000000000000000000000000000000dEaD"

# Reward per round in attoFIL, and the score that earns all of it.
ROUND_REWARD = 456621004566210048
MAX_SCORE = 10**15


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class SignaturePayload(BaseModel):
    """Split ECDSA signature as produced by ethers' Signature.from()."""

    model_config = ConfigDict(extra="forbid")

    v: int
    r: str
    s: str


class ScoresRequest(BaseModel):
    """Body of POST /scores."""

    participants: list[str]
    scores: list[str]
    signature: SignaturePayload


class PaidRequest(BaseModel):
    """Body of POST /paid."""

    participants: list[str]
    rewards: list[str]
    signature: SignaturePayload


# ---------------------------------------------------------------------------
# Ledger records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceDelta:
    """One address' change within a mutation call."""

    address: str
    delta: int
    score: int | None = None


class LogEntry(BaseModel):
    """Append-only record of one balance change.

    `score` is only present for increases.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: int | None = Field(default=None, exclude=True)
    timestamp: datetime
    address: str
    score: int | None = None
    delta: int = Field(serialization_alias="scheduledRewardsDelta")

    @field_serializer("score", "delta")
    def _int_as_string(self, value: int | None) -> str | None:
        return None if value is None else str(value)

    def to_json(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


__all__ = [
    "BURN_ADDRESS",
    "MAX_SCORE",
    "ROUND_REWARD",
    "BalanceDelta",
    "LogEntry",
    "PaidRequest",
    "ScoresRequest",
    "SignaturePayload",
]
