"""Reward accounting: converts performance scores into balance deltas.

All arithmetic is on Python ints. Amounts are attoFIL and must never pass
through floats.
"""

from __future__ import annotations

import re
from typing import Sequence

from eth_utils import is_address, to_checksum_address

from .errors import InvalidScore, ValidationError
from .models import BURN_ADDRESS, MAX_SCORE, ROUND_REWARD

_DIGITS = re.compile(r"^[0-9]+$")


def parse_positive_int(value: object, field: str = "scores") -> int:
    """Parse a positive integer encoded as a decimal string."""
    if not isinstance(value, str) or not _DIGITS.match(value):
        raise InvalidScore(f"All .{field} values should be positive numbers encoded as string")
    parsed = int(value)
    if parsed <= 0:
        raise InvalidScore(f"All .{field} values should be positive numbers encoded as string")
    return parsed


def normalize_participants(participants: Sequence[object]) -> list[str]:
    """Validate 0x addresses and return them checksummed."""
    if not all(isinstance(a, str) and is_address(a) for a in participants):
        raise ValidationError("All .participants should be 0x addresses")
    return [to_checksum_address(a) for a in participants]


def exclude_burn_address(
    participants: Sequence[str], values: Sequence[int],
) -> tuple[list[str], list[int]]:
    """Drop the burn address and its value. Not an error."""
    kept = [(a, v) for a, v in zip(participants, values) if a != BURN_ADDRESS]
    return [a for a, _ in kept], [v for _, v in kept]


def scores_to_deltas(
    scores: Sequence[int],
    round_reward: int = ROUND_REWARD,
    max_score: int = MAX_SCORE,
) -> list[int]:
    """floor(score * round_reward / max_score) per score."""
    return [score * round_reward // max_score for score in scores]


def rewards_to_deltas(rewards: Sequence[int]) -> list[int]:
    """Payouts are applied as negated amounts."""
    return [-reward for reward in rewards]


__all__ = [
    "exclude_burn_address",
    "normalize_participants",
    "parse_positive_int",
    "rewards_to_deltas",
    "scores_to_deltas",
]
