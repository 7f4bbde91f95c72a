"""Ledger mutation service: authorized increases and payout confirmations.

Both mutations follow the same protocol:
1. Validate request shapes (fail fast, nothing touched)
2. Short-circuit when only the burn address was submitted
3. Verify the signature over the submitted lists against the allow-list
4. Compute deltas
5. Apply deltas + append log entries atomically under exclusive access
6. Return the resulting balances
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Iterable, Sequence

import bittensor as bt

from .accounting import (
    exclude_burn_address,
    normalize_participants,
    parse_positive_int,
    rewards_to_deltas,
    scores_to_deltas,
)
from .errors import NegativeBalanceError, TransientIOError, ValidationError
from .lock import LEDGER_RESOURCE, ExclusiveAccess, LocalExclusiveAccess
from .models import BalanceDelta, LogEntry, SignaturePayload
from .retry import classify_ledger_error, retry_async
from .signer import verify_authorized
from .store.interface import LedgerStore


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LedgerService:
    """Entry points that read and mutate the scheduled rewards ledger."""

    def __init__(
        self,
        store: LedgerStore,
        signer_addresses: Iterable[str],
        exclusive_access: ExclusiveAccess | None = None,
        clock: Callable[[], datetime] = _utcnow,
        apply_retries: int = 3,
        retry_delay: float = 0.1,
    ):
        self.store = store
        self.signer_addresses = list(signer_addresses)
        if not self.signer_addresses:
            raise ValueError("At least one signer address is required")
        self.exclusive_access = exclusive_access or LocalExclusiveAccess()
        self.clock = clock
        self.apply_retries = apply_retries
        self.retry_delay = retry_delay

    # -- Mutations --

    async def increase(
        self,
        participants: Sequence[object],
        scores: Sequence[object],
        signature: SignaturePayload,
    ) -> dict[str, int]:
        """Convert scores into rewards and add them to the participants' balances."""
        addresses, values = self._validate(participants, scores, "scores")
        kept_addresses, kept_scores = exclude_burn_address(addresses, values)
        if not kept_addresses:
            return {}

        signer = verify_authorized(addresses, values, signature, self.signer_addresses)

        deltas = [
            BalanceDelta(address=a, delta=d, score=s)
            for a, s, d in zip(kept_addresses, kept_scores, scores_to_deltas(kept_scores))
        ]
        updated = await self._apply(deltas, allow_negative=True)
        bt.logging.info({"ledger_mutation": {
            "op": "increase",
            "signer": signer,
            "participants": len(deltas),
            "total_delta": str(sum(d.delta for d in deltas)),
        }})
        return updated

    async def mark_paid(
        self,
        participants: Sequence[object],
        rewards: Sequence[object],
        signature: SignaturePayload,
    ) -> dict[str, int]:
        """Deduct on-chain payouts. Rejects the whole batch if any balance would go negative."""
        addresses, values = self._validate(participants, rewards, "rewards")
        kept_addresses, kept_rewards = exclude_burn_address(addresses, values)
        if not kept_addresses:
            return {}

        signer = verify_authorized(addresses, values, signature, self.signer_addresses)

        deltas = [
            BalanceDelta(address=a, delta=d)
            for a, d in zip(kept_addresses, rewards_to_deltas(kept_rewards))
        ]
        try:
            updated = await self._apply(deltas, allow_negative=False)
        except NegativeBalanceError as e:
            bt.logging.warning({"ledger_mutation": {
                "op": "mark_paid",
                "signer": signer,
                "rejected": "negative_balance",
                "address": e.address,
            }})
            raise
        bt.logging.info({"ledger_mutation": {
            "op": "mark_paid",
            "signer": signer,
            "participants": len(deltas),
            "total_paid": str(sum(kept_rewards)),
        }})
        return updated

    # -- Reads --

    async def get_all(self) -> dict[str, int]:
        return await self.store.get_balances()

    async def get_one(self, address: str) -> int:
        try:
            (normalized,) = normalize_participants([address])
        except ValidationError:
            return 0
        return await self.store.get_balance(normalized)

    def get_log(
        self, after: int | None = None, page_size: int = 1000,
    ) -> AsyncIterator[list[LogEntry]]:
        return self.store.iter_log(after=after, page_size=page_size)

    # -- Internals --

    def _validate(
        self, participants: Sequence[object], values: Sequence[object], field: str,
    ) -> tuple[list[str], list[int]]:
        if not isinstance(participants, (list, tuple)):
            raise ValidationError(".participants should be an array")
        if not isinstance(values, (list, tuple)):
            raise ValidationError(f".{field} should be an array")
        if len(participants) != len(values):
            raise ValidationError(f".participants and .{field} should have the same size")
        addresses = normalize_participants(participants)
        parsed = [parse_positive_int(v, field) for v in values]
        return addresses, parsed

    async def _apply(
        self, deltas: list[BalanceDelta], allow_negative: bool,
    ) -> dict[str, int]:
        async def _transaction() -> dict[str, int]:
            now = self.clock()
            updated = await self.store.apply_deltas(
                deltas, timestamp=now, allow_negative=allow_negative,
            )
            # Deltas are committed at this point; a failed trim is retried on the next mutation.
            try:
                removed = await self.store.trim_log(now)
            except TransientIOError as e:
                bt.logging.warning({"ledger_log": {"event": "trim_failed", "error": str(e)}})
            else:
                if removed:
                    bt.logging.debug({"ledger_log": {"event": "trimmed", "removed": removed}})
            return updated

        return await retry_async(
            lambda: self.exclusive_access.with_exclusive_access(LEDGER_RESOURCE, _transaction),
            classify=classify_ledger_error,
            retries=self.apply_retries,
            base_delay=self.retry_delay,
            max_delay=2.0,
            label="apply_deltas",
        )


__all__ = ["LedgerService"]
