"""HTTP client for the rewards ledger API, used by the distributor."""

from __future__ import annotations

from typing import Sequence

import bittensor as bt
import httpx

from spark_rewards.ledger.models import SignaturePayload
from spark_rewards.ledger.retry import retry_async


class LedgerClient:
    """Reads scheduled rewards and posts payout confirmations."""

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

    async def get_scheduled_rewards(self) -> dict[str, int]:
        """Snapshot of all balances, retried on transient failures."""
        async def _fetch() -> dict[str, int]:
            resp = await self._client.get(f"{self.base_url}/scheduled-rewards")
            resp.raise_for_status()
            return {address: int(amount) for address, amount in resp.json().items()}

        return await retry_async(_fetch, retries=5, base_delay=self.retry_delay, label="get_scheduled_rewards")

    async def post_paid(
        self,
        participants: Sequence[str],
        rewards: Sequence[int],
        signature: SignaturePayload,
    ) -> dict[str, int]:
        """Submit one payout confirmation. Raises httpx.HTTPStatusError on rejection."""
        resp = await self._client.post(
            f"{self.base_url}/paid",
            json={
                "participants": list(participants),
                "rewards": [str(amount) for amount in rewards],
                "signature": signature.model_dump(),
            },
        )
        if resp.status_code != 200:
            bt.logging.error({"ledger_client": {"endpoint": "paid", "status": resp.status_code, "body": resp.text[:500]}})
        resp.raise_for_status()
        return {address: int(amount) for address, amount in resp.json().items()}


__all__ = ["LedgerClient"]
