"""Batch distributor: pays scheduled rewards on chain and confirms them to the ledger.

Per run:
1. Finish any batch a previous run broadcast but never confirmed to the
   ledger (await its receipt if needed, never broadcast it again)
2. Snapshot balances, apply the compliance filter, sort largest first
3. For each fixed-size batch, sequentially:
   a. show it to the operator and ask for confirmation
   b. sign addBalances (value = batch sum), journal it as submitted,
      broadcast and wait for the receipt
   c. sign the batch digest and POST /paid, retrying transient failures forever

A definitive /paid rejection (e.g. negative balance) means the on-chain and
off-chain views diverged: the run stops with PaidRejected.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Sequence

import aiohttp
import bittensor as bt
import httpx

from spark_rewards.ledger.errors import ErrorKind
from spark_rewards.ledger.signer import compute_digest
from spark_rewards.ledger.retry import classify_http_error, retry_async

from .chain import ImpactEvaluator, PayoutSigner, TransferFailed, transaction_hash
from .client import LedgerClient
from .compliance import ComplianceFilter, Payable
from .journal import SUBMITTED, PayoutJournal
from .signer_queue import SignerQueue

ATTO = 10**18


class PaidRejected(Exception):
    """The ledger definitively refused a payout confirmation."""

    def __init__(self, batch_index: int, status: int, body: str):
        self.batch_index = batch_index
        self.status = status
        self.body = body
        super().__init__(f"Batch {batch_index + 1} rejected by ledger ({status}): {body}")


@dataclass
class DistributionResult:
    batches_total: int = 0
    batches_paid: int = 0
    resumed: int = 0
    total_paid: int = 0
    aborted: bool = False
    tx_hashes: list[str] = field(default_factory=list)


def partition(payables: Sequence[Payable], batch_size: int) -> list[list[Payable]]:
    """Split into consecutive batches of at most `batch_size` entries."""
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    return [list(payables[i:i + batch_size]) for i in range(0, len(payables), batch_size)]


def format_batch(batch: Sequence[Payable], index: int, count: int) -> str:
    lines = ["address,amount"]
    lines.extend(f"{p.address},{p.amount}" for p in batch)
    lines.append(f"^ Batch {index + 1}/{count}")
    return "\n".join(lines)


class BatchDistributor:
    """Drives one payout run."""

    def __init__(
        self,
        ledger: LedgerClient,
        compliance: ComplianceFilter,
        chain: ImpactEvaluator,
        signer: PayoutSigner,
        confirm: Callable[[str], Awaitable[bool]],
        journal: PayoutJournal | None = None,
        signer_queue: SignerQueue | None = None,
        batch_size: int = 1000,
        echo: Callable[[str], None] = print,
        retry_delay: float = 1.0,
    ):
        self.ledger = ledger
        self.compliance = compliance
        self.chain = chain
        self.signer = signer
        self.confirm = confirm
        self.journal = journal
        self.signer_queue = signer_queue or SignerQueue()
        self.batch_size = batch_size
        self.echo = echo
        self.retry_delay = retry_delay

    async def run(self, dry_run: bool = False) -> DistributionResult:
        result = DistributionResult()
        if not dry_run:
            result.resumed = await self.resume_pending()

        balances = await self.ledger.get_scheduled_rewards()
        payables = await self.compliance.apply(balances)
        if not payables:
            self.echo("No rewards to commit")
            return result

        batches = partition(payables, self.batch_size)
        result.batches_total = len(batches)
        total = sum(p.amount for p in payables)
        self.echo(
            f"About to send ~{-(-total // ATTO)} FIL (+gas) to {len(payables)} participants "
            f"in {len(batches)} batch(es) from {self.signer.address}"
        )
        if dry_run:
            for i, batch in enumerate(batches):
                self.echo(format_batch(batch, i, len(batches)))
            return result

        if not await self.confirm("Continue? ([y]es/[n]o) "):
            result.aborted = True
            return result

        for i, batch in enumerate(batches):
            self.echo(format_batch(batch, i, len(batches)))
            if not await self.confirm(f"Send batch {i + 1}/{len(batches)}? ([y]es/[n]o) "):
                bt.logging.info({"distributor": {"event": "aborted_by_operator", "batch": i + 1}})
                result.aborted = True
                return result

            tx_hash = await self._pay_batch(i, len(batches), batch)
            result.batches_paid += 1
            result.total_paid += sum(p.amount for p in batch)
            result.tx_hashes.append(tx_hash)

        self.echo("Done!")
        return result

    async def resume_pending(self) -> int:
        """Finish batches broadcast by a previous run but never marked paid."""
        if self.journal is None:
            return 0
        resumed = 0
        for entry in self.journal.pending():
            bt.logging.warning({"distributor": {
                "event": "resuming_batch",
                "batch": entry.batch_index + 1,
                "status": entry.status,
                "tx": entry.tx_hash,
                "participants": len(entry.participants),
            }})
            if entry.status == SUBMITTED:
                self.echo(f"Awaiting confirmation of {entry.tx_hash} from a previous run")
                try:
                    await self._await_transfer(entry.digest, entry.tx_hash)
                except TransferFailed:
                    # Reverted: balances were never debited and are paid from the fresh snapshot.
                    continue
            await self._confirm_paid(entry.batch_index, entry.participants, entry.amounts_int, entry.digest)
            resumed += 1
        return resumed

    async def _pay_batch(self, index: int, count: int, batch: Sequence[Payable]) -> str:
        addresses = [p.address for p in batch]
        amounts = [p.amount for p in batch]
        digest = compute_digest(addresses, amounts)

        if self.signer.interactive:
            self.echo("\aPlease approve on the signer...")
        tx = await self.chain.build_add_balances(self.signer.address, addresses, amounts)
        raw = await self.signer_queue.run(lambda: self.signer.sign_transaction(tx), "approve_transfer")
        tx_hash = transaction_hash(raw)
        if self.journal is not None:
            self.journal.record_submitted(digest, index, tx_hash, addresses, amounts)

        try:
            await retry_async(
                lambda: self.chain.send_raw(raw),
                classify=_classify_chain_error,
                base_delay=self.retry_delay,
                label="send_transaction",
            )
        except Exception:
            # Refused by the node: nothing was broadcast.
            if self.journal is not None:
                self.journal.record_failed(digest)
            raise
        self.echo(f"Awaiting confirmation of {tx_hash}")
        await self._await_transfer(digest, tx_hash)
        bt.logging.info({"distributor": {"event": "transfer_confirmed", "batch": index + 1, "tx": tx_hash}})

        if self.signer.interactive:
            self.echo(f"\aPlease sign batch {index + 1}/{count} on the signer...")
        await self._confirm_paid(index, addresses, amounts, digest)
        return tx_hash

    async def _await_transfer(self, digest: str, tx_hash: str) -> None:
        try:
            await self.chain.wait_for_confirmation(tx_hash)
        except TransferFailed:
            bt.logging.error({"distributor": {"event": "transfer_reverted", "tx": tx_hash}})
            if self.journal is not None:
                self.journal.record_failed(digest)
            raise
        if self.journal is not None:
            self.journal.record_transferred(digest)

    async def _confirm_paid(
        self, index: int, addresses: Sequence[str], amounts: Sequence[int], digest: str,
    ) -> None:
        signature = await self.signer_queue.run(lambda: self.signer.sign_digest(digest), "sign_batch")
        try:
            await retry_async(
                lambda: self.ledger.post_paid(addresses, amounts, signature),
                classify=classify_http_error,
                retries=None,
                base_delay=self.retry_delay,
                label=f"mark_paid_batch_{index + 1}",
            )
        except httpx.HTTPStatusError as e:
            raise PaidRejected(index, e.response.status_code, e.response.text) from e
        if self.journal is not None and self.journal.get(digest) is not None:
            self.journal.record_paid(digest)
        self.echo("OK")


def _classify_chain_error(exc: BaseException) -> ErrorKind:
    # Rebroadcasting the same signed bytes cannot pay twice.
    if isinstance(exc, (aiohttp.ClientError, asyncio.TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT
    return ErrorKind.DEFINITIVE


__all__ = [
    "BatchDistributor",
    "DistributionResult",
    "PaidRejected",
    "format_batch",
    "partition",
]
