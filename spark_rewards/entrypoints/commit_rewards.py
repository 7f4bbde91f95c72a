"""Operator CLI: pay scheduled rewards on chain and confirm them to the ledger.

Usage:
    CONTRACT_ADDRESS=0x... WALLET_KEY=0x... python -m spark_rewards.entrypoints.commit_rewards
    python -m spark_rewards.entrypoints.commit_rewards --dry-run
    python -m spark_rewards.entrypoints.commit_rewards --journal-list
    python -m spark_rewards.entrypoints.commit_rewards --journal-resolve 0x<digest>

A batch left pending in the payout journal is retried at the start of every
run. After reconciling one by hand (e.g. a batch the ledger rejects), clear
it with --journal-resolve.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import re
import sys
from typing import Callable

import bittensor as bt
import pydantic

from spark_rewards.config import DistributorSettings, load_distributor_settings
from spark_rewards.distributor.chain import ImpactEvaluator, LocalSigner
from spark_rewards.distributor.client import LedgerClient
from spark_rewards.distributor.compliance import ComplianceFilter, HTTPScreening
from spark_rewards.distributor.distributor import BatchDistributor, PaidRejected
from spark_rewards.distributor.journal import PayoutJournal

_YES = re.compile(r"^y(es)?$", re.IGNORECASE)


async def ask(prompt: str) -> bool:
    """Ask the operator on stdin. Only an explicit yes continues."""
    answer = await asyncio.to_thread(input, prompt)
    return bool(_YES.match(answer.strip()))


def _build_signer(settings: DistributorSettings) -> LocalSigner:
    if settings.wallet_key:
        return LocalSigner.from_key(settings.wallet_key)
    if settings.wallet_seed:
        return LocalSigner.from_mnemonic(settings.wallet_seed)
    raise ValueError("WALLET_KEY or WALLET_SEED is required")


def journal_command(path: str, resolve: str | None = None, echo: Callable[[str], None] = print) -> int:
    """List pending journal entries, or mark one resolved."""
    journal = PayoutJournal(path)
    if resolve is not None:
        try:
            entry = journal.resolve(resolve)
        except KeyError:
            echo(f"No journal entry for {resolve}")
            return 1
        bt.logging.warning({"commit_rewards": {"event": "journal_resolved", "digest": entry.digest, "tx": entry.tx_hash}})
        echo(f"Resolved batch {entry.batch_index + 1} ({entry.tx_hash})")
        return 0

    pending = journal.pending()
    if not pending:
        echo("No pending batches")
    for entry in pending:
        echo(
            f"{entry.digest} batch={entry.batch_index + 1} status={entry.status} tx={entry.tx_hash} "
            f"participants={len(entry.participants)} total={sum(entry.amounts_int)}"
        )
    return 0


async def run(settings: DistributorSettings, dry_run: bool = False) -> int:
    signer = _build_signer(settings)
    chain = ImpactEvaluator.from_rpc(settings.rpc_url, settings.contract_address, settings.rpc_token)
    ledger = LedgerClient(settings.spark_rewards_url)
    screening = HTTPScreening(settings.screening_url)
    distributor = BatchDistributor(
        ledger=ledger,
        compliance=ComplianceFilter(
            screening=screening,
            min_payout=settings.min_payout,
            scheduled_on_chain=chain.rewards_scheduled_for,
            concurrency=settings.screening_concurrency,
        ),
        chain=chain,
        signer=signer,
        confirm=ask,
        journal=PayoutJournal(settings.journal_path),
        batch_size=settings.batch_size,
    )
    try:
        result = await distributor.run(dry_run=dry_run)
    except PaidRejected as e:
        bt.logging.error({"commit_rewards": {
            "event": "paid_rejected",
            "batch": e.batch_index + 1,
            "status": e.status,
            "body": e.body,
        }})
        return 2
    finally:
        await distributor.signer_queue.close()
        await ledger.close()
        await screening.close()
        await chain.close()

    bt.logging.info({"commit_rewards": {
        "batches_paid": result.batches_paid,
        "batches_total": result.batches_total,
        "resumed": result.resumed,
        "total_paid": str(result.total_paid),
        "aborted": result.aborted,
    }})
    return 1 if result.aborted else 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Commit scheduled rewards on chain")
    bt.logging.add_args(parser)
    parser.add_argument("--dry-run", action="store_true", help="Filter and print batches without paying")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--journal", type=str, default=None, help="Payout journal path")
    parser.add_argument("--journal-list", action="store_true", help="List batches pending in the journal")
    parser.add_argument("--journal-resolve", type=str, default=None, metavar="DIGEST",
                        help="Stop retrying a pending batch after manual reconciliation")
    args = parser.parse_args()

    if args.journal_list or args.journal_resolve:
        path = (
            os.environ.get("JOURNAL_PATH")
            or args.journal
            or DistributorSettings.model_fields["journal_path"].default
        )
        sys.exit(journal_command(path, resolve=args.journal_resolve))

    try:
        settings = load_distributor_settings({
            "batch_size": args.batch_size,
            "journal_path": args.journal,
        })
    except pydantic.ValidationError as e:
        bt.logging.error({"commit_rewards_config": str(e)})
        sys.exit(1)

    sys.exit(asyncio.run(run(settings, dry_run=args.dry_run)))


if __name__ == "__main__":
    main()
