"""Payout journal: local record tying on-chain transfers to mark-paid calls.

The ledger does not deduplicate payout confirmations, so the distributor
keeps its own record, keyed by the batch digest. Batch lifecycle:

    submitted   -> signed transaction about to be broadcast (tx hash known)
    transferred -> transaction confirmed on chain
    paid        -> ledger accepted the confirmation
    failed      -> transaction reverted, nothing moved
    resolved    -> cleared by the operator after manual reconciliation

A batch left `submitted` or `transferred` after a crash is picked up on the
next run: its receipt is awaited and the ledger confirmed, it is never
broadcast again.

State is persisted to a JSON file via write-to-temp + rename.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

SUBMITTED = "submitted"
TRANSFERRED = "transferred"
PAID = "paid"
FAILED = "failed"
RESOLVED = "resolved"

PENDING_STATES = (SUBMITTED, TRANSFERRED)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class JournalEntry:
    digest: str
    batch_index: int
    tx_hash: str
    participants: list[str]
    amounts: list[str]
    status: str
    updated_at: str

    @property
    def amounts_int(self) -> list[int]:
        return [int(a) for a in self.amounts]


class PayoutJournal:
    """Persistent digest -> JournalEntry map."""

    def __init__(self, path: str | os.PathLike):
        self.path = Path(path)
        self._entries: dict[str, JournalEntry] = {}
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        with open(self.path) as f:
            raw = json.load(f)
        self._entries = {digest: JournalEntry(**entry) for digest, entry in raw.items()}

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp, "w") as f:
            json.dump({d: asdict(e) for d, e in self._entries.items()}, f, indent=2, sort_keys=True)
        tmp.replace(self.path)

    def _set_status(self, digest: str, status: str) -> None:
        entry = self._entries[digest]
        entry.status = status
        entry.updated_at = _now()
        self._save()

    def get(self, digest: str) -> JournalEntry | None:
        return self._entries.get(digest)

    def entries(self) -> list[JournalEntry]:
        return sorted(self._entries.values(), key=lambda e: e.updated_at)

    def record_submitted(
        self,
        digest: str,
        batch_index: int,
        tx_hash: str,
        participants: list[str],
        amounts: list[int],
    ) -> None:
        self._entries[digest] = JournalEntry(
            digest=digest,
            batch_index=batch_index,
            tx_hash=tx_hash,
            participants=list(participants),
            amounts=[str(a) for a in amounts],
            status=SUBMITTED,
            updated_at=_now(),
        )
        self._save()

    def record_transferred(self, digest: str) -> None:
        self._set_status(digest, TRANSFERRED)

    def record_paid(self, digest: str) -> None:
        self._set_status(digest, PAID)

    def record_failed(self, digest: str) -> None:
        self._set_status(digest, FAILED)

    def resolve(self, digest: str) -> JournalEntry:
        """Operator override: stop retrying a pending batch."""
        if digest not in self._entries:
            raise KeyError(f"No journal entry for {digest}")
        self._set_status(digest, RESOLVED)
        return self._entries[digest]

    def pending(self) -> list[JournalEntry]:
        """Batches broadcast on chain but not yet confirmed to the ledger."""
        return [e for e in self.entries() if e.status in PENDING_STATES]


__all__ = [
    "FAILED",
    "PAID",
    "PENDING_STATES",
    "RESOLVED",
    "SUBMITTED",
    "TRANSFERRED",
    "JournalEntry",
    "PayoutJournal",
]
