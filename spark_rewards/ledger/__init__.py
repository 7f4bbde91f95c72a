"""Off-chain rewards ledger.

Scorers submit signed score batches which are converted to reward deltas;
the payout operator submits signed confirmations of on-chain payouts which
are deducted. Balances and an append-only change log are kept in a
pluggable store.
"""

from .accounting import scores_to_deltas
from .errors import (
    AuthorizationError,
    InvalidScore,
    InvalidSignature,
    LedgerError,
    NegativeBalanceError,
    TransientIOError,
    ValidationError,
)
from .models import BURN_ADDRESS, MAX_SCORE, ROUND_REWARD, LogEntry, SignaturePayload
from .service import LedgerService
from .signer import compute_digest, recover_signer, sign_digest

__all__ = [
    "AuthorizationError",
    "BURN_ADDRESS",
    "InvalidScore",
    "InvalidSignature",
    "LedgerError",
    "LedgerService",
    "LogEntry",
    "MAX_SCORE",
    "NegativeBalanceError",
    "ROUND_REWARD",
    "SignaturePayload",
    "TransientIOError",
    "ValidationError",
    "compute_digest",
    "recover_signer",
    "scores_to_deltas",
    "sign_digest",
]
