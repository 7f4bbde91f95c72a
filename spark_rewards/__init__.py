"""Off-chain ledger of scheduled rewards and the payout batch distributor."""

__version__ = "1.0.0"
