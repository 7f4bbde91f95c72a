"""Shared fixtures: throwaway signing keys and request signing."""

from __future__ import annotations

import os

import pytest
from eth_account import Account

from spark_rewards.ledger.signer import compute_digest, sign_digest

os.environ.setdefault("SPARK_REWARDS_TEST_MODE", "true")

ADDR_A = "0x1111111111111111111111111111111111111111"
ADDR_B = "0x2222222222222222222222222222222222222222"
ADDR_C = "0x3333333333333333333333333333333333333333"


@pytest.fixture
def scorer():
    return Account.create()


@pytest.fixture
def outsider():
    return Account.create()


def sign_request(account, participants, values):
    """Sign `(participants, values)` the way scorers and the operator do."""
    digest = compute_digest(participants, [int(v) for v in values])
    return sign_digest(digest, account.key)
