"""Tests for the ledger mutation service over the in-memory store."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from spark_rewards.ledger.errors import (
    AuthorizationError,
    InvalidScore,
    NegativeBalanceError,
    TransientIOError,
    ValidationError,
)
from spark_rewards.ledger.accounting import scores_to_deltas
from spark_rewards.ledger.models import BURN_ADDRESS
from spark_rewards.ledger.service import LedgerService
from spark_rewards.ledger.store.memory import MemoryLedgerStore

from tests.conftest import ADDR_A, ADDR_B, ADDR_C, sign_request


class _Clock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return _Clock(datetime(2024, 6, 1, tzinfo=timezone.utc))


@pytest.fixture
def store():
    return MemoryLedgerStore(retention_days=30)


@pytest.fixture
def service(store, scorer, clock):
    return LedgerService(store=store, signer_addresses=[scorer.address], clock=clock)


async def _increase(service, account, scores: dict[str, str]):
    participants, values = list(scores), list(scores.values())
    return await service.increase(participants, values, sign_request(account, participants, values))


async def _paid(service, account, rewards: dict[str, str]):
    participants, values = list(rewards), list(rewards.values())
    return await service.mark_paid(participants, values, sign_request(account, participants, values))


async def _log(service) -> list:
    entries = []
    async for page in service.get_log():
        entries.extend(page)
    return entries


@pytest.mark.asyncio
class TestIncrease:

    async def test_scenario(self, service, scorer):
        assert await _increase(service, scorer, {ADDR_A: "10", ADDR_B: "100"}) == {ADDR_A: 4566, ADDR_B: 45662}
        assert await _increase(service, scorer, {ADDR_A: "10"}) == {ADDR_A: 9132}
        assert await _paid(service, scorer, {ADDR_A: "9132"}) == {ADDR_A: 0}
        with pytest.raises(NegativeBalanceError) as exc:
            await _paid(service, scorer, {ADDR_A: "1"})
        assert exc.value.address == ADDR_A
        assert await service.get_one(ADDR_A) == 0

    async def test_sum_of_balances_matches_deltas(self, service, scorer):
        await _increase(service, scorer, {ADDR_A: "7"})
        before = sum((await service.get_all()).values())
        scores = {ADDR_A: "123456789", ADDR_B: "987654321012", ADDR_C: "5"}
        await _increase(service, scorer, scores)
        after = sum((await service.get_all()).values())
        assert after - before == sum(scores_to_deltas([int(s) for s in scores.values()]))

    async def test_big_score_exact(self, service, scorer):
        result = await _increase(service, scorer, {ADDR_A: "1000000000000000000000000000"})
        assert str(result[ADDR_A]) == "456621004566210048000000000000"

    async def test_lowercase_addresses_share_balance(self, service, scorer):
        checksummed = scorer.address
        await _increase(service, scorer, {checksummed.lower(): "10"})
        await _increase(service, scorer, {checksummed: "10"})
        assert await service.get_one(checksummed) == 9132

    async def test_burn_address_excluded(self, service, scorer, store):
        result = await _increase(service, scorer, {ADDR_A: "10", BURN_ADDRESS: "100"})
        assert result == {ADDR_A: 4566}
        assert BURN_ADDRESS not in await service.get_all()
        assert [e.address for e in await _log(service)] == [ADDR_A]

    async def test_burn_only_is_noop(self, service, scorer):
        assert await _increase(service, scorer, {BURN_ADDRESS: "100"}) == {}
        assert await service.get_all() == {}
        assert await _log(service) == []

    async def test_wrong_signer_rejected(self, service, outsider):
        with pytest.raises(AuthorizationError):
            await _increase(service, outsider, {ADDR_A: "10"})
        assert await service.get_all() == {}

    async def test_signature_over_different_lists(self, service, scorer):
        sig = sign_request(scorer, [ADDR_A], ["10"])
        with pytest.raises(AuthorizationError):
            await service.increase([ADDR_A], ["11"], sig)
        with pytest.raises(AuthorizationError):
            await service.increase([ADDR_B], ["10"], sig)
        assert await _log(service) == []

    async def test_length_mismatch(self, service, scorer):
        sig = sign_request(scorer, [ADDR_A], ["10"])
        with pytest.raises(ValidationError):
            await service.increase([ADDR_A, ADDR_B], ["10"], sig)

    async def test_invalid_address(self, service, scorer):
        sig = sign_request(scorer, [ADDR_A], ["10"])
        with pytest.raises(ValidationError):
            await service.increase(["0xnope"], ["10"], sig)

    @pytest.mark.parametrize("score", ["0", "-5", "1e3", "ten"])
    async def test_invalid_score(self, service, scorer, score):
        sig = sign_request(scorer, [ADDR_A], ["10"])
        with pytest.raises(InvalidScore):
            await service.increase([ADDR_A], [score], sig)
        assert await service.get_all() == {}


@pytest.mark.asyncio
class TestMarkPaid:

    async def test_negative_rolls_back_whole_batch(self, service, scorer):
        await _increase(service, scorer, {ADDR_A: "100", ADDR_B: "10"})
        log_before = await _log(service)
        with pytest.raises(NegativeBalanceError) as exc:
            await _paid(service, scorer, {ADDR_A: "100", ADDR_B: "999999"})
        assert exc.value.address == ADDR_B
        assert await service.get_all() == {ADDR_A: 45662, ADDR_B: 4566}
        assert await _log(service) == log_before

    async def test_unknown_address_cannot_be_paid(self, service, scorer):
        with pytest.raises(NegativeBalanceError):
            await _paid(service, scorer, {ADDR_C: "1"})
        assert await service.get_one(ADDR_C) == 0

    async def test_partial_payout(self, service, scorer):
        await _increase(service, scorer, {ADDR_A: "100"})
        assert await _paid(service, scorer, {ADDR_A: "662"}) == {ADDR_A: 45000}

    async def test_log_entry_has_no_score(self, service, scorer):
        await _increase(service, scorer, {ADDR_A: "100"})
        await _paid(service, scorer, {ADDR_A: "1"})
        entries = await _log(service)
        assert entries[-1].score is None
        assert entries[-1].delta == -1
        assert "score" not in entries[-1].to_json()

    async def test_zero_reward_rejected(self, service, scorer):
        sig = sign_request(scorer, [ADDR_A], ["0"])
        with pytest.raises(ValidationError):
            await service.mark_paid([ADDR_A], ["0"], sig)


@pytest.mark.asyncio
class TestReads:

    async def test_unknown_address_is_zero(self, service):
        assert await service.get_one(ADDR_A) == 0

    async def test_malformed_address_is_zero(self, service):
        assert await service.get_one("not-an-address") == 0

    async def test_log_order_and_shape(self, service, scorer, clock):
        await _increase(service, scorer, {ADDR_A: "10", ADDR_B: "100"})
        clock.now += timedelta(minutes=1)
        await _paid(service, scorer, {ADDR_B: "5"})
        entries = [e.to_json() for e in await _log(service)]
        assert entries == [
            {"timestamp": "2024-06-01T00:00:00Z", "address": ADDR_A, "score": "10", "scheduledRewardsDelta": "4566"},
            {"timestamp": "2024-06-01T00:00:00Z", "address": ADDR_B, "score": "100", "scheduledRewardsDelta": "45662"},
            {"timestamp": "2024-06-01T00:01:00Z", "address": ADDR_B, "scheduledRewardsDelta": "-5"},
        ]

    async def test_log_paging(self, service, scorer):
        for _ in range(5):
            await _increase(service, scorer, {ADDR_A: "10"})
        pages = [page async for page in service.get_log(page_size=2)]
        assert [len(p) for p in pages] == [2, 2, 1]
        after = pages[0][-1].id
        rest = [e async for page in service.get_log(after=after) for e in page]
        assert len(rest) == 3

    async def test_retention_drops_old_entries(self, service, scorer, clock):
        await _increase(service, scorer, {ADDR_A: "10"})
        clock.now += timedelta(days=31)
        await _increase(service, scorer, {ADDR_B: "10"})
        assert [e.address for e in await _log(service)] == [ADDR_B]
        # Balances are never trimmed.
        assert await service.get_one(ADDR_A) == 4566

    async def test_max_entries_trim(self, scorer, clock):
        service = LedgerService(
            store=MemoryLedgerStore(max_log_entries=2),
            signer_addresses=[scorer.address],
            clock=clock,
        )
        await _increase(service, scorer, {ADDR_A: "10", ADDR_B: "10", ADDR_C: "10"})
        assert [e.address for e in await _log(service)] == [ADDR_B, ADDR_C]


@pytest.mark.asyncio
class TestConcurrency:

    async def test_concurrent_increases_do_not_lose_updates(self, service, scorer, store):
        original = store.apply_deltas

        async def slow_apply(*args, **kwargs):
            # Yield between read and write to expose interleaving.
            await asyncio.sleep(0)
            return await original(*args, **kwargs)

        store.apply_deltas = slow_apply
        await asyncio.gather(*(_increase(service, scorer, {ADDR_A: "10"}) for _ in range(20)))
        assert await service.get_one(ADDR_A) == 4566 * 20
        assert len(await _log(service)) == 20


@pytest.mark.asyncio
class TestTransientFailures:

    def _flaky(self, store, method, failures):
        original = getattr(store, method)
        calls = {"n": 0}

        async def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] <= failures:
                raise TransientIOError("hiccup")
            return await original(*args, **kwargs)

        setattr(store, method, flaky)
        return calls

    async def test_single_store_hiccup_is_retried(self, store, scorer, clock):
        service = LedgerService(store=store, signer_addresses=[scorer.address], clock=clock, retry_delay=0.001)
        calls = self._flaky(store, "apply_deltas", 1)
        assert await _increase(service, scorer, {ADDR_A: "10"}) == {ADDR_A: 4566}
        assert calls["n"] == 2
        assert len(await _log(service)) == 1

    async def test_exhausted_retries_surface(self, store, scorer, clock):
        service = LedgerService(
            store=store, signer_addresses=[scorer.address], clock=clock, apply_retries=2, retry_delay=0.001,
        )
        calls = self._flaky(store, "apply_deltas", 10)
        with pytest.raises(TransientIOError):
            await _increase(service, scorer, {ADDR_A: "10"})
        assert calls["n"] == 3
        assert await service.get_one(ADDR_A) == 0

    async def test_failed_trim_does_not_reapply(self, store, scorer, clock):
        service = LedgerService(store=store, signer_addresses=[scorer.address], clock=clock, retry_delay=0.001)
        self._flaky(store, "trim_log", 1)
        assert await _increase(service, scorer, {ADDR_A: "10"}) == {ADDR_A: 4566}
        assert await service.get_one(ADDR_A) == 4566

    async def test_definitive_errors_not_retried(self, store, scorer, clock):
        service = LedgerService(store=store, signer_addresses=[scorer.address], clock=clock, retry_delay=0.001)
        await _increase(service, scorer, {ADDR_A: "10"})
        original = store.apply_deltas
        calls = {"n": 0}

        async def counting(*args, **kwargs):
            calls["n"] += 1
            return await original(*args, **kwargs)

        store.apply_deltas = counting
        with pytest.raises(NegativeBalanceError):
            await _paid(service, scorer, {ADDR_A: "4567"})
        assert calls["n"] == 1


def test_requires_signers():
    with pytest.raises(ValueError):
        LedgerService(store=MemoryLedgerStore(), signer_addresses=[])
