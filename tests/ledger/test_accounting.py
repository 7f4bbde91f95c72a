"""Tests for score -> reward conversion and request value parsing."""

import pytest

from spark_rewards.ledger.accounting import (
    exclude_burn_address,
    normalize_participants,
    parse_positive_int,
    rewards_to_deltas,
    scores_to_deltas,
)
from spark_rewards.ledger.errors import InvalidScore, ValidationError
from spark_rewards.ledger.models import BURN_ADDRESS, MAX_SCORE, ROUND_REWARD

from tests.conftest import ADDR_A, ADDR_B


class TestScoresToDeltas:

    def test_floor_division(self):
        assert scores_to_deltas([10, 100]) == [4566, 45662]

    def test_max_score_earns_full_round(self):
        assert scores_to_deltas([MAX_SCORE]) == [ROUND_REWARD]

    def test_huge_score_is_exact(self):
        """No float anywhere: 1e27 * ROUND_REWARD / 1e15 is exact."""
        (delta,) = scores_to_deltas([int("1000000000000000000000000000")])
        assert str(delta) == "456621004566210048000000000000"

    def test_smallest_score_floors(self):
        assert scores_to_deltas([1]) == [456]

    def test_fraction_below_one_unit_is_zero(self):
        assert scores_to_deltas([1], round_reward=3, max_score=4) == [0]

    def test_custom_constants(self):
        assert scores_to_deltas([3], round_reward=10, max_score=4) == [7]

    def test_rewards_negated(self):
        assert rewards_to_deltas([5, 1]) == [-5, -1]


class TestParsing:

    @pytest.mark.parametrize("value", ["1", "42", "1000000000000000000000000000"])
    def test_valid(self, value):
        assert parse_positive_int(value) == int(value)

    @pytest.mark.parametrize("value", ["0", "-1", "1.5", "abc", "", " 1", 1, None, "0x10"])
    def test_invalid(self, value):
        with pytest.raises(InvalidScore):
            parse_positive_int(value)

    def test_invalid_score_is_validation_error(self):
        with pytest.raises(ValidationError):
            parse_positive_int("nope", "rewards")


class TestParticipants:

    def test_checksums_lowercase(self):
        lower = BURN_ADDRESS.lower()
        assert normalize_participants([lower]) == [BURN_ADDRESS]

    def test_rejects_non_address(self):
        with pytest.raises(ValidationError):
            normalize_participants(["0x1234"])

    def test_rejects_non_string(self):
        with pytest.raises(ValidationError):
            normalize_participants([123])

    def test_burn_removed(self):
        addresses, values = exclude_burn_address([ADDR_A, BURN_ADDRESS, ADDR_B], [1, 2, 3])
        assert addresses == [ADDR_A, ADDR_B]
        assert values == [1, 3]

    def test_burn_only(self):
        assert exclude_burn_address([BURN_ADDRESS], [7]) == ([], [])
