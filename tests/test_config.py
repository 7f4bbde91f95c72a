import pydantic
import pytest

from spark_rewards.config import (
    DEFAULT_MIN_PAYOUT,
    load_distributor_settings,
    load_server_settings,
)
from spark_rewards.ledger.models import BURN_ADDRESS

from tests.conftest import ADDR_A, ADDR_B


def test_server_settings_from_env():
    settings = load_server_settings(environ={
        "SIGNER_ADDRESSES": f"{ADDR_A}, {ADDR_B},",
        "PORT": "9100",
        "REQUEST_LOGGING": "false",
        "LOG_MAX_ENTRIES": "500",
    })
    assert settings.signer_addresses == [ADDR_A, ADDR_B]
    assert settings.port == 9100
    assert settings.request_logging is False
    assert settings.log_max_entries == 500
    assert settings.redis_url is None


def test_env_wins_over_cli_overrides():
    settings = load_server_settings(
        overrides={"port": 7000, "host": "0.0.0.0", "database_url": None},
        environ={"SIGNER_ADDRESSES": ADDR_A, "PORT": "9100"},
    )
    assert settings.port == 9100
    assert settings.host == "0.0.0.0"
    assert settings.database_url.startswith("sqlite+aiosqlite")


def test_signers_required():
    with pytest.raises(pydantic.ValidationError):
        load_server_settings(environ={})
    with pytest.raises(pydantic.ValidationError):
        load_server_settings(environ={"SIGNER_ADDRESSES": " , "})


def test_burn_address_cannot_sign():
    with pytest.raises(pydantic.ValidationError):
        load_server_settings(environ={"SIGNER_ADDRESSES": f"{ADDR_A},{BURN_ADDRESS.lower()}"})


def test_distributor_settings():
    settings = load_distributor_settings(environ={
        "CONTRACT_ADDRESS": ADDR_A,
        "BATCH_SIZE": "50",
        "MIN_PAYOUT": str(10**18),
    })
    assert settings.contract_address == ADDR_A
    assert settings.batch_size == 50
    assert settings.min_payout == 10**18

    defaults = load_distributor_settings(environ={"CONTRACT_ADDRESS": ADDR_A})
    assert defaults.min_payout == DEFAULT_MIN_PAYOUT
    assert defaults.batch_size == 1000


def test_distributor_rejects_bad_batch_size():
    with pytest.raises(pydantic.ValidationError):
        load_distributor_settings(environ={"CONTRACT_ADDRESS": ADDR_A, "BATCH_SIZE": "0"})
    with pytest.raises(pydantic.ValidationError):
        load_distributor_settings(environ={})
