"""Runtime settings for the ledger server and the payout distributor.

Values come from environment variables (a .env file is loaded outside test
mode). Entrypoints may pass CLI values as defaults; the environment wins.
"""

from __future__ import annotations

import os
from typing import Any, Mapping

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from spark_rewards.ledger.models import BURN_ADDRESS

DEFAULT_MIN_PAYOUT = 10**17  # 0.1 FIL


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes")


def _split_addresses(value: Any) -> list[str]:
    if isinstance(value, str):
        return [a.strip() for a in value.split(",") if a.strip()]
    return list(value or [])


class ServerSettings(BaseModel):
    """Ledger HTTP server."""

    host: str = "127.0.0.1"
    port: int = 8000
    database_url: str = "sqlite+aiosqlite:///spark_rewards.db"
    signer_addresses: list[str] = Field(min_length=1)
    redis_url: str | None = None
    lock_lease_seconds: float = 20.0
    log_retention_days: int = 30
    log_max_entries: int | None = None
    request_logging: bool = True

    @field_validator("signer_addresses", mode="before")
    @classmethod
    def split_signer_addresses(cls, value: Any) -> list[str]:
        return _split_addresses(value)

    @field_validator("signer_addresses")
    @classmethod
    def reject_burn_signer(cls, value: list[str]) -> list[str]:
        if any(a.lower() == BURN_ADDRESS.lower() for a in value):
            raise ValueError("the burn address cannot be a signer")
        return value


class DistributorSettings(BaseModel):
    """Payout distributor (commit-rewards)."""

    spark_rewards_url: str = "http://127.0.0.1:8000"
    rpc_url: str = "https://api.node.glif.io/rpc/v1"
    rpc_token: str | None = None
    contract_address: str
    wallet_key: str | None = None
    wallet_seed: str | None = None
    screening_url: str = "https://station-wallet-screening.fly.dev"
    min_payout: int = DEFAULT_MIN_PAYOUT
    batch_size: int = Field(default=1000, gt=0)
    screening_concurrency: int = Field(default=100, gt=0)
    journal_path: str = "payout_journal.json"


_SERVER_ENV = {
    "HOST": "host",
    "PORT": "port",
    "DATABASE_URL": "database_url",
    "SIGNER_ADDRESSES": "signer_addresses",
    "REDIS_URL": "redis_url",
    "LOCK_LEASE_SECONDS": "lock_lease_seconds",
    "LOG_RETENTION_DAYS": "log_retention_days",
    "LOG_MAX_ENTRIES": "log_max_entries",
    "REQUEST_LOGGING": "request_logging",
}

_DISTRIBUTOR_ENV = {
    "SPARK_REWARDS_URL": "spark_rewards_url",
    "RPC_URL": "rpc_url",
    "RPC_TOKEN": "rpc_token",
    "CONTRACT_ADDRESS": "contract_address",
    "WALLET_KEY": "wallet_key",
    "WALLET_SEED": "wallet_seed",
    "SCREENING_URL": "screening_url",
    "MIN_PAYOUT": "min_payout",
    "BATCH_SIZE": "batch_size",
    "SCREENING_CONCURRENCY": "screening_concurrency",
    "JOURNAL_PATH": "journal_path",
}


def _collect(
    mapping: Mapping[str, str],
    environ: Mapping[str, str],
    overrides: Mapping[str, Any] | None,
) -> dict[str, Any]:
    values = {k: v for k, v in (overrides or {}).items() if v is not None}
    for env_name, field_name in mapping.items():
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        values[field_name] = _truthy(raw) if field_name == "request_logging" else raw
    return values


def _maybe_load_dotenv() -> None:
    if not _truthy(os.environ.get("SPARK_REWARDS_TEST_MODE", "")):
        load_dotenv()


def load_server_settings(
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> ServerSettings:
    if environ is None:
        _maybe_load_dotenv()
        environ = os.environ
    return ServerSettings(**_collect(_SERVER_ENV, environ, overrides))


def load_distributor_settings(
    overrides: Mapping[str, Any] | None = None,
    environ: Mapping[str, str] | None = None,
) -> DistributorSettings:
    if environ is None:
        _maybe_load_dotenv()
        environ = os.environ
    return DistributorSettings(**_collect(_DISTRIBUTOR_ENV, environ, overrides))


__all__ = [
    "DEFAULT_MIN_PAYOUT",
    "DistributorSettings",
    "ServerSettings",
    "load_distributor_settings",
    "load_server_settings",
]
