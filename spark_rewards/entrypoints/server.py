"""Ledger server entrypoint.

Serves the rewards ledger HTTP API until SIGINT/SIGTERM.

Usage:
    SIGNER_ADDRESSES=0xabc...,0xdef... python -m spark_rewards.entrypoints.server --port 8000
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys

import bittensor as bt
import pydantic

from spark_rewards.config import ServerSettings, load_server_settings
from spark_rewards.ledger.lock import LocalExclusiveAccess, RedisExclusiveAccess
from spark_rewards.ledger.service import LedgerService
from spark_rewards.ledger.store.http_server import LedgerHTTPServer
from spark_rewards.ledger.store.memory import MemoryLedgerStore
from spark_rewards.ledger.store.sql import SqlLedgerStore


async def build_service(settings: ServerSettings) -> tuple[LedgerService, list]:
    """Wire store, lock and service. Returns the service and resources to close."""
    closeables: list = []
    if settings.database_url.startswith("memory://"):
        store = MemoryLedgerStore(
            retention_days=settings.log_retention_days,
            max_log_entries=settings.log_max_entries,
        )
    else:
        store = SqlLedgerStore.from_url(
            settings.database_url,
            retention_days=settings.log_retention_days,
            max_log_entries=settings.log_max_entries,
        )
        await store.init()
        closeables.append(store)

    if settings.redis_url:
        access = RedisExclusiveAccess.from_url(settings.redis_url, lease_seconds=settings.lock_lease_seconds)
        closeables.append(access)
    else:
        access = LocalExclusiveAccess()

    service = LedgerService(
        store=store,
        signer_addresses=settings.signer_addresses,
        exclusive_access=access,
    )
    return service, closeables


async def _serve(settings: ServerSettings, stop: asyncio.Event) -> None:
    service, closeables = await build_service(settings)
    server = LedgerHTTPServer(
        service,
        host=settings.host,
        port=settings.port,
        request_logging=settings.request_logging,
    )
    await server.start()
    try:
        await stop.wait()
    finally:
        await server.stop()
        for resource in closeables:
            await resource.close()


def main() -> None:
    parser = argparse.ArgumentParser(description="Spark rewards ledger server")
    bt.logging.add_args(parser)
    parser.add_argument("--host", type=str, default=None)
    parser.add_argument("--port", type=int, default=None)
    parser.add_argument("--database-url", type=str, default=None)
    args = parser.parse_args()

    try:
        settings = load_server_settings({
            "host": args.host,
            "port": args.port,
            "database_url": args.database_url,
        })
    except pydantic.ValidationError as e:
        bt.logging.error({"server_config": str(e)})
        sys.exit(1)

    bt.logging.info({
        "server_config": {
            "host": settings.host,
            "port": settings.port,
            "signers": settings.signer_addresses,
            "redis_lock": bool(settings.redis_url),
            "log_retention_days": settings.log_retention_days,
        }
    })

    loop = asyncio.new_event_loop()
    stop = asyncio.Event()

    def _signal_handler(sig, frame):
        bt.logging.info({"server": "shutdown_signal_received"})
        loop.call_soon_threadsafe(stop.set)

    signal.signal(signal.SIGINT, _signal_handler)
    signal.signal(signal.SIGTERM, _signal_handler)

    try:
        loop.run_until_complete(_serve(settings, stop))
    finally:
        loop.close()
        bt.logging.info({"server": "stopped"})


if __name__ == "__main__":
    main()
