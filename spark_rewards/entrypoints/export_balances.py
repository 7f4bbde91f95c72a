"""Dump all scheduled rewards as an SQL INSERT statement.

Used to move balances between store backends.

Usage:
    python -m spark_rewards.entrypoints.export_balances --url http://127.0.0.1:8000 > balances.sql
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import TextIO

from spark_rewards.distributor.client import LedgerClient


def render_insert(balances: dict[str, int], table: str = "scheduled_rewards") -> str:
    """INSERT statement for `balances`, addresses in sorted order."""
    if not balances:
        return f"-- {table}: no rows\n"
    rows = ",\n".join(f"('{address}', '{amount}')" for address, amount in sorted(balances.items()))
    return f"INSERT INTO {table} (address, amount)\nVALUES\n{rows}\n;\n"


async def export(url: str, out: TextIO) -> int:
    client = LedgerClient(url)
    try:
        balances = await client.get_scheduled_rewards()
    finally:
        await client.close()
    out.write(render_insert(balances))
    return len(balances)


def main() -> None:
    parser = argparse.ArgumentParser(description="Export scheduled rewards as SQL")
    parser.add_argument("--url", type=str, default="http://127.0.0.1:8000")
    args = parser.parse_args()
    asyncio.run(export(args.url, sys.stdout))


if __name__ == "__main__":
    main()
