"""Schema migrations for the SQL ledger store."""

from __future__ import annotations

from pathlib import Path

import bittensor as bt
from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.engine import Connection

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def alembic_config(database_url: str | None = None) -> Config:
    cfg = Config()
    cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    if database_url:
        cfg.set_main_option("sqlalchemy.url", database_url)
    return cfg


def upgrade_connection(connection: Connection, revision: str = "head") -> None:
    """Bring the schema on `connection` up to `revision`.

    Databases created before migrations existed already hold the tables
    but no alembic_version; those are stamped instead of recreated.
    """
    cfg = alembic_config()
    cfg.attributes["connection"] = connection
    tables = set(inspect(connection).get_table_names())
    if "scheduled_rewards" in tables and "alembic_version" not in tables:
        bt.logging.warning({"ledger_migrations": {"event": "stamping_unversioned_schema", "revision": revision}})
        command.stamp(cfg, revision)
        return
    command.upgrade(cfg, revision)


__all__ = ["MIGRATIONS_DIR", "alembic_config", "upgrade_connection"]
