"""SQLite schema for the relayer store.

Migrations are applied in order and tracked with ``PRAGMA user_version`` so
running them on every start is a no-op once the schema is current.
"""

from __future__ import annotations

import sqlite3
from typing import List

from relayer.core.utils import get_logger

LOGGER = get_logger("relayer.db.migrations")

MIGRATIONS: List[str] = [
    # 1: bridge requests and per-chain checkpoints
    """
    CREATE TABLE IF NOT EXISTS bridge_requests (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        nonce TEXT NOT NULL,
        source_chain INTEGER NOT NULL,
        dest_chain INTEGER NOT NULL,
        token TEXT NOT NULL,
        sender TEXT NOT NULL,
        recipient TEXT NOT NULL,
        amount TEXT NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        source_block_number INTEGER NOT NULL,
        source_tx_hash TEXT NOT NULL,
        dest_tx_hash TEXT,
        retry_count INTEGER NOT NULL DEFAULT 0,
        last_error TEXT,
        created_at INTEGER NOT NULL,
        updated_at INTEGER NOT NULL,
        UNIQUE(source_chain, nonce)
    );

    CREATE INDEX IF NOT EXISTS idx_bridge_requests_status ON bridge_requests(status);
    CREATE INDEX IF NOT EXISTS idx_bridge_requests_chains ON bridge_requests(source_chain, dest_chain);
    CREATE INDEX IF NOT EXISTS idx_bridge_requests_created ON bridge_requests(created_at);

    CREATE TABLE IF NOT EXISTS chain_checkpoints (
        chain_id INTEGER PRIMARY KEY,
        last_block INTEGER NOT NULL,
        updated_at INTEGER NOT NULL
    );
    """,
]


def schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def run_migrations(conn: sqlite3.Connection) -> int:
    """Bring the schema up to date and return the resulting version."""
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA busy_timeout=5000")

    current = schema_version(conn)
    for version, script in enumerate(MIGRATIONS, start=1):
        if version <= current:
            continue
        LOGGER.info("Applying schema migration %s", version)
        conn.executescript(script)
        # PRAGMA does not accept bound parameters
        conn.execute(f"PRAGMA user_version = {version}")
        conn.commit()
    return schema_version(conn)


__all__ = ["MIGRATIONS", "run_migrations", "schema_version"]
