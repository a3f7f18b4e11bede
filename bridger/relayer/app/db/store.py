"""Durable store for bridge requests and per-chain scan checkpoints."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from relayer.core.utils import get_logger, now_ms
from relayer.db.migrations import run_migrations

LOGGER = get_logger("relayer.db")

MAX_RETRY_COUNT = 5


class RequestStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.SKIPPED)


# Statuses a run may pick up, subject to the retry budget.
ELIGIBLE_STATUSES = (RequestStatus.PENDING, RequestStatus.PROCESSING, RequestStatus.FAILED)


@dataclass(frozen=True)
class NewBridgeRequest:
    """Fields captured from a ``BridgeInitiated`` log."""

    nonce: int
    source_chain: int
    dest_chain: int
    token: str
    sender: str
    recipient: str
    amount: int
    source_block_number: int
    source_tx_hash: str


@dataclass(frozen=True)
class BridgeRequest:
    """A stored bridge request row."""

    id: int
    nonce: int
    source_chain: int
    dest_chain: int
    token: str
    sender: str
    recipient: str
    amount: int
    status: RequestStatus
    source_block_number: int
    source_tx_hash: str
    dest_tx_hash: Optional[str]
    retry_count: int
    last_error: Optional[str]
    created_at: int
    updated_at: int

    @property
    def key(self) -> str:
        return f"{self.source_chain}:{self.nonce}"


def _row_to_request(row: sqlite3.Row) -> BridgeRequest:
    return BridgeRequest(
        id=row["id"],
        nonce=int(row["nonce"]),
        source_chain=row["source_chain"],
        dest_chain=row["dest_chain"],
        token=row["token"],
        sender=row["sender"],
        recipient=row["recipient"],
        amount=int(row["amount"]),
        status=RequestStatus(row["status"]),
        source_block_number=row["source_block_number"],
        source_tx_hash=row["source_tx_hash"],
        dest_tx_hash=row["dest_tx_hash"],
        retry_count=row["retry_count"],
        last_error=row["last_error"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class RequestStore:
    """Query interface over the relayer's SQLite database.

    Every mutation is a single-row statement committed on its own, so no
    operation needs a multi-row transaction.
    """

    def __init__(self, conn: sqlite3.Connection, *, clock: Callable[[], int] = now_ms) -> None:
        conn.row_factory = sqlite3.Row
        self._conn = conn
        self._clock = clock

    # Bridge requests

    def insert_request(self, request: NewBridgeRequest) -> Optional[int]:
        """Insert ``request`` unless ``(source_chain, nonce)`` already exists.

        Returns the new row id, or ``None`` when the request was already known.
        """
        now = self._clock()
        with self._conn:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO bridge_requests
                (nonce, source_chain, dest_chain, token, sender, recipient, amount,
                 status, source_block_number, source_tx_hash, retry_count, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?)
                """,
                (
                    str(request.nonce),
                    request.source_chain,
                    request.dest_chain,
                    request.token,
                    request.sender,
                    request.recipient,
                    str(request.amount),
                    RequestStatus.PENDING.value,
                    request.source_block_number,
                    request.source_tx_hash,
                    now,
                    now,
                ),
            )
        return cursor.lastrowid if cursor.rowcount > 0 else None

    def update_status(
        self,
        source_chain: int,
        nonce: int,
        status: RequestStatus,
        *,
        dest_tx_hash: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Atomically move a request to ``status``.

        ``retry_count`` grows by one only on a transition to ``failed``;
        ``dest_tx_hash`` is kept when not supplied and ``last_error`` is replaced.
        """
        status = RequestStatus(status)
        with self._conn:
            cursor = self._conn.execute(
                """
                UPDATE bridge_requests
                SET status = ?,
                    dest_tx_hash = COALESCE(?, dest_tx_hash),
                    last_error = ?,
                    retry_count = CASE WHEN ? = 'failed' THEN retry_count + 1 ELSE retry_count END,
                    updated_at = ?
                WHERE source_chain = ? AND nonce = ?
                """,
                (status.value, dest_tx_hash, error, status.value, self._clock(), source_chain, str(nonce)),
            )
        if cursor.rowcount == 0:
            LOGGER.warning("No bridge request to update source_chain=%s nonce=%s", source_chain, nonce)

    def get_pending_requests(self, limit: int = 100) -> List[BridgeRequest]:
        """Oldest-first requests still eligible for relaying."""
        placeholders = ", ".join("?" for _ in ELIGIBLE_STATUSES)
        rows = self._conn.execute(
            f"""
            SELECT * FROM bridge_requests
            WHERE status IN ({placeholders})
            AND retry_count < ?
            ORDER BY created_at ASC, id ASC
            LIMIT ?
            """,
            (*(status.value for status in ELIGIBLE_STATUSES), MAX_RETRY_COUNT, limit),
        ).fetchall()
        return [_row_to_request(row) for row in rows]

    def get_request(self, source_chain: int, nonce: int) -> Optional[BridgeRequest]:
        row = self._conn.execute(
            "SELECT * FROM bridge_requests WHERE source_chain = ? AND nonce = ?",
            (source_chain, str(nonce)),
        ).fetchone()
        return _row_to_request(row) if row else None

    def requeue(self, source_chain: int, nonce: int) -> bool:
        """Operator reset of a ``failed`` request back to ``pending`` with a fresh retry budget."""
        with self._conn:
            cursor = self._conn.execute(
                """
                UPDATE bridge_requests
                SET status = 'pending', retry_count = 0, last_error = NULL, updated_at = ?
                WHERE source_chain = ? AND nonce = ? AND status = 'failed'
                """,
                (self._clock(), source_chain, str(nonce)),
            )
        return cursor.rowcount > 0

    # Checkpoints

    def get_checkpoint(self, chain_id: int) -> Optional[int]:
        row = self._conn.execute(
            "SELECT last_block FROM chain_checkpoints WHERE chain_id = ?", (chain_id,)
        ).fetchone()
        return int(row["last_block"]) if row else None

    def get_checkpoints(self) -> Dict[int, int]:
        rows = self._conn.execute("SELECT chain_id, last_block FROM chain_checkpoints ORDER BY chain_id").fetchall()
        return {row["chain_id"]: int(row["last_block"]) for row in rows}

    def save_checkpoint(self, chain_id: int, last_block: int) -> int:
        """Record ``last_block`` for ``chain_id``; the stored value never decreases."""
        current = self.get_checkpoint(chain_id)
        if current is not None and last_block < current:
            LOGGER.warning(
                "Ignoring checkpoint regression chain_id=%s current=%s requested=%s",
                chain_id,
                current,
                last_block,
            )
        with self._conn:
            self._conn.execute(
                """
                INSERT INTO chain_checkpoints (chain_id, last_block, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(chain_id) DO UPDATE SET
                    last_block = MAX(chain_checkpoints.last_block, excluded.last_block),
                    updated_at = excluded.updated_at
                """,
                (chain_id, int(last_block), self._clock()),
            )
        return max(last_block, current) if current is not None else last_block

    # Stats

    def get_stats(self) -> Dict[str, int]:
        """Request counts by status, plus ``total``."""
        stats = {status.value: 0 for status in RequestStatus}
        rows = self._conn.execute("SELECT status, COUNT(*) AS n FROM bridge_requests GROUP BY status").fetchall()
        for row in rows:
            stats[row["status"]] = row["n"]
        stats["total"] = sum(row["n"] for row in rows)
        return stats

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "RequestStore":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def open_store(path: Union[str, Path], *, clock: Callable[[], int] = now_ms) -> RequestStore:
    """Open (creating if needed) the database at ``path`` and run migrations."""
    db_path = Path(path)
    if str(db_path) != ":memory:":
        db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(db_path))
    try:
        version = run_migrations(conn)
    except sqlite3.Error:
        conn.close()
        raise
    LOGGER.debug("Opened store path=%s schema_version=%s", db_path, version)
    return RequestStore(conn, clock=clock)


__all__ = [
    "BridgeRequest",
    "ELIGIBLE_STATUSES",
    "MAX_RETRY_COUNT",
    "NewBridgeRequest",
    "RequestStatus",
    "RequestStore",
    "open_store",
]
