"""Tests for the SQLite request store."""

import sqlite3

from conftest import RECIPIENT, SENDER, TOKEN

from relayer.db import MAX_RETRY_COUNT, NewBridgeRequest, RequestStatus, open_store
from relayer.db.migrations import MIGRATIONS, schema_version


def new_request(nonce=7, source_chain=96, amount=500):
    return NewBridgeRequest(
        nonce=nonce,
        source_chain=source_chain,
        dest_chain=56,
        token=TOKEN,
        sender=SENDER,
        recipient=RECIPIENT,
        amount=amount,
        source_block_number=100,
        source_tx_hash="0x" + "ab" * 32,
    )


class TestBridgeRequests:
    def test_insert_is_idempotent_on_source_chain_and_nonce(self, store):
        first = store.insert_request(new_request())
        second = store.insert_request(new_request(amount=999))

        assert first is not None
        assert second is None
        assert store.get_stats()["total"] == 1
        assert store.get_request(96, 7).amount == 500

    def test_same_nonce_on_different_source_chains_are_distinct(self, store):
        assert store.insert_request(new_request(source_chain=96)) is not None
        assert store.insert_request(new_request(source_chain=8899)) is not None
        assert store.get_stats()["pending"] == 2

    def test_new_request_defaults(self, store):
        store.insert_request(new_request())
        request = store.get_request(96, 7)

        assert request.status is RequestStatus.PENDING
        assert request.retry_count == 0
        assert request.dest_tx_hash is None
        assert request.last_error is None
        assert request.created_at == request.updated_at

    def test_large_amount_and_nonce_survive_round_trip(self, store):
        amount = 2**255 + 12345
        nonce = 2**200
        store.insert_request(new_request(nonce=nonce, amount=amount))

        request = store.get_request(96, nonce)
        assert request.amount == amount
        assert request.nonce == nonce

    def test_failed_transition_increments_retry_count(self, store):
        store.insert_request(new_request())
        store.update_status(96, 7, RequestStatus.FAILED, error="boom")
        store.update_status(96, 7, RequestStatus.PENDING)

        request = store.get_request(96, 7)
        assert request.retry_count == 1
        assert request.status is RequestStatus.PENDING
        assert request.last_error is None

    def test_completed_keeps_dest_tx_hash(self, store):
        store.insert_request(new_request())
        store.update_status(96, 7, RequestStatus.COMPLETED, dest_tx_hash="0xdead")

        request = store.get_request(96, 7)
        assert request.status is RequestStatus.COMPLETED
        assert request.dest_tx_hash == "0xdead"
        assert request.updated_at > request.created_at

    def test_pending_requests_are_oldest_first(self, store):
        for nonce in (3, 1, 2):
            store.insert_request(new_request(nonce=nonce))

        assert [r.nonce for r in store.get_pending_requests()] == [3, 1, 2]
        assert [r.nonce for r in store.get_pending_requests(limit=2)] == [3, 1]

    def test_terminal_requests_are_not_pending(self, store):
        store.insert_request(new_request(nonce=1))
        store.insert_request(new_request(nonce=2))
        store.insert_request(new_request(nonce=3))
        store.update_status(96, 1, RequestStatus.COMPLETED, dest_tx_hash="0x01")
        store.update_status(96, 2, RequestStatus.SKIPPED)
        store.update_status(96, 3, RequestStatus.PROCESSING)

        assert [r.nonce for r in store.get_pending_requests()] == [3]

    def test_failed_requests_stay_eligible_until_retry_budget_spent(self, store):
        store.insert_request(new_request())
        for _ in range(MAX_RETRY_COUNT - 1):
            store.update_status(96, 7, RequestStatus.FAILED, error="boom")
        assert [r.nonce for r in store.get_pending_requests()] == [7]

        store.update_status(96, 7, RequestStatus.FAILED, error="boom")
        assert store.get_pending_requests() == []

    def test_exhausted_request_excluded_even_when_pending(self, store):
        store.insert_request(new_request())
        for _ in range(MAX_RETRY_COUNT):
            store.update_status(96, 7, RequestStatus.FAILED, error="boom")
        store.update_status(96, 7, RequestStatus.PENDING)

        request = store.get_request(96, 7)
        assert request.status is RequestStatus.PENDING
        assert request.retry_count == 5
        assert store.get_pending_requests() == []

    def test_requeue_resets_failed_request(self, store):
        store.insert_request(new_request())
        for _ in range(MAX_RETRY_COUNT):
            store.update_status(96, 7, RequestStatus.FAILED, error="boom")

        assert store.requeue(96, 7) is True
        request = store.get_request(96, 7)
        assert request.status is RequestStatus.PENDING
        assert request.retry_count == 0
        assert request.last_error is None
        assert store.requeue(96, 7) is False

    def test_stats_count_every_status(self, store):
        store.insert_request(new_request(nonce=1))
        store.insert_request(new_request(nonce=2))
        store.update_status(96, 2, RequestStatus.SKIPPED)

        stats = store.get_stats()
        assert stats == {
            "pending": 1,
            "processing": 0,
            "completed": 0,
            "failed": 0,
            "skipped": 1,
            "total": 2,
        }


class TestCheckpoints:
    def test_missing_checkpoint_is_none(self, store):
        assert store.get_checkpoint(96) is None

    def test_checkpoint_is_monotonic(self, store):
        observed = []
        for block in (100, 250, 180, 250, 400):
            store.save_checkpoint(96, block)
            observed.append(store.get_checkpoint(96))

        assert observed == [100, 250, 250, 250, 400]
        assert observed == sorted(observed)

    def test_checkpoints_are_per_chain(self, store):
        store.save_checkpoint(96, 10)
        store.save_checkpoint(56, 20)
        assert store.get_checkpoints() == {56: 20, 96: 10}


class TestSchema:
    def test_migrations_are_idempotent(self, tmp_path):
        path = tmp_path / "relayer.db"
        with open_store(path) as first:
            first.insert_request(new_request())
        with open_store(path) as second:
            assert second.get_stats()["total"] == 1

        conn = sqlite3.connect(str(path))
        try:
            assert schema_version(conn) == len(MIGRATIONS)
            indexes = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'index'")}
            journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        finally:
            conn.close()

        assert {
            "idx_bridge_requests_status",
            "idx_bridge_requests_chains",
            "idx_bridge_requests_created",
        } <= indexes
        assert journal_mode == "wal"

    def test_creates_missing_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "relayer.db"
        with open_store(path):
            pass
        assert path.exists()
