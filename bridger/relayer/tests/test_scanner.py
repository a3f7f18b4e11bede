"""Tests for block-window planning and log ingestion."""

import pytest
from conftest import FakeBridgeClient, make_chain, make_event

from relayer.core.scanner import ChainScanner, plan_window
from relayer.db import RequestStatus


class TestPlanWindow:
    def test_nothing_to_scan_below_confirmation_depth(self):
        chain = make_chain(confirmations=12)
        assert plan_window(start_block=93, head=105, chain=chain) is None
        assert plan_window(start_block=100, head=105, chain=chain) is None

    def test_window_starts_after_checkpoint(self):
        window = plan_window(start_block=93, head=115, chain=make_chain(confirmations=12))
        assert (window.from_block, window.to_block) == (94, 103)
        assert window.size == 10

    def test_window_is_bounded_by_max_block_range(self):
        window = plan_window(start_block=0, head=10_000, chain=make_chain(confirmations=12, max_block_range=1000))
        assert (window.from_block, window.to_block) == (1, 1001)


class TestChainScanner:
    def test_end_to_end_confirmation_scenario(self, store):
        chain = make_chain(chain_id=96, confirmations=12)
        client = FakeBridgeClient(chain, head=105, events=[make_event(7, amount=500, block_number=100)])
        scanner = ChainScanner(store)

        assert scanner.scan(chain, client) == []
        assert store.get_request(96, 7) is None
        assert store.get_checkpoint(96) == 93

        client.head = 115
        new_events = scanner.scan(chain, client)

        assert [event.nonce for event in new_events] == [7]
        request = store.get_request(96, 7)
        assert request.status is RequestStatus.PENDING
        assert request.amount == 500
        assert request.source_block_number == 100
        assert store.get_checkpoint(96) == 103

    def test_first_run_uses_start_block_override(self, store):
        chain = make_chain(confirmations=12, start_block=40)
        client = FakeBridgeClient(chain, head=500, events=[make_event(1, block_number=45)])

        ChainScanner(store).scan(chain, client)

        assert client.log_queries == [(41, 488)]
        assert store.get_request(96, 1) is not None

    def test_checkpoint_takes_precedence_over_override(self, store):
        chain = make_chain(confirmations=12, start_block=40)
        store.save_checkpoint(96, 300)
        client = FakeBridgeClient(chain, head=500)

        ChainScanner(store).scan(chain, client)

        assert client.log_queries == [(301, 488)]

    def test_no_op_leaves_checkpoint_untouched(self, store):
        chain = make_chain(confirmations=12)
        store.save_checkpoint(96, 100)
        client = FakeBridgeClient(chain, head=110)

        assert ChainScanner(store).scan(chain, client) == []
        assert client.log_queries == []
        assert store.get_checkpoint(96) == 100

    def test_checkpoint_advances_to_window_end_not_safe_block(self, store):
        chain = make_chain(confirmations=12, max_block_range=100)
        store.save_checkpoint(96, 0)
        client = FakeBridgeClient(chain, head=10_000)
        scanner = ChainScanner(store)

        scanner.scan(chain, client)
        assert store.get_checkpoint(96) == 101
        scanner.scan(chain, client)
        assert store.get_checkpoint(96) == 202
        assert client.log_queries == [(1, 101), (102, 202)]

    def test_rescanning_same_range_is_idempotent(self, store):
        chain = make_chain(confirmations=12)
        events = [make_event(1, block_number=50), make_event(2, block_number=60)]
        client = FakeBridgeClient(chain, head=100, events=events)
        scanner = ChainScanner(store)
        store.save_checkpoint(96, 10)
        scanner.scan(chain, client)

        # simulate a crash before the checkpoint was saved: scan the window again
        with store._conn:
            store._conn.execute("DELETE FROM chain_checkpoints")
        store.save_checkpoint(96, 10)
        again = scanner.scan(chain, client)

        assert again == []
        assert store.get_stats()["total"] == 2

    def test_scan_errors_propagate_to_caller(self, store):
        chain = make_chain()
        client = FakeBridgeClient(chain, head=100)
        client.scan_error = ConnectionError("rpc down")

        with pytest.raises(ConnectionError):
            ChainScanner(store).scan(chain, client)
        assert store.get_checkpoint(96) is None
