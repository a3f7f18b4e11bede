"""Incremental, resumable ingestion of ``BridgeInitiated`` logs."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from relayer.config import ChainConfig
from relayer.core.chain import BridgeInitiatedEvent
from relayer.core.utils import get_logger
from relayer.db import NewBridgeRequest, RequestStore

LOGGER = get_logger("relayer.scanner")

# Blocks behind head to start from on the first scan of a chain.
FIRST_RUN_SAFETY_MARGIN = 100


class EventSource(Protocol):
    def block_number(self) -> int:
        ...

    def get_bridge_events(self, from_block: int, to_block: int) -> List[BridgeInitiatedEvent]:
        ...


@dataclass(frozen=True)
class ScanWindow:
    from_block: int
    to_block: int

    @property
    def size(self) -> int:
        return self.to_block - self.from_block + 1


def plan_window(start_block: int, head: int, chain: ChainConfig) -> Optional[ScanWindow]:
    """Block range to scan after ``start_block`` given the current ``head``.

    ``None`` when nothing has reached the confirmation depth yet.
    """
    safe_block = head - chain.confirmations
    if safe_block <= start_block:
        return None
    from_block = start_block + 1
    to_block = min(safe_block, from_block + chain.max_block_range)
    return ScanWindow(from_block=from_block, to_block=to_block)


def _to_new_request(event: BridgeInitiatedEvent) -> NewBridgeRequest:
    return NewBridgeRequest(
        nonce=event.nonce,
        source_chain=event.source_chain,
        dest_chain=event.dest_chain,
        token=event.token,
        sender=event.sender,
        recipient=event.recipient,
        amount=event.amount,
        source_block_number=event.block_number,
        source_tx_hash=event.transaction_hash,
    )


class ChainScanner:
    """Scans one bounded block window per chain per run into the store."""

    def __init__(self, store: RequestStore) -> None:
        self.store = store

    def start_block(self, chain: ChainConfig, head: int) -> int:
        checkpoint = self.store.get_checkpoint(chain.chain_id)
        if checkpoint is not None:
            return checkpoint
        if chain.start_block is not None:
            return chain.start_block
        return max(head - FIRST_RUN_SAFETY_MARGIN, 0)

    def scan(self, chain: ChainConfig, source: EventSource) -> List[BridgeInitiatedEvent]:
        """Ingest the next window of logs for ``chain`` and advance its checkpoint.

        Events already stored are ignored, so re-scanning a window after a crash
        between insert and checkpoint is harmless.
        """
        head = source.block_number()
        start_block = self.start_block(chain, head)
        window = plan_window(start_block, head, chain)
        if window is None:
            LOGGER.debug(
                "No new blocks to scan on %s start_block=%s safe_block=%s",
                chain.display_name,
                start_block,
                head - chain.confirmations,
            )
            return []

        LOGGER.info(
            "Scanning %s from_block=%s to_block=%s blocks=%s",
            chain.display_name,
            window.from_block,
            window.to_block,
            window.size,
        )
        events = source.get_bridge_events(window.from_block, window.to_block)

        new_events: List[BridgeInitiatedEvent] = []
        for event in events:
            if event.source_chain != chain.chain_id:
                LOGGER.warning(
                    "Event nonce=%s on %s reports source_chain=%s",
                    event.nonce,
                    chain.display_name,
                    event.source_chain,
                )
            row_id = self.store.insert_request(_to_new_request(event))
            if row_id is not None:
                new_events.append(event)
                LOGGER.info(
                    "New bridge request nonce=%s source_chain=%s dest_chain=%s amount=%s tx=%s",
                    event.nonce,
                    event.source_chain,
                    event.dest_chain,
                    event.amount,
                    event.transaction_hash,
                )

        self.store.save_checkpoint(chain.chain_id, window.to_block)

        if events:
            LOGGER.info("Found %s bridge events on %s (%s new)", len(events), chain.display_name, len(new_events))
        return new_events


__all__ = ["ChainScanner", "EventSource", "FIRST_RUN_SAFETY_MARGIN", "ScanWindow", "plan_window"]
