"""Shared fixtures and fakes for relayer tests."""

from typing import Dict, List, Optional, Sequence

import pytest
from web3 import Web3

from relayer.config import ChainConfig
from relayer.core.chain import BridgeInitiatedEvent
from relayer.core.gas import GasParams
from relayer.db import open_store

PRIVATE_KEY = "0x" + "11" * 32
TOKEN = Web3.to_checksum_address("0x" + "01" * 20)
SENDER = Web3.to_checksum_address("0x" + "02" * 20)
RECIPIENT = Web3.to_checksum_address("0x" + "03" * 20)
BRIDGE = Web3.to_checksum_address("0x" + "0a" * 20)


def make_chain(
    name: str = "kub",
    chain_id: int = 96,
    *,
    confirmations: int = 12,
    max_block_range: int = 1000,
    max_gas_price_gwei: float = 100,
    start_block: Optional[int] = None,
) -> ChainConfig:
    return ChainConfig(
        name=name,
        chain_id=chain_id,
        display_name=name.upper(),
        rpc_url=f"https://{name}.example.org",
        bridge_address=BRIDGE,
        confirmations=confirmations,
        max_block_range=max_block_range,
        max_gas_price_gwei=max_gas_price_gwei,
        start_block=start_block,
    )


def make_event(
    nonce: int = 7,
    *,
    amount: int = 500,
    block_number: int = 100,
    source_chain: int = 96,
    dest_chain: int = 56,
) -> BridgeInitiatedEvent:
    return BridgeInitiatedEvent(
        nonce=nonce,
        token=TOKEN,
        sender=SENDER,
        recipient=RECIPIENT,
        source_chain=source_chain,
        dest_chain=dest_chain,
        amount=amount,
        bridge_fee=1,
        protocol_fee=1,
        timestamp=1_700_000_000,
        block_number=block_number,
        transaction_hash="0x" + f"{nonce:064x}",
    )


class FakeBridgeClient:
    """In-memory stand-in for :class:`relayer.core.chain.BridgeClient`."""

    def __init__(
        self,
        chain: ChainConfig,
        *,
        head: int = 0,
        events: Sequence[BridgeInitiatedEvent] = (),
        gas_prices: Sequence[int] = (10 * 10**9,),
    ) -> None:
        self.chain = chain
        self.head = head
        self.events = list(events)
        self.gas_prices = list(gas_prices)
        self.processed = set()
        self.release_outcomes: List[object] = []
        self.release_calls: List[dict] = []
        self.log_queries: List[tuple] = []
        self.gas_price_calls = 0
        self.scan_error: Optional[Exception] = None
        self.receipts: Dict[str, int] = {}
        self.receipt_queries: List[str] = []

    def block_number(self) -> int:
        if self.scan_error is not None:
            raise self.scan_error
        return self.head

    def get_bridge_events(self, from_block: int, to_block: int) -> List[BridgeInitiatedEvent]:
        self.log_queries.append((from_block, to_block))
        return [event for event in self.events if from_block <= event.block_number <= to_block]

    def is_nonce_processed(self, source_chain: int, nonce: int) -> bool:
        return (source_chain, nonce) in self.processed

    def gas_price(self) -> int:
        self.gas_price_calls += 1
        if len(self.gas_prices) > 1:
            return self.gas_prices.pop(0)
        return self.gas_prices[0]

    def receipt_status(self, tx_hash: str) -> Optional[int]:
        self.receipt_queries.append(tx_hash)
        return self.receipts.get(tx_hash)

    def release_funds(self, *, nonce, source_chain, token, recipient, amount, gas: GasParams) -> str:
        self.release_calls.append(
            {
                "nonce": nonce,
                "source_chain": source_chain,
                "token": token,
                "recipient": recipient,
                "amount": amount,
                "gas": gas,
            }
        )
        outcome = self.release_outcomes.pop(0) if self.release_outcomes else "0x" + "ee" * 32
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class FakeClock:
    """Millisecond clock that only moves when told to (or by 1ms per read)."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        self.now += self.step
        return self.now

    def advance(self, millis: int) -> None:
        self.now += millis


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock):
    with open_store(tmp_path / "relayer.db", clock=clock) as opened:
        yield opened


@pytest.fixture
def no_sleep():
    delays = []
    return delays.append, delays
