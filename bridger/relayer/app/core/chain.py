"""Bridge contract access for one chain.

All web3 calls made by the scanner and executor go through
:class:`BridgeClient`; failures of ``releaseFunds`` leave this module as
:class:`~relayer.core.errors.BridgeCallError`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from eth_account.signers.local import LocalAccount
from web3 import Web3
from web3.contract import Contract
from web3.exceptions import ContractLogicError, TimeExhausted, TransactionNotFound, Web3Exception

from relayer.config import ChainConfig
from relayer.contracts import bridge_abi
from relayer.core.errors import BridgeCallError, RevertKind, to_bridge_error
from relayer.core.gas import GasParams
from relayer.core.utils import get_logger

LOGGER = get_logger("relayer.chain")


@dataclass(frozen=True)
class BridgeInitiatedEvent:
    """Decoded ``BridgeInitiated`` log."""

    nonce: int
    token: str
    sender: str
    recipient: str
    source_chain: int
    dest_chain: int
    amount: int
    bridge_fee: int
    protocol_fee: int
    timestamp: int
    block_number: int
    transaction_hash: str
    log_index: int = 0


def _default_web3_factory(url: str) -> Web3:
    if url.startswith(("ws://", "wss://")):
        raise ValueError(f"Websocket RPC URLs need a custom web3_factory: {url}")
    return Web3(Web3.HTTPProvider(url))


def decode_bridge_log(log: Any) -> BridgeInitiatedEvent:
    """Convert a web3 event log into a :class:`BridgeInitiatedEvent`."""
    args = log["args"]
    return BridgeInitiatedEvent(
        nonce=int(args["nonce"]),
        token=Web3.to_checksum_address(args["token"]),
        sender=Web3.to_checksum_address(args["sender"]),
        recipient=Web3.to_checksum_address(args["recipient"]),
        source_chain=int(args["sourceChain"]),
        dest_chain=int(args["destChain"]),
        amount=int(args["amount"]),
        bridge_fee=int(args["bridgeFee"]),
        protocol_fee=int(args["protocolFee"]),
        timestamp=int(args["timestamp"]),
        block_number=int(log["blockNumber"]),
        transaction_hash=Web3.to_hex(log["transactionHash"]),
        log_index=int(log.get("logIndex", 0) or 0),
    )


class BridgeClient:
    """Reads from and writes to the bridge contract on ``chain``."""

    def __init__(
        self,
        chain: ChainConfig,
        *,
        account: Optional[LocalAccount] = None,
        web3: Optional[Web3] = None,
        web3_factory: Callable[[str], Web3] = _default_web3_factory,
        receipt_timeout: float = 120.0,
    ) -> None:
        self.chain = chain
        self.account = account
        self.web3 = web3 if web3 is not None else web3_factory(chain.rpc_url)
        self.receipt_timeout = receipt_timeout
        self.contract: Contract = self.web3.eth.contract(address=chain.bridge_address, abi=bridge_abi())

    def block_number(self) -> int:
        return int(self.web3.eth.block_number)

    def gas_price(self) -> int:
        return int(self.web3.eth.gas_price)

    def get_bridge_events(self, from_block: int, to_block: int) -> List[BridgeInitiatedEvent]:
        """Fetch and decode ``BridgeInitiated`` logs in ``[from_block, to_block]``."""
        logs = self.contract.events.BridgeInitiated().get_logs(from_block=from_block, to_block=to_block)
        events = [decode_bridge_log(log) for log in logs]
        events.sort(key=lambda event: (event.block_number, event.log_index))
        return events

    def is_nonce_processed(self, source_chain: int, nonce: int) -> bool:
        return bool(self.contract.functions.isNonceProcessed(source_chain, nonce).call())

    def receipt_status(self, tx_hash: str) -> Optional[int]:
        """Receipt status of ``tx_hash``, or None while it is not mined."""
        try:
            receipt = self.web3.eth.get_transaction_receipt(tx_hash)
        except TransactionNotFound:
            return None
        return int(receipt["status"])

    def _require_account(self) -> LocalAccount:
        if self.account is None:
            raise BridgeCallError(RevertKind.UNAUTHORIZED, "No relayer account configured for submissions")
        return self.account

    def release_funds(
        self,
        *,
        nonce: int,
        source_chain: int,
        token: str,
        recipient: str,
        amount: int,
        gas: GasParams,
    ) -> str:
        """Sign, send and wait for one confirmation of ``releaseFunds``.

        Returns the transaction hash. Any failure, including a reverted
        receipt, is raised as a :class:`BridgeCallError`.
        """
        account = self._require_account()
        call = self.contract.functions.releaseFunds(
            nonce,
            source_chain,
            Web3.to_checksum_address(token),
            Web3.to_checksum_address(recipient),
            amount,
        )

        tx_hash: Optional[str] = None
        try:
            tx: Dict[str, Any] = call.build_transaction(
                {
                    "from": account.address,
                    "gas": gas.gas_limit,
                    "gasPrice": gas.gas_price,
                    "nonce": self.web3.eth.get_transaction_count(account.address, "pending"),
                    "chainId": self.chain.chain_id,
                }
            )
            signed = account.sign_transaction(tx)
            tx_hash = Web3.to_hex(self.web3.eth.send_raw_transaction(signed.raw_transaction))
            LOGGER.info("Sent releaseFunds chain=%s nonce=%s tx=%s", self.chain.name, nonce, tx_hash)

            receipt = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.receipt_timeout)
        except TimeExhausted as exc:
            raise BridgeCallError(
                RevertKind.OTHER, f"Timed out waiting for receipt of {tx_hash}", tx_hash=tx_hash, cause=exc
            ) from exc
        except (ContractLogicError, Web3Exception, ValueError) as exc:
            raise to_bridge_error(exc, tx_hash=tx_hash) from exc

        if receipt["status"] != 1:
            raise self._reverted(tx, receipt, tx_hash)
        return tx_hash

    def _reverted(self, tx: Dict[str, Any], receipt: Any, tx_hash: str) -> BridgeCallError:
        """Replay a reverted transaction with ``eth_call`` to recover its reason."""
        replay = {key: tx[key] for key in ("from", "to", "data", "gas", "gasPrice") if key in tx}
        try:
            self.web3.eth.call(replay, block_identifier=receipt["blockNumber"])
        except (ContractLogicError, Web3Exception, ValueError) as exc:
            error = to_bridge_error(exc, tx_hash=tx_hash)
            return BridgeCallError(
                error.kind, f"Transaction reverted: {tx_hash} ({error.message})", tx_hash=tx_hash, cause=exc
            )
        return BridgeCallError(RevertKind.OTHER, f"Transaction reverted: {tx_hash}", tx_hash=tx_hash)


__all__ = ["BridgeClient", "BridgeInitiatedEvent", "decode_bridge_log"]
