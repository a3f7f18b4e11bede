"""Relays stored bridge requests as releaseFunds transactions."""

from __future__ import annotations

import time
from typing import Callable, Iterable, List, Mapping, Optional, Protocol

from relayer.config import ChainConfig
from relayer.core.errors import BridgeCallError, RevertKind, to_bridge_error
from relayer.core.gas import GasManager, GasParams
from relayer.core.retry import DEFAULT_RETRY_CONFIG, RetryConfig, with_retry
from relayer.core.utils import get_logger, now_ms
from relayer.db import BridgeRequest, RequestStatus, RequestStore

LOGGER = get_logger("relayer.executor")

# last_error recorded for requests deferred on destination liquidity
LIQUIDITY_MARKER = "InsufficientLiquidity"
MAX_ERROR_LENGTH = 1000


class DestinationClient(Protocol):
    chain: ChainConfig

    def is_nonce_processed(self, source_chain: int, nonce: int) -> bool:
        ...

    def gas_price(self) -> int:
        ...

    def receipt_status(self, tx_hash: str) -> Optional[int]:
        ...

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
        ...


class RelayExecutor:
    """Resolves one request at a time against its destination chain."""

    def __init__(
        self,
        store: RequestStore,
        clients: Mapping[int, DestinationClient],
        *,
        gas_manager: GasManager,
        retry_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        dry_run: bool = False,
        liquidity_backoff: float = 60.0,
        configured_chains: Iterable[int] = (),
        clock: Callable[[], int] = now_ms,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.clients = dict(clients)
        self.gas_manager = gas_manager
        self.retry_config = retry_config
        self.dry_run = dry_run
        self.liquidity_backoff = liquidity_backoff
        # chains in the config whose client may be missing for this run only
        self.configured_chains = frozenset(configured_chains)
        self._clock = clock
        self._sleep = sleep

        LOGGER.info("Executor initialized dry_run=%s chains=%s", dry_run, sorted(self.clients))

    def _deferred(self, request: BridgeRequest) -> bool:
        if request.status != RequestStatus.PENDING or request.last_error != LIQUIDITY_MARKER:
            return False
        waited = (self._clock() - request.updated_at) / 1000
        if waited >= self.liquidity_backoff:
            return False
        LOGGER.debug(
            "Deferring request %s on liquidity (%.1fs of %.1fs backoff)",
            request.key,
            waited,
            self.liquidity_backoff,
        )
        return True

    def process_request(self, request: BridgeRequest) -> bool:
        """Resolve ``request``; True when completed or definitively skipped."""
        client = self.clients.get(request.dest_chain)
        if client is None:
            if request.dest_chain in self.configured_chains:
                LOGGER.warning(
                    "Destination chain unavailable this run, leaving request pending dest_chain=%s request=%s",
                    request.dest_chain,
                    request.key,
                )
                return False
            LOGGER.error("No client for destination chain dest_chain=%s request=%s", request.dest_chain, request.key)
            self.store.update_status(
                request.source_chain,
                request.nonce,
                RequestStatus.FAILED,
                error=f"Destination chain {request.dest_chain} is not configured",
            )
            return False

        if self._deferred(request):
            return False

        broadcast: List[str] = []
        try:
            if client.is_nonce_processed(request.source_chain, request.nonce):
                LOGGER.info(
                    "Nonce already processed, skipping source_chain=%s nonce=%s",
                    request.source_chain,
                    request.nonce,
                )
                self.store.update_status(request.source_chain, request.nonce, RequestStatus.SKIPPED)
                return True

            if self.dry_run:
                LOGGER.info(
                    "[DRY RUN] Would call releaseFunds dest_chain=%s nonce=%s source_chain=%s token=%s recipient=%s amount=%s",
                    request.dest_chain,
                    request.nonce,
                    request.source_chain,
                    request.token,
                    request.recipient,
                    request.amount,
                )
                return True

            self.store.update_status(request.source_chain, request.nonce, RequestStatus.PROCESSING)
            tx_hash = with_retry(
                lambda: self._submit(client, request, broadcast),
                self.retry_config,
                f"releaseFunds-{request.source_chain}-{request.nonce}",
                sleep=self._sleep,
            )
        except Exception as exc:
            return self._handle_failure(client, request, exc, broadcast)

        self._complete(request, tx_hash)
        return True

    def _complete(self, request: BridgeRequest, tx_hash: str) -> None:
        LOGGER.info(
            "releaseFunds successful source_chain=%s nonce=%s dest_tx_hash=%s",
            request.source_chain,
            request.nonce,
            tx_hash,
        )
        self.store.update_status(
            request.source_chain, request.nonce, RequestStatus.COMPLETED, dest_tx_hash=tx_hash
        )

    def _mined_earlier(self, client: DestinationClient, broadcast: List[str]) -> Optional[str]:
        """Hash of an earlier attempt's transaction that has since succeeded."""
        for tx_hash in broadcast:
            if client.receipt_status(tx_hash) == 1:
                return tx_hash
        return None

    def _submit(self, client: DestinationClient, request: BridgeRequest, broadcast: List[str]) -> str:
        # a timed out or disconnected attempt may still have been mined
        mined = self._mined_earlier(client, broadcast)
        if mined is not None:
            LOGGER.info("Earlier releaseFunds attempt was mined nonce=%s tx=%s", request.nonce, mined)
            return mined

        gas = self.gas_manager.get_gas_params(client.chain, client)
        LOGGER.info(
            "Executing releaseFunds dest_chain=%s nonce=%s recipient=%s amount=%s gas_price=%s",
            request.dest_chain,
            request.nonce,
            request.recipient,
            request.amount,
            gas.gas_price,
        )
        try:
            return client.release_funds(
                nonce=request.nonce,
                source_chain=request.source_chain,
                token=request.token,
                recipient=request.recipient,
                amount=request.amount,
                gas=gas,
            )
        except BridgeCallError as exc:
            if exc.tx_hash is not None:
                broadcast.append(exc.tx_hash)
            raise

    def _handle_failure(
        self, client: DestinationClient, request: BridgeRequest, exc: Exception, broadcast: List[str]
    ) -> bool:
        error = to_bridge_error(exc)

        if error.kind is RevertKind.ALREADY_PROCESSED:
            mined = None
            if broadcast:
                try:
                    mined = self._mined_earlier(client, broadcast)
                except Exception as lookup_exc:
                    LOGGER.warning("Could not check earlier releaseFunds receipts: %s", lookup_exc)
            if mined is not None:
                self._complete(request, mined)
                return True
            LOGGER.info(
                "Nonce already processed (from revert) source_chain=%s nonce=%s",
                request.source_chain,
                request.nonce,
            )
            self.store.update_status(request.source_chain, request.nonce, RequestStatus.SKIPPED)
            return True

        if error.kind is RevertKind.INSUFFICIENT_LIQUIDITY:
            LOGGER.warning(
                "Insufficient liquidity, will retry later source_chain=%s nonce=%s dest_chain=%s",
                request.source_chain,
                request.nonce,
                request.dest_chain,
            )
            self.store.update_status(
                request.source_chain, request.nonce, RequestStatus.PENDING, error=LIQUIDITY_MARKER
            )
            return False

        if error.kind is RevertKind.UNAUTHORIZED:
            LOGGER.error(
                "Relayer is not authorized on dest_chain=%s request=%s",
                request.dest_chain,
                request.key,
            )
        else:
            LOGGER.error(
                "Failed to process request source_chain=%s nonce=%s error=%s",
                request.source_chain,
                request.nonce,
                error.message,
            )
        self.store.update_status(
            request.source_chain,
            request.nonce,
            RequestStatus.FAILED,
            error=f"{error.kind.value}: {error.message}"[:MAX_ERROR_LENGTH],
        )
        return False


__all__ = ["DestinationClient", "LIQUIDITY_MARKER", "RelayExecutor"]
