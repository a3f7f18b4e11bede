"""Gas price selection for releaseFunds transactions."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Protocol, Tuple

from relayer.config import ChainConfig
from relayer.core.utils import get_logger

LOGGER = get_logger("relayer.gas")

DEFAULT_GAS_LIMIT = 200_000
DEFAULT_CACHE_TTL = 10.0
DEFAULT_BUFFER_PERCENT = 20


class GasPriceSource(Protocol):
    def gas_price(self) -> int:
        ...


@dataclass(frozen=True)
class GasParams:
    """Legacy gas parameters for a releaseFunds call."""

    gas_price: int
    gas_limit: int


class GasManager:
    """Per-chain gas prices with a short-lived cache and a configured ceiling."""

    def __init__(
        self,
        *,
        ttl: float = DEFAULT_CACHE_TTL,
        gas_limit: int = DEFAULT_GAS_LIMIT,
        buffer_percent: int = DEFAULT_BUFFER_PERCENT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl = ttl
        self.gas_limit = gas_limit
        self.buffer_percent = buffer_percent
        self._clock = clock
        self._cache: Dict[int, Tuple[int, float]] = {}

    def get_gas_params(self, chain: ChainConfig, source: GasPriceSource) -> GasParams:
        cached = self._cache.get(chain.chain_id)
        now = self._clock()
        if cached is not None and now - cached[1] < self.ttl:
            return GasParams(gas_price=cached[0], gas_limit=self.gas_limit)

        network_price = int(source.gas_price())
        gas_price = network_price * (100 + self.buffer_percent) // 100

        max_gas_price = chain.max_gas_price_wei
        if gas_price > max_gas_price:
            LOGGER.warning(
                "Gas price capped on %s chain_id=%s network=%.2f gwei buffered=%.2f gwei cap=%.2f gwei",
                chain.name,
                chain.chain_id,
                network_price / 10**9,
                gas_price / 10**9,
                max_gas_price / 10**9,
            )
            gas_price = max_gas_price

        self._cache[chain.chain_id] = (gas_price, now)
        return GasParams(gas_price=gas_price, gas_limit=self.gas_limit)

    def clear(self) -> None:
        self._cache.clear()


__all__ = ["DEFAULT_GAS_LIMIT", "GasManager", "GasParams", "GasPriceSource"]
