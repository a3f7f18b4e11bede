"""Typed classification of bridge contract failures.

Raw exceptions from web3 (custom-error reverts, revert strings, RPC errors)
are decoded once, at the chain boundary, into a :class:`BridgeCallError`
carrying a :class:`RevertKind`. Retry and outcome handling branch on that tag.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional

from web3 import Web3


class RevertKind(str, Enum):
    """Closed set of outcomes a failed bridge call can decode to."""

    ALREADY_PROCESSED = "already_processed"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    UNAUTHORIZED = "unauthorized"
    OTHER = "other"


# Custom error name on the bridge contract for each tagged kind.
ERROR_NAMES: Dict[RevertKind, str] = {
    RevertKind.ALREADY_PROCESSED: "NonceAlreadyProcessed",
    RevertKind.INSUFFICIENT_LIQUIDITY: "InsufficientLiquidity",
    RevertKind.UNAUTHORIZED: "OnlyRelayer",
}


def _selector(signature: str) -> str:
    return Web3.to_hex(Web3.keccak(text=signature)[:4]).lower()


ERROR_SELECTORS: Dict[str, RevertKind] = {
    _selector(f"{name}()"): kind for kind, name in ERROR_NAMES.items()
}


class BridgeCallError(Exception):
    """A bridge contract interaction failed with a decoded :class:`RevertKind`."""

    def __init__(
        self,
        kind: RevertKind,
        message: str,
        *,
        tx_hash: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.tx_hash = tx_hash
        self.cause = cause

    @property
    def retryable(self) -> bool:
        """Whether repeating the call could ever change the outcome."""
        return self.kind not in (RevertKind.ALREADY_PROCESSED, RevertKind.UNAUTHORIZED)

    def __repr__(self) -> str:
        return f"BridgeCallError(kind={self.kind.value!r}, message={self.message!r})"


def _revert_data(exc: BaseException) -> Optional[str]:
    data: Any = getattr(exc, "data", None)
    if data is None:
        # JSON-RPC error payloads: web3's rpc_response, or a dict passed as the first arg
        response = getattr(exc, "rpc_response", None)
        if isinstance(response, dict):
            data = response.get("error")
        elif exc.args and isinstance(exc.args[0], dict):
            data = exc.args[0]
    if isinstance(data, dict):
        data = data.get("data")
    if isinstance(data, (bytes, bytearray)):
        return Web3.to_hex(data).lower()
    if isinstance(data, str) and data.startswith("0x"):
        return data.lower()
    return None


def classify_revert(exc: BaseException) -> RevertKind:
    """Map an exception raised by a contract call onto a :class:`RevertKind`."""
    if isinstance(exc, BridgeCallError):
        return exc.kind

    data = _revert_data(exc)
    if data is not None:
        kind = ERROR_SELECTORS.get(data[:10])
        if kind is not None:
            return kind

    text = str(exc)
    for kind, name in ERROR_NAMES.items():
        if name in text:
            return kind
    return RevertKind.OTHER


def to_bridge_error(exc: BaseException, *, tx_hash: Optional[str] = None) -> BridgeCallError:
    """Wrap ``exc`` in a :class:`BridgeCallError` unless it already is one."""
    if isinstance(exc, BridgeCallError):
        return exc
    return BridgeCallError(classify_revert(exc), str(exc) or type(exc).__name__, tx_hash=tx_hash, cause=exc)


__all__ = [
    "BridgeCallError",
    "ERROR_NAMES",
    "ERROR_SELECTORS",
    "RevertKind",
    "classify_revert",
    "to_bridge_error",
]
