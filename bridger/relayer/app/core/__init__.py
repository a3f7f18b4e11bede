"""Core domain logic for the relayer."""

from .errors import BridgeCallError, RevertKind, classify_revert
from .gas import GasManager, GasParams
from .lease import ExclusiveLease, FileLease
from .retry import RetryConfig, with_retry

__all__ = [
    "BridgeCallError",
    "ExclusiveLease",
    "FileLease",
    "GasManager",
    "GasParams",
    "RetryConfig",
    "RevertKind",
    "classify_revert",
    "with_retry",
]
