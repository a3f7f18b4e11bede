"""Persistent store for the relayer."""

from .migrations import run_migrations
from .store import (
    ELIGIBLE_STATUSES,
    MAX_RETRY_COUNT,
    BridgeRequest,
    NewBridgeRequest,
    RequestStatus,
    RequestStore,
    open_store,
)

__all__ = [
    "BridgeRequest",
    "ELIGIBLE_STATUSES",
    "MAX_RETRY_COUNT",
    "NewBridgeRequest",
    "RequestStatus",
    "RequestStore",
    "open_store",
    "run_migrations",
]
