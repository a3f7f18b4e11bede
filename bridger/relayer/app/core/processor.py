"""Batch processing of pending bridge requests."""

from __future__ import annotations

from dataclasses import dataclass

from relayer.core.executor import RelayExecutor
from relayer.core.utils import get_logger
from relayer.db import RequestStore

LOGGER = get_logger("relayer.processor")


@dataclass(frozen=True)
class ProcessResult:
    processed: int = 0
    failed: int = 0


def process_requests(store: RequestStore, executor: RelayExecutor, limit: int = 100) -> ProcessResult:
    """Run ``executor`` over up to ``limit`` pending requests, oldest first."""
    pending = store.get_pending_requests(limit)
    if not pending:
        LOGGER.debug("No pending requests to process")
        return ProcessResult()

    LOGGER.info("Processing %s pending requests", len(pending))
    processed = 0
    failed = 0
    for request in pending:
        if executor.process_request(request):
            processed += 1
        else:
            failed += 1

    LOGGER.info("Processing complete processed=%s failed=%s", processed, failed)
    return ProcessResult(processed=processed, failed=failed)


__all__ = ["ProcessResult", "process_requests"]
