"""Exponential backoff with jitter around on-chain submissions."""

from __future__ import annotations

import random
import time
from dataclasses import dataclass
from typing import Callable, Optional, TypeVar

from relayer.core.errors import classify_revert, RevertKind
from relayer.core.utils import get_logger

LOGGER = get_logger("relayer.retry")

T = TypeVar("T")

# Retrying these can never succeed; the caller classifies them instead.
NON_RETRYABLE = frozenset({RevertKind.ALREADY_PROCESSED, RevertKind.UNAUTHORIZED})


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 2.0
    max_delay: float = 15.0
    jitter: float = 0.3

    def delay_for(self, attempt: int, rng: Callable[[], float] = random.random) -> float:
        """Delay in seconds after the zero-based ``attempt`` failed."""
        delay = min(self.base_delay * (2 ** attempt), self.max_delay)
        return delay + rng() * self.jitter * delay


DEFAULT_RETRY_CONFIG = RetryConfig()


def with_retry(
    operation: Callable[[], T],
    config: RetryConfig = DEFAULT_RETRY_CONFIG,
    context: Optional[str] = None,
    *,
    sleep: Callable[[float], None] = time.sleep,
    rng: Callable[[], float] = random.random,
) -> T:
    """Run ``operation`` until it succeeds or ``config.max_attempts`` is exhausted.

    Errors classified as already-processed or unauthorized are re-raised on the
    first occurrence. The last error is re-raised once attempts run out.
    """
    attempts = max(1, config.max_attempts)
    for attempt in range(attempts):
        try:
            return operation()
        except Exception as exc:
            kind = classify_revert(exc)
            if kind in NON_RETRYABLE:
                LOGGER.info("Not retrying context=%s kind=%s error=%s", context, kind.value, exc)
                raise

            if attempt + 1 >= attempts:
                LOGGER.error(
                    "Attempt %s/%s failed, giving up context=%s error=%s",
                    attempt + 1,
                    attempts,
                    context,
                    exc,
                )
                raise

            delay = config.delay_for(attempt, rng)
            LOGGER.warning(
                "Retry attempt %s/%s context=%s error=%s delay=%.2fs",
                attempt + 1,
                attempts,
                context,
                exc,
                delay,
            )
            sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover


__all__ = ["DEFAULT_RETRY_CONFIG", "NON_RETRYABLE", "RetryConfig", "with_retry"]
