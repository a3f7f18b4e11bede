"""Tests for the retry policy."""

import pytest

from relayer.core.errors import BridgeCallError, RevertKind
from relayer.core.retry import RetryConfig, with_retry


class Flaky:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


class TestWithRetry:
    def test_returns_first_success(self, no_sleep):
        sleep, delays = no_sleep
        op = Flaky("0xabc")
        assert with_retry(op, sleep=sleep) == "0xabc"
        assert op.calls == 1
        assert delays == []

    def test_retries_transient_errors(self, no_sleep):
        sleep, delays = no_sleep
        op = Flaky(ConnectionError("reset"), TimeoutError("slow"), "0xabc")

        assert with_retry(op, RetryConfig(max_attempts=3), sleep=sleep, rng=lambda: 0.0) == "0xabc"
        assert op.calls == 3
        assert delays == [2.0, 4.0]

    def test_raises_last_error_after_exhaustion(self, no_sleep):
        sleep, delays = no_sleep
        op = Flaky(ValueError("one"), ValueError("two"), ValueError("three"))

        with pytest.raises(ValueError, match="three"):
            with_retry(op, RetryConfig(max_attempts=3), sleep=sleep, rng=lambda: 0.0)
        assert op.calls == 3
        assert len(delays) == 2

    def test_already_processed_is_not_retried(self, no_sleep):
        sleep, delays = no_sleep
        op = Flaky(BridgeCallError(RevertKind.ALREADY_PROCESSED, "NonceAlreadyProcessed()"), "0xabc")

        with pytest.raises(BridgeCallError) as excinfo:
            with_retry(op, sleep=sleep)
        assert excinfo.value.kind is RevertKind.ALREADY_PROCESSED
        assert op.calls == 1
        assert delays == []

    def test_raw_error_text_is_classified(self, no_sleep):
        sleep, delays = no_sleep
        op = Flaky(ValueError("execution reverted: NonceAlreadyProcessed()"), "0xabc")

        with pytest.raises(ValueError):
            with_retry(op, sleep=sleep)
        assert op.calls == 1

    def test_unauthorized_is_not_retried(self, no_sleep):
        sleep, delays = no_sleep
        op = Flaky(BridgeCallError(RevertKind.UNAUTHORIZED, "OnlyRelayer()"), "0xabc")

        with pytest.raises(BridgeCallError):
            with_retry(op, sleep=sleep)
        assert op.calls == 1

    def test_insufficient_liquidity_is_retried(self, no_sleep):
        sleep, delays = no_sleep
        liquidity = BridgeCallError(RevertKind.INSUFFICIENT_LIQUIDITY, "InsufficientLiquidity()")
        op = Flaky(liquidity, "0xabc")

        assert with_retry(op, sleep=sleep, rng=lambda: 0.0) == "0xabc"
        assert op.calls == 2


class TestRetryConfig:
    def test_delay_grows_exponentially_and_is_capped(self):
        config = RetryConfig(base_delay=2.0, max_delay=15.0, jitter=0.3)
        assert [config.delay_for(n, rng=lambda: 0.0) for n in range(5)] == [2.0, 4.0, 8.0, 15.0, 15.0]

    def test_jitter_adds_at_most_thirty_percent(self):
        config = RetryConfig(base_delay=2.0, max_delay=15.0, jitter=0.3)
        assert config.delay_for(0, rng=lambda: 1.0) == pytest.approx(2.6)
        assert config.delay_for(4, rng=lambda: 0.5) == pytest.approx(15.0 * 1.15)

    def test_defaults(self):
        config = RetryConfig()
        assert (config.max_attempts, config.base_delay, config.jitter) == (3, 2.0, 0.3)
