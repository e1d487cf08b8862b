"""Tests for retry strategy."""

import threading
import time

import pytest

from deploy_pipeline.utils.errors import DeployError, DeployErrorKind, PushError, PushErrorKind
from deploy_pipeline.utils.retry import RetryStrategy


class TestRetryStrategy:
    """Tests for RetryStrategy."""

    def setup_method(self):
        self.sleeps = []
        self.strategy = RetryStrategy(
            max_retries=3, base_delay=1.0, max_delay=5.0, jitter=False, sleep=self.sleeps.append
        )

    def test_exponential_delays_capped(self):
        assert [self.strategy.get_delay(attempt) for attempt in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_retries_until_success(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise PushError("connection reset", kind=PushErrorKind.NETWORK_FAILURE)
            return "pushed"

        assert self.strategy.execute_with_retry(flaky) == "pushed"
        assert len(attempts) == 3
        assert self.sleeps == [1.0, 2.0]

    def test_non_retryable_raised_immediately(self):
        def rejected():
            raise PushError("manifest invalid", kind=PushErrorKind.REGISTRY_REJECTED)

        with pytest.raises(PushError):
            self.strategy.execute_with_retry(rejected)

        assert self.sleeps == []

    def test_deploy_errors_never_retried(self):
        """Deployment submission is not idempotent."""
        error = DeployError("throttled", kind=DeployErrorKind.CONTROL_PLANE_UNAVAILABLE)

        assert not self.strategy.should_retry(error, 0)
        assert not self.strategy.should_retry(ValueError("boom"), 0)

    def test_exhaustion_raises_last_error(self):
        calls = []

        def always_down():
            calls.append(1)
            raise PushError(f"attempt {len(calls)}", kind=PushErrorKind.NETWORK_FAILURE)

        with pytest.raises(PushError) as exc_info:
            self.strategy.execute_with_retry(always_down)

        assert len(calls) == 4
        assert exc_info.value.message == "attempt 4"

    def test_no_retry(self):
        strategy = RetryStrategy.no_retry()

        assert not strategy.should_retry(PushError("down", kind=PushErrorKind.NETWORK_FAILURE), 0)

    def test_jitter_adds_at_most_ten_percent(self):
        strategy = RetryStrategy(base_delay=2.0, jitter=True)

        for _ in range(20):
            assert 2.0 <= strategy.get_delay(0) <= 2.2

    def test_cancel_event_cuts_backoff_short(self):
        """With a cancel event and no sleep function, a set event ends the wait at once."""
        cancel_event = threading.Event()
        cancel_event.set()
        strategy = RetryStrategy(max_retries=1, base_delay=60.0, jitter=False, cancel_event=cancel_event)
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) == 1:
                raise PushError("connection reset", kind=PushErrorKind.NETWORK_FAILURE)
            return "pushed"

        started = time.monotonic()
        assert strategy.execute_with_retry(flaky) == "pushed"

        assert strategy.sleep == cancel_event.wait
        assert time.monotonic() - started < 5
        assert len(attempts) == 2

    def test_explicit_sleep_wins_over_cancel_event(self):
        strategy = RetryStrategy(sleep=self.sleeps.append, cancel_event=threading.Event())

        assert strategy.sleep == self.sleeps.append
