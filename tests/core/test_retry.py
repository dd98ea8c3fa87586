"""Tests for the retry policy and error classification."""

import random

import pytest

from schemasense.core.errors import (
    ConfigurationError,
    FatalError,
    RetryExhaustedError,
    RunCancelledError,
    TransientError,
    classify_error,
    is_retryable,
)
from schemasense.core.retry import RetryPolicy
from schemasense.pipeline.base import CancellationToken


class FlakyCall:
    """Raises the given errors in order, then returns ``value``."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


def make_policy(**overrides):
    delays = []
    values = {
        "max_attempts": 4,
        "initial_delay": 0.1,
        "max_delay": 1.0,
        "multiplier": 2.0,
        "jitter": 0.2,
        "max_same_error": 10,
        "sleep": delays.append,
        "rng": random.Random(7),
    }
    values.update(overrides)
    return RetryPolicy(**values), delays


class TestErrorClassification:
    """Tests for is_retryable / classify_error."""

    def test_explicit_flag_wins(self):
        assert is_retryable(TransientError("boom"))
        assert not is_retryable(ConfigurationError("connection refused"))
        assert not is_retryable(FatalError("timeout"))

    def test_status_code(self):
        assert is_retryable(TransientError("x", status_code=503))
        assert classify_error(TransientError("x", status_code=429)) == "429"

    def test_message_patterns(self):
        assert classify_error(RuntimeError("Connection reset by peer")) == "connection"
        assert classify_error(RuntimeError("request timed out")) == "timeout"
        assert classify_error(RuntimeError("HTTP 502 Bad Gateway")) == "502"
        assert is_retryable(RuntimeError("deadlock detected"))

    def test_unknown_errors_are_not_retried(self):
        assert classify_error(ValueError("bad value")) == "unknown"
        assert not is_retryable(ValueError("bad value"))


class TestRetryPolicy:
    """Tests for RetryPolicy.call."""

    def test_success_after_transient_failures(self):
        policy, delays = make_policy()
        fn = FlakyCall([TransientError("timeout"), TransientError("connection reset")])

        assert policy.call(fn) == "ok"
        assert fn.calls == 3
        assert len(delays) == 2

    def test_retries_up_to_max_then_fails_permanently(self):
        policy, delays = make_policy(max_attempts=4)
        fn = FlakyCall([TransientError("timeout")] * 10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            policy.call(fn)

        assert fn.calls == 4
        assert len(delays) == 3
        assert exc_info.value.attempts == 4
        assert exc_info.value.error_type == "timeout"
        assert isinstance(exc_info.value.last_error, TransientError)

    def test_jittered_delays_stay_within_bounds(self):
        policy, delays = make_policy(max_attempts=5, jitter=0.25)
        fn = FlakyCall([TransientError("timeout")] * 10)

        with pytest.raises(RetryExhaustedError):
            policy.call(fn)

        for retry_number, delay in enumerate(delays, start=1):
            low, high = policy.delay_bounds(retry_number)
            assert low <= delay <= high

    def test_nominal_delay_grows_and_caps(self):
        policy, _ = make_policy(initial_delay=0.1, multiplier=2.0, max_delay=0.5)
        assert policy.nominal_delay(1) == pytest.approx(0.1)
        assert policy.nominal_delay(2) == pytest.approx(0.2)
        assert policy.nominal_delay(3) == pytest.approx(0.4)
        assert policy.nominal_delay(4) == pytest.approx(0.5)
        assert policy.nominal_delay(10) == pytest.approx(0.5)

    def test_same_error_type_escalates_early(self):
        policy, delays = make_policy(max_attempts=10, max_same_error=3)
        fn = FlakyCall([TransientError("rate limit exceeded")] * 10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            policy.call(fn)

        assert fn.calls == 3
        assert exc_info.value.error_type == "rate_limit"
        assert "repeated error" in str(exc_info.value)

    def test_alternating_error_types_do_not_escalate(self):
        policy, _ = make_policy(max_attempts=10, max_same_error=2)
        fn = FlakyCall(
            [
                TransientError("timeout"),
                TransientError("connection refused"),
                TransientError("timeout"),
            ]
        )
        assert policy.call(fn) == "ok"
        assert fn.calls == 4

    def test_non_retryable_error_propagates_unchanged(self):
        policy, delays = make_policy()
        error = ConfigurationError("missing api key")
        fn = FlakyCall([error])

        with pytest.raises(ConfigurationError) as exc_info:
            policy.call(fn)

        assert exc_info.value is error
        assert fn.calls == 1
        assert delays == []

    def test_on_retry_callback(self):
        policy, _ = make_policy()
        seen = []
        fn = FlakyCall([TransientError("timeout")])

        policy.call(fn, on_retry=lambda attempt, error, delay: seen.append((attempt, str(error))))

        assert seen == [(1, "timeout")]

    def test_cancellation_stops_retrying(self):
        token = CancellationToken()
        policy, _ = make_policy(sleep=lambda delay: token.cancel("user request"))
        fn = FlakyCall([TransientError("timeout")] * 5)

        with pytest.raises(RunCancelledError):
            policy.call(fn, cancel_token=token)

        assert fn.calls == 1

    def test_from_settings(self, settings):
        policy = RetryPolicy.from_settings(settings)
        assert policy.max_attempts == settings.retry_max_attempts
        assert policy.jitter == settings.retry_jitter
