"""Tests for the retry policy."""

import random

import httpx
import pytest

from bearwatch import BearWatchError, RetryPolicy
from bearwatch.retry import is_retryable


class Interrupted(BaseException):
    """Stands in for an interruption delivered while the caller sleeps."""


class FixedRandom(random.Random):
    """Random source that always returns the same value."""

    def __init__(self, value: float) -> None:
        super().__init__()
        self._value = value

    def random(self) -> float:
        return self._value


def _recording_policy(max_retries: int, base_delay: float = 0.1, value: float = 0.0):
    """Policy whose sleeps are recorded instead of performed."""
    sleeps: list[float] = []
    policy = RetryPolicy(
        max_retries=max_retries,
        base_delay=base_delay,
        sleep=sleeps.append,
        rng=FixedRandom(value),
    )
    return policy, sleeps


class TestExecute:
    """Test the retry loop."""

    @pytest.mark.parametrize("max_retries", [0, 1, 2, 5])
    def test_server_error_attempts_max_retries_plus_one(self, max_retries: int) -> None:
        """Test that a persistent server error is tried max_retries + 1 times."""
        policy, sleeps = _recording_policy(max_retries)
        calls = []

        def operation() -> str:
            calls.append(1)
            raise BearWatchError.server_error(500, "boom")

        with pytest.raises(BearWatchError) as exc_info:
            policy.execute(operation)

        assert len(calls) == max_retries + 1
        assert len(sleeps) == max_retries
        assert exc_info.value.status_code == 500

    def test_returns_first_success(self) -> None:
        """Test that the loop stops at the first successful attempt."""
        policy, sleeps = _recording_policy(3)
        outcomes = [BearWatchError.server_error(503, ""), BearWatchError.rate_limited(), "ok"]

        def operation() -> str:
            item = outcomes.pop(0)
            if isinstance(item, BearWatchError):
                raise item
            return item

        assert policy.execute(operation) == "ok"
        assert len(sleeps) == 2

    def test_last_error_propagates(self) -> None:
        """Test that the error of the final attempt is raised."""
        policy, _ = _recording_policy(1)
        errors = [BearWatchError.server_error(500, "first"), BearWatchError.server_error(502, "last")]

        def operation() -> None:
            raise errors.pop(0)

        with pytest.raises(BearWatchError) as exc_info:
            policy.execute(operation)
        assert exc_info.value.status_code == 502

    @pytest.mark.parametrize(
        "error",
        [
            BearWatchError.invalid_api_key(),
            BearWatchError.job_not_found("job-1"),
            BearWatchError.invalid_response("bad json", 200, "<html>"),
            BearWatchError.api_error(200, "JOB_PAUSED", "paused", "{}"),
        ],
    )
    def test_terminal_errors_are_not_retried(self, error: BearWatchError) -> None:
        """Test that non-transient errors fail on the first attempt."""
        policy, sleeps = _recording_policy(3)
        calls = []

        def operation() -> None:
            calls.append(1)
            raise error

        with pytest.raises(BearWatchError) as exc_info:
            policy.execute(operation)

        assert exc_info.value is error
        assert len(calls) == 1
        assert sleeps == []

    def test_interruption_during_wait_propagates(self) -> None:
        """Test that an interruption while waiting ends the loop unchanged."""
        calls = []

        def interrupted_sleep(delay: float) -> None:
            raise Interrupted()

        def operation() -> None:
            calls.append(1)
            raise BearWatchError.server_error(500, "")

        policy = RetryPolicy(max_retries=3, base_delay=0.1, sleep=interrupted_sleep)

        with pytest.raises(Interrupted):
            policy.execute(operation)
        assert len(calls) == 1

    def test_other_exceptions_propagate_immediately(self) -> None:
        """Test that non-SDK exceptions are never retried."""
        policy, sleeps = _recording_policy(3)

        def operation() -> None:
            raise KeyError("missing")

        with pytest.raises(KeyError):
            policy.execute(operation)
        assert sleeps == []

    def test_negative_max_retries_rejected(self) -> None:
        """Test policy validation."""
        with pytest.raises(ValueError):
            RetryPolicy(max_retries=-1)


class TestComputeDelay:
    """Test backoff delay calculation."""

    def test_retry_after_overrides_backoff(self) -> None:
        """Test that a server-directed delay replaces the computed one."""
        policy = RetryPolicy(max_retries=3, base_delay=10.0)
        for seconds in (0, 1, 7, 120):
            error = BearWatchError.rate_limited(seconds * 1000)
            for attempt in (1, 2, 3):
                assert policy.compute_delay(attempt, error) == seconds

    def test_exponential_bounds_with_jitter(self) -> None:
        """Test that jittered delays stay within half to full of the exponential value."""
        policy = RetryPolicy(max_retries=3, base_delay=0.05)
        error = BearWatchError.rate_limited()
        for attempt in (1, 2, 3):
            ceiling = 0.05 * 2**attempt
            for _ in range(200):
                delay = policy.compute_delay(attempt, error)
                assert 0.5 * ceiling <= delay <= ceiling

    def test_jitter_extremes(self) -> None:
        """Test delays at both ends of the jitter range."""
        error = BearWatchError.server_error(500, "")
        low, _ = _recording_policy(3, base_delay=0.5, value=0.0)
        high, _ = _recording_policy(3, base_delay=0.5, value=0.999)
        assert low.compute_delay(1, error) == pytest.approx(0.5)
        assert high.compute_delay(1, error) == pytest.approx(0.9995)
        assert low.compute_delay(3, error) == pytest.approx(2.0)

    def test_sleeps_grow_exponentially(self) -> None:
        """Test the sleep sequence of a full retry run."""
        policy, sleeps = _recording_policy(3, base_delay=0.1, value=0.0)

        def operation() -> None:
            raise BearWatchError.server_error(500, "")

        with pytest.raises(BearWatchError):
            policy.execute(operation)
        assert sleeps == pytest.approx([0.1, 0.2, 0.4])


class TestIsRetryable:
    """Test retryability decisions."""

    def test_transient_kinds(self) -> None:
        """Test kinds that are retried."""
        assert is_retryable(BearWatchError.server_error(500, ""))
        assert is_retryable(BearWatchError.rate_limited(1000))
        assert is_retryable(BearWatchError.network_error(httpx.ConnectError("refused")))
        assert is_retryable(BearWatchError.timeout(httpx.ReadTimeout("slow")))

    def test_io_error_deeper_in_cause_chain(self) -> None:
        """Test that an I/O error anywhere in the cause chain counts as transient."""
        root = ConnectionResetError("reset")
        wrapper = RuntimeError("wrapped")
        wrapper.__cause__ = root
        assert is_retryable(BearWatchError("Unexpected error", cause=wrapper))

    def test_terminal_kinds(self) -> None:
        """Test kinds that are not retried."""
        assert not is_retryable(BearWatchError.invalid_api_key())
        assert not is_retryable(BearWatchError.job_not_found("job-1"))
        assert not is_retryable(BearWatchError.invalid_response("bad", 200, "x", ValueError("x")))
        assert not is_retryable(BearWatchError("Unexpected error"))
        assert not is_retryable(BearWatchError.timeout())
