"""Tests for timeout, retry and circuit breaking."""

import asyncio

import pytest

from archrag.cancellation import CancellationToken
from archrag.embedding.resilience import (
    CircuitBreaker,
    CircuitState,
    ResiliencePolicy,
    backoff_delay,
    resilient_call,
)
from archrag.errors import (
    CircuitOpenError,
    OperationCancelledError,
    ProviderError,
    TransientProviderError,
)


def make_policy(**overrides):
    values = dict(
        name="test",
        timeout_seconds=1.0,
        max_retry_attempts=0,
        retry_base_delay_seconds=0.001,
        failure_ratio=0.5,
        sampling_duration_seconds=30.0,
        minimum_throughput=10,
        break_duration_seconds=30.0,
    )
    values.update(overrides)
    return ResiliencePolicy(**values)


class FlakyProvider:
    """Fails with the queued errors, then returns "ok"."""

    def __init__(self, errors=()):
        self.errors = list(errors)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return "ok"


async def no_sleep(seconds, cancel_token=None):
    no_sleep.delays.append(seconds)


@pytest.fixture(autouse=True)
def reset_sleep():
    no_sleep.delays = []


class TestCircuitBreaker:
    """Tests for breaker state transitions."""

    def test_opens_on_failure_ratio(self, clock):
        """Test 4 successes and 6 failures open the circuit."""
        breaker = CircuitBreaker(make_policy(), clock=clock)

        for _ in range(4):
            breaker.record_success()
        for _ in range(5):
            breaker.record_failure()
        assert breaker.state is CircuitState.CLOSED

        breaker.record_failure()
        assert breaker.state is CircuitState.OPEN

        with pytest.raises(CircuitOpenError) as exc_info:
            breaker.before_call()
        assert exc_info.value.retry_after == pytest.approx(30.0)

    def test_stays_closed_below_minimum_throughput(self, clock):
        """Test that few calls never open the circuit."""
        breaker = CircuitBreaker(make_policy(), clock=clock)

        for _ in range(9):
            breaker.record_failure()

        assert breaker.state is CircuitState.CLOSED

    def test_old_samples_leave_the_window(self, clock):
        """Test that failures outside the sampling window are forgotten."""
        breaker = CircuitBreaker(make_policy(), clock=clock)
        for _ in range(9):
            breaker.record_failure()

        clock.advance(31)
        breaker.record_failure()

        assert breaker.state is CircuitState.CLOSED

    def test_half_open_single_trial_call(self, clock):
        """Test the break duration leads to one trial call, and success closes."""
        breaker = CircuitBreaker(make_policy(), clock=clock)
        for _ in range(10):
            breaker.record_failure()
        assert breaker.state is CircuitState.OPEN

        clock.advance(30)
        assert breaker.state is CircuitState.HALF_OPEN

        breaker.before_call()
        with pytest.raises(CircuitOpenError):
            breaker.before_call()

        breaker.record_success()
        assert breaker.state is CircuitState.CLOSED
        breaker.before_call()

    def test_half_open_failure_reopens(self, clock):
        breaker = CircuitBreaker(make_policy(), clock=clock)
        for _ in range(10):
            breaker.record_failure()
        clock.advance(30)

        breaker.before_call()
        breaker.record_failure()

        assert breaker.state is CircuitState.OPEN

    def test_state_change_callback(self, clock):
        """Test transitions are reported to the callback."""
        changes = []
        breaker = CircuitBreaker(
            make_policy(),
            on_state_change=lambda name, old, new: changes.append((name, old, new)),
            clock=clock,
        )
        for _ in range(10):
            breaker.record_failure()
        clock.advance(30)
        breaker.before_call()
        breaker.record_success()

        assert changes == [
            ("test", CircuitState.CLOSED, CircuitState.OPEN),
            ("test", CircuitState.OPEN, CircuitState.HALF_OPEN),
            ("test", CircuitState.HALF_OPEN, CircuitState.CLOSED),
        ]


class TestResilientCall:
    """Tests for the retry/timeout/breaker wrapper."""

    async def test_success(self):
        provider = FlakyProvider()
        assert await resilient_call(provider, policy=make_policy()) == "ok"
        assert provider.calls == 1

    async def test_retries_transient_errors(self):
        """Test transient failures are retried with backoff."""
        provider = FlakyProvider([TransientProviderError("503"), TransientProviderError("429")])

        result = await resilient_call(
            provider, policy=make_policy(max_retry_attempts=3), sleep=no_sleep
        )

        assert result == "ok"
        assert provider.calls == 3
        assert len(no_sleep.delays) == 2

    async def test_non_transient_not_retried(self):
        """Test that a non-transient error propagates after one call."""
        provider = FlakyProvider([ProviderError("bad request", status_code=400)])

        with pytest.raises(ProviderError, match="bad request"):
            await resilient_call(
                provider, policy=make_policy(max_retry_attempts=3), sleep=no_sleep
            )

        assert provider.calls == 1
        assert no_sleep.delays == []

    async def test_retries_exhausted(self):
        """Test the last transient error surfaces after all retries."""
        provider = FlakyProvider([TransientProviderError(str(i)) for i in range(5)])

        with pytest.raises(TransientProviderError, match="2"):
            await resilient_call(
                provider, policy=make_policy(max_retry_attempts=2), sleep=no_sleep
            )

        assert provider.calls == 3

    async def test_timeout_is_transient(self):
        """Test a hung call ends as a transient provider error."""
        async def hang():
            await asyncio.sleep(10)

        with pytest.raises(TransientProviderError, match="timed out"):
            await resilient_call(hang, policy=make_policy(timeout_seconds=0.01))

    async def test_open_circuit_fails_fast(self, clock):
        """Test that once open, calls are rejected without touching the provider."""
        policy = make_policy()
        breaker = CircuitBreaker(policy, clock=clock)
        provider = FlakyProvider([ProviderError("boom")] * 6)

        for _ in range(4):
            await resilient_call(FlakyProvider(), policy=policy, breaker=breaker)
        for _ in range(6):
            with pytest.raises(ProviderError):
                await resilient_call(provider, policy=policy, breaker=breaker)
        assert breaker.state is CircuitState.OPEN

        calls_before = provider.calls
        with pytest.raises(CircuitOpenError):
            await resilient_call(provider, policy=policy, breaker=breaker)
        assert provider.calls == calls_before

    async def test_trial_call_after_break(self, clock):
        """Test the half-open trial call closes the circuit on success."""
        policy = make_policy()
        breaker = CircuitBreaker(policy, clock=clock)
        for _ in range(10):
            with pytest.raises(ProviderError):
                await resilient_call(
                    FlakyProvider([ProviderError("boom")]), policy=policy, breaker=breaker
                )

        clock.advance(30)
        assert await resilient_call(FlakyProvider(), policy=policy, breaker=breaker) == "ok"
        assert breaker.state is CircuitState.CLOSED

    async def test_cancelled_token(self):
        provider = FlakyProvider()
        token = CancellationToken()
        token.cancel()

        with pytest.raises(OperationCancelledError):
            await resilient_call(provider, policy=make_policy(), cancel_token=token)
        assert provider.calls == 0

    async def test_unrelated_errors_do_not_count(self, clock):
        """Test that non-provider errors leave the breaker untouched."""
        policy = make_policy()
        breaker = CircuitBreaker(policy, clock=clock)

        for _ in range(12):
            with pytest.raises(KeyError):
                await resilient_call(
                    FlakyProvider([KeyError("x")]), policy=policy, breaker=breaker
                )

        assert breaker.state is CircuitState.CLOSED


def test_backoff_delay_bounds():
    """Test exponential backoff with jitter and a cap."""
    policy = make_policy(retry_base_delay_seconds=1.0, retry_max_delay_seconds=5.0)

    for _ in range(20):
        assert 0.5 <= backoff_delay(0, policy) <= 1.5
        assert 2.0 <= backoff_delay(2, policy) <= 5.0
        assert backoff_delay(10, policy) == 5.0


def test_policy_from_config(embedding_config):
    policy = ResiliencePolicy.from_config("embedding", embedding_config)

    assert policy.name == "embedding"
    assert policy.timeout_seconds == 5.0
    assert policy.retry_base_delay_seconds == 0.001
    assert policy.minimum_throughput == 10
