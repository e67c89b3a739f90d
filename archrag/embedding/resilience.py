"""Timeout, retry and circuit breaking around provider calls.

``resilient_call`` takes a plain zero-argument coroutine function and applies,
per attempt: circuit breaker gate -> timeout -> call. Transient failures are
retried with exponential backoff and jitter; everything else propagates.
"""

from __future__ import annotations

import asyncio
import logging
import random
import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, TypeVar

import httpx

from archrag.cancellation import CancellationToken, cancellable_sleep, run_cancellable
from archrag.errors import (
    CircuitOpenError,
    OperationCancelledError,
    ProviderError,
    TransientProviderError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class ResiliencePolicy:
    """Timeout, retry and breaker parameters for one dependency.

    Attributes:
        name: Dependency name used in logs and errors
        timeout_seconds: Per-attempt timeout
        max_retry_attempts: Retries after the first attempt
        retry_base_delay_seconds: First backoff delay (doubled per retry)
        retry_max_delay_seconds: Cap on a single backoff delay
        failure_ratio: Failure share over the sampling window that opens the circuit
        sampling_duration_seconds: Length of the sliding sampling window
        minimum_throughput: Calls required in the window before the ratio applies
        break_duration_seconds: How long the circuit stays open before probing
    """

    name: str = "provider"
    timeout_seconds: float = 60.0
    max_retry_attempts: int = 3
    retry_base_delay_seconds: float = 1.0
    retry_max_delay_seconds: float = 30.0
    failure_ratio: float = 0.5
    sampling_duration_seconds: float = 30.0
    minimum_throughput: int = 10
    break_duration_seconds: float = 30.0

    @classmethod
    def from_config(cls, name: str, config) -> "ResiliencePolicy":
        """Build from an EmbeddingConfig or LLMConfig section."""
        return cls(
            name=name,
            timeout_seconds=config.timeout_seconds,
            max_retry_attempts=config.max_retry_attempts,
            retry_base_delay_seconds=config.retry_base_delay_ms / 1000.0,
            failure_ratio=config.failure_ratio,
            sampling_duration_seconds=config.sampling_duration_seconds,
            minimum_throughput=config.minimum_throughput,
            break_duration_seconds=config.break_duration_seconds,
        )


StateChangeCallback = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """Failure-ratio circuit breaker over a sliding time window.

    CLOSED: calls flow, outcomes are sampled. Once at least
    ``minimum_throughput`` outcomes fall in the window and the failure share
    reaches ``failure_ratio``, the circuit opens.
    OPEN: calls are rejected with CircuitOpenError for ``break_duration_seconds``.
    HALF_OPEN: a single trial call is admitted; success closes the circuit,
    failure opens it again.
    """

    def __init__(
        self,
        policy: ResiliencePolicy,
        on_state_change: StateChangeCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._policy = policy
        self._on_state_change = on_state_change
        self._clock = clock

        self._lock = threading.Lock()
        self._outcomes: deque[tuple[float, bool]] = deque()
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._trial_in_flight = False

    @property
    def name(self) -> str:
        return self._policy.name

    @property
    def state(self) -> CircuitState:
        with self._lock:
            transition = self._refresh()
        self._notify(transition)
        return self._state

    def before_call(self) -> None:
        """Admit or reject a call.

        Raises:
            CircuitOpenError: While open, or while a half-open trial call is running
        """
        with self._lock:
            transition = self._refresh()
            rejected: float | None = None
            if self._state is CircuitState.OPEN:
                rejected = self._opened_at + self._policy.break_duration_seconds - self._clock()
            elif self._state is CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    rejected = 0.0
                else:
                    self._trial_in_flight = True
        self._notify(transition)

        if rejected is not None:
            raise CircuitOpenError(self._policy.name, max(0.0, rejected))

    def record_success(self) -> None:
        with self._lock:
            transition = None
            if self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                self._outcomes.clear()
                transition = self._set_state(CircuitState.CLOSED)
            else:
                self._sample(False)
        self._notify(transition)

    def record_failure(self) -> None:
        with self._lock:
            transition = None
            if self._state is CircuitState.HALF_OPEN:
                self._trial_in_flight = False
                transition = self._open()
            elif self._state is CircuitState.CLOSED:
                self._sample(True)
                total = len(self._outcomes)
                failures = sum(1 for _, failed in self._outcomes if failed)
                if (
                    total >= self._policy.minimum_throughput
                    and failures / total >= self._policy.failure_ratio
                ):
                    transition = self._open()
        self._notify(transition)

    def record_ignored(self) -> None:
        """Release the half-open trial slot for a call that ended without an outcome."""
        with self._lock:
            self._trial_in_flight = False

    def reset(self) -> None:
        with self._lock:
            self._outcomes.clear()
            self._trial_in_flight = False
            transition = self._set_state(CircuitState.CLOSED)
        self._notify(transition)

    # Helpers below run under self._lock

    def _sample(self, failed: bool) -> None:
        now = self._clock()
        self._outcomes.append((now, failed))
        horizon = now - self._policy.sampling_duration_seconds
        while self._outcomes and self._outcomes[0][0] < horizon:
            self._outcomes.popleft()

    def _open(self):
        self._opened_at = self._clock()
        self._outcomes.clear()
        return self._set_state(CircuitState.OPEN)

    def _refresh(self):
        if (
            self._state is CircuitState.OPEN
            and self._clock() - self._opened_at >= self._policy.break_duration_seconds
        ):
            return self._set_state(CircuitState.HALF_OPEN)
        return None

    def _set_state(self, new_state: CircuitState):
        old_state = self._state
        if old_state is new_state:
            return None
        self._state = new_state
        return old_state, new_state

    def _notify(self, transition) -> None:
        if transition is None:
            return
        old_state, new_state = transition
        if new_state is CircuitState.OPEN:
            logger.warning(
                "Circuit '%s' opened (%s -> %s); rejecting calls for %.0fs",
                self._policy.name, old_state.value, new_state.value,
                self._policy.break_duration_seconds,
            )
        else:
            logger.info(
                "Circuit '%s' %s -> %s", self._policy.name, old_state.value, new_state.value
            )
        if self._on_state_change is not None:
            self._on_state_change(self._policy.name, old_state, new_state)


def is_transient_error(error: BaseException) -> bool:
    """Network failures, timeouts, throttling and 5xx are worth retrying."""
    return isinstance(
        error, (TransientProviderError, httpx.TransportError, asyncio.TimeoutError)
    )


def _counts_as_failure(error: BaseException) -> bool:
    return isinstance(error, (ProviderError, httpx.HTTPError, asyncio.TimeoutError))


def backoff_delay(attempt: int, policy: ResiliencePolicy) -> float:
    """Exponential backoff with jitter for retry number ``attempt`` (0-based)."""
    delay = policy.retry_base_delay_seconds * (2 ** attempt) * random.uniform(0.5, 1.5)
    return min(policy.retry_max_delay_seconds, delay)


async def resilient_call(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: ResiliencePolicy,
    breaker: CircuitBreaker | None = None,
    is_transient: Callable[[BaseException], bool] = is_transient_error,
    cancel_token: CancellationToken | None = None,
    sleep: Callable[[float, CancellationToken | None], Awaitable[None]] = cancellable_sleep,
) -> T:
    """Run ``operation`` with timeout, retry and circuit breaking.

    Args:
        operation: Zero-argument coroutine function performing one provider call
        policy: Timeout/retry/breaker parameters
        breaker: Circuit breaker shared by all calls to the same dependency
        is_transient: Predicate selecting retryable errors
        cancel_token: Aborts waits and in-flight calls
        sleep: Backoff sleep, ``sleep(seconds, cancel_token)``

    Returns:
        The operation's result

    Raises:
        CircuitOpenError: When the breaker rejects the call
        OperationCancelledError: When cancelled
        Exception: The last error after retries are exhausted, or the first
            non-transient error
    """
    attempt = 0
    while True:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()
        if breaker is not None:
            breaker.before_call()

        try:
            result = await run_cancellable(
                asyncio.wait_for(operation(), timeout=policy.timeout_seconds),
                cancel_token,
            )
        except (OperationCancelledError, asyncio.CancelledError):
            if breaker is not None:
                breaker.record_ignored()
            raise
        except Exception as e:
            if breaker is not None:
                if _counts_as_failure(e):
                    breaker.record_failure()
                else:
                    breaker.record_ignored()

            if not is_transient(e) or attempt >= policy.max_retry_attempts:
                if isinstance(e, asyncio.TimeoutError):
                    raise TransientProviderError(
                        f"{policy.name} call timed out after {policy.timeout_seconds}s"
                    ) from e
                raise

            delay = backoff_delay(attempt, policy)
            attempt += 1
            logger.warning(
                "%s call failed (%s); retry %d/%d in %.2fs",
                policy.name, e.__class__.__name__, attempt, policy.max_retry_attempts, delay,
            )
            await sleep(delay, cancel_token)
            continue

        if breaker is not None:
            breaker.record_success()
        return result
