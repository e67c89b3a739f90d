"""Tests for the per-minute token budget."""

import asyncio

import pytest

from archrag.cancellation import CancellationToken
from archrag.embedding.rate_limit import TokenBudgetRateLimiter
from archrag.errors import OperationCancelledError


def make_limiter(clock, budget=100, max_wait=0.05, poll=0.01, period=60.0):
    return TokenBudgetRateLimiter(
        tokens_per_period=budget,
        period_seconds=period,
        max_wait_seconds=max_wait,
        poll_interval_seconds=poll,
        clock=clock,
    )


async def test_reserves_within_budget(clock):
    """Test that calls under the budget proceed immediately."""
    limiter = make_limiter(clock)

    first = await limiter.acquire(40)
    second = await limiter.acquire(60)

    assert not first.forced and not second.forced
    assert second.reason == "ok"
    assert limiter.tokens_used_this_period == 100


async def test_oversized_cost_is_forced(clock):
    """Test that a single call larger than the budget goes through at once."""
    limiter = make_limiter(clock)

    decision = await limiter.acquire(250)

    assert decision.forced
    assert decision.reason == "oversized"
    assert decision.waited == 0.0
    assert limiter.tokens_used_this_period == 250


async def test_forced_after_max_wait(clock):
    """Test that an exhausted budget forces the call after bounded polling."""
    limiter = make_limiter(clock, max_wait=0.03, poll=0.01)
    await limiter.acquire(90)

    decision = await limiter.acquire(20)

    assert decision.forced
    assert decision.reason == "max_wait"
    assert limiter.tokens_used_this_period == 110


async def test_period_rollover(clock):
    """Test that a new period resets usage to the new reservation."""
    limiter = make_limiter(clock)
    await limiter.acquire(90)

    clock.advance(60)
    decision = await limiter.acquire(50)

    assert not decision.forced
    assert limiter.tokens_used_this_period == 50
    assert limiter.period_start == clock()


async def test_admitted_after_real_rollover():
    """Test that a waiting call is admitted once the period rolls over."""
    limiter = TokenBudgetRateLimiter(
        tokens_per_period=100,
        period_seconds=0.05,
        max_wait_seconds=5.0,
        poll_interval_seconds=0.01,
    )
    await limiter.acquire(90)

    decision = await limiter.acquire(50)

    assert not decision.forced
    assert decision.reason == "ok"
    assert decision.waited > 0


async def test_cancelled_before_acquire(clock):
    limiter = make_limiter(clock)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(OperationCancelledError):
        await limiter.acquire(10, token)
    assert limiter.tokens_used_this_period == 0


async def test_cancelled_while_waiting(clock):
    """Test that cancellation interrupts the wait for capacity."""
    limiter = make_limiter(clock, max_wait=10.0, poll=0.05)
    await limiter.acquire(100)
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel)

    with pytest.raises(OperationCancelledError):
        await limiter.acquire(10, token)


def test_estimate_cost():
    """Test cost estimation sums per-text estimates."""
    assert TokenBudgetRateLimiter.estimate_cost(["a" * 40, "b" * 8]) == 12


def test_budget_must_be_positive(clock):
    with pytest.raises(ValueError):
        make_limiter(clock, budget=0)
