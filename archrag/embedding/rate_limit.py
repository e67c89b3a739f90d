"""Per-minute token budget for embedding calls.

Notes:
- State is owned by one limiter instance and injected into the embedding
  service; share the instance to share the budget.
- Waiting is bounded: after ``max_wait_seconds`` a call is forced through.
  Forward progress wins over strict budget adherence.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from archrag.cancellation import CancellationToken, cancellable_sleep
from archrag.pipeline.tokenizer import estimate_tokens

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of one reservation.

    Attributes:
        cost: Estimated tokens reserved
        forced: True when the budget was exceeded on purpose
        waited: Seconds spent waiting for capacity
        reason: "ok", "oversized" or "max_wait"
    """

    cost: int
    forced: bool = False
    waited: float = 0.0
    reason: str = "ok"


class TokenBudgetRateLimiter:
    """Token bucket that refills completely once per period."""

    def __init__(
        self,
        tokens_per_period: int,
        period_seconds: float = 60.0,
        max_wait_seconds: float = 30.0,
        poll_interval_seconds: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize limiter.

        Args:
            tokens_per_period: Budget per period (tokens per minute by default)
            period_seconds: Length of one budget period
            max_wait_seconds: Ceiling on time spent waiting for capacity
            poll_interval_seconds: Recheck interval while waiting
            clock: Monotonic time source
        """
        if tokens_per_period <= 0:
            raise ValueError("tokens_per_period must be positive")

        self._budget = tokens_per_period
        self._period_seconds = period_seconds
        self._max_wait_seconds = max_wait_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._clock = clock

        self._lock = asyncio.Lock()
        self._period_start = clock()
        self._tokens_used = 0

    @property
    def budget(self) -> int:
        return self._budget

    @property
    def tokens_used_this_period(self) -> int:
        return self._tokens_used

    @property
    def period_start(self) -> float:
        return self._period_start

    @staticmethod
    def estimate_cost(texts: Iterable[str]) -> int:
        return sum(estimate_tokens(text) for text in texts)

    def _roll_period(self, now: float) -> None:
        if now - self._period_start >= self._period_seconds:
            self._period_start = now
            self._tokens_used = 0

    async def _try_reserve(self, cost: int, force: bool = False) -> bool:
        async with self._lock:
            self._roll_period(self._clock())
            if force or self._tokens_used + cost <= self._budget:
                self._tokens_used += cost
                return True
            return False

    async def acquire(
        self, cost: int, cancel_token: CancellationToken | None = None
    ) -> RateLimitDecision:
        """Reserve ``cost`` tokens, waiting a bounded time for capacity.

        Raises:
            OperationCancelledError: If ``cancel_token`` fires while waiting
        """
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        if cost > self._budget:
            logger.warning(
                "Embedding batch of ~%d tokens exceeds the per-period budget of %d; proceeding immediately",
                cost, self._budget,
            )
            await self._try_reserve(cost, force=True)
            return RateLimitDecision(cost=cost, forced=True, reason="oversized")

        if await self._try_reserve(cost):
            return RateLimitDecision(cost=cost)

        started = self._clock()
        max_polls = max(1, math.ceil(self._max_wait_seconds / self._poll_interval_seconds))

        for _ in range(max_polls):
            await cancellable_sleep(self._poll_interval_seconds, cancel_token)

            if await self._try_reserve(cost):
                waited = self._clock() - started
                logger.debug("Rate limiter admitted %d tokens after %.1fs", cost, waited)
                return RateLimitDecision(cost=cost, waited=waited)

            if self._clock() - started >= self._max_wait_seconds:
                break

        waited = self._clock() - started
        await self._try_reserve(cost, force=True)
        logger.warning(
            "Rate limiter waited %.1fs for %d tokens (used %d/%d); forcing call through",
            waited, cost, self._tokens_used, self._budget,
        )
        return RateLimitDecision(cost=cost, forced=True, waited=waited, reason="max_wait")
