"""Rate-limited, resilient embedding service."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, List, Sequence

from archrag.cancellation import CancellationToken, run_cancellable
from archrag.embedding.base import EmbeddingProvider
from archrag.embedding.rate_limit import TokenBudgetRateLimiter
from archrag.embedding.resilience import (
    CircuitBreaker,
    CircuitState,
    ResiliencePolicy,
    resilient_call,
)
from archrag.errors import EmbeddingError
from archrag.monitoring.metrics import MetricsSink, NullMetrics
from archrag.pipeline.config import EmbeddingConfig

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


class ResilientEmbeddingService:
    """Embeds texts without bursting the token budget or hanging on a slow provider.

    Each provider call goes through, in order: the per-minute token budget,
    a bounded concurrency slot, and ``resilient_call`` (timeout, retry with
    backoff, circuit breaker). All waits are bounded and cancellable.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: EmbeddingConfig | None = None,
        rate_limiter: TokenBudgetRateLimiter | None = None,
        breaker: CircuitBreaker | None = None,
        metrics: MetricsSink | None = None,
    ):
        """Initialize service.

        Args:
            provider: Raw embedding provider
            config: Budget, concurrency and resilience settings
            rate_limiter: Shared token budget (one is created from config if omitted)
            breaker: Shared circuit breaker (one is created from config if omitted)
            metrics: Metrics sink
        """
        self._provider = provider
        self._config = config or EmbeddingConfig()
        self._metrics = metrics or NullMetrics()
        self._policy = ResiliencePolicy.from_config("embedding", self._config)

        self._rate_limiter = rate_limiter or TokenBudgetRateLimiter(
            tokens_per_period=self._config.tokens_per_minute,
            period_seconds=self._config.rate_limit_period_seconds,
            max_wait_seconds=self._config.max_rate_limit_wait_seconds,
            poll_interval_seconds=self._config.rate_limit_poll_seconds,
        )
        self._breaker = breaker or CircuitBreaker(
            self._policy, on_state_change=self._on_circuit_change
        )
        self._semaphore = asyncio.Semaphore(self._config.concurrency)

    @property
    def model_name(self) -> str:
        return self._provider.model_name

    @property
    def dimension(self) -> int:
        return self._provider.dimension

    @property
    def circuit_state(self) -> CircuitState:
        return self._breaker.state

    @property
    def rate_limiter(self) -> TokenBudgetRateLimiter:
        return self._rate_limiter

    async def create_embedding(
        self, text: str, cancel_token: CancellationToken | None = None
    ) -> List[float]:
        vectors = await self.create_embeddings([text], cancel_token)
        return vectors[0]

    async def create_embeddings(
        self, texts: Sequence[str], cancel_token: CancellationToken | None = None
    ) -> List[List[float]]:
        """Embed one batch through rate limiter, concurrency slot and resilience.

        Raises:
            EmbeddingError: If the provider returns the wrong number of vectors
            CircuitOpenError: If the provider circuit is open
            OperationCancelledError: If cancelled while waiting or calling
        """
        texts = list(texts)
        if not texts:
            return []

        cost = self._rate_limiter.estimate_cost(texts)
        decision = await self._rate_limiter.acquire(cost, cancel_token)
        if decision.forced:
            self._metrics.increment("embedding_rate_limit_forced", reason=decision.reason)

        acquired = await self._acquire_slot(cancel_token)
        started = time.perf_counter()
        try:
            vectors = await resilient_call(
                lambda: self._provider.generate_batch(texts),
                policy=self._policy,
                breaker=self._breaker,
                cancel_token=cancel_token,
            )
        finally:
            if acquired:
                self._semaphore.release()

        duration = time.perf_counter() - started
        self._metrics.histogram("embedding_call_duration_seconds", duration, model=self.model_name)
        self._metrics.increment("embedding_tokens_consumed", cost, model=self.model_name)

        if len(vectors) != len(texts):
            raise EmbeddingError(
                f"Provider returned {len(vectors)} embeddings for {len(texts)} texts"
            )
        return vectors

    async def create_embeddings_batched(
        self,
        texts: Sequence[str],
        batch_size: int | None = None,
        progress: ProgressCallback | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> List[List[float]]:
        """Embed a long list in sequential fixed-size batches.

        Args:
            texts: Texts to embed
            batch_size: Texts per provider call (defaults to config.batch_size)
            progress: Called with (embedded_so_far, total) after each batch
            cancel_token: Checked between batches

        Returns:
            One vector per text, in input order
        """
        texts = list(texts)
        batch_size = batch_size or self._config.batch_size
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")

        vectors: List[List[float]] = []
        for i in range(0, len(texts), batch_size):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            batch = texts[i : i + batch_size]
            vectors.extend(await self.create_embeddings(batch, cancel_token))

            if progress is not None:
                progress(len(vectors), len(texts))

        return vectors

    async def _acquire_slot(self, cancel_token: CancellationToken | None) -> bool:
        """Take a concurrency slot, or give up after the bounded wait and proceed."""
        try:
            await run_cancellable(
                asyncio.wait_for(
                    self._semaphore.acquire(), timeout=self._config.semaphore_wait_seconds
                ),
                cancel_token,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "No embedding concurrency slot after %.0fs; proceeding without one",
                self._config.semaphore_wait_seconds,
            )
            self._metrics.increment("embedding_semaphore_timeouts")
            return False
        return True

    def _on_circuit_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        self._metrics.increment("circuit_state_changes", circuit=name, state=new.value)
