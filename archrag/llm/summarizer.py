"""Summarization capability used by the retrieval orchestrator."""

import logging
import time
from abc import ABC, abstractmethod

from archrag.cancellation import CancellationToken
from archrag.embedding.resilience import CircuitBreaker, ResiliencePolicy, resilient_call
from archrag.llm.base import BaseLLM
from archrag.monitoring.telemetry import AnalysisTelemetry
from archrag.pipeline.config import LLMConfig
from archrag.pipeline.tokenizer import estimate_tokens

logger = logging.getLogger(__name__)


class SummarizationProvider(ABC):
    """Turns a summarization prompt into summary text."""

    @abstractmethod
    async def summarize(
        self,
        prompt: str,
        project_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        pass

    async def aclose(self) -> None:
        pass


class LLMSummarizer(SummarizationProvider):
    """Summarizer backed by a BaseLLM, wrapped in timeout, retry and a breaker.

    Usage is recorded per project when telemetry is attached. Providers that
    do not report token counts are charged an estimate.
    """

    def __init__(
        self,
        llm: BaseLLM,
        policy: ResiliencePolicy | None = None,
        breaker: CircuitBreaker | None = None,
        telemetry: AnalysisTelemetry | None = None,
    ):
        self._llm = llm
        self._policy = policy or ResiliencePolicy.from_config("llm", LLMConfig())
        self._breaker = breaker or CircuitBreaker(self._policy)
        self._telemetry = telemetry

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def summarize(
        self,
        prompt: str,
        project_id: str | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> str:
        started = time.perf_counter()
        try:
            response = await resilient_call(
                lambda: self._llm.generate(prompt),
                policy=self._policy,
                breaker=self._breaker,
                cancel_token=cancel_token,
            )
        except Exception:
            if self._telemetry is not None and project_id is not None:
                self._telemetry.record_model_call(
                    project_id, self._llm.model, estimate_tokens(prompt), 0,
                    time.perf_counter() - started, success=False,
                )
            raise

        duration = time.perf_counter() - started
        if self._telemetry is not None and project_id is not None:
            if response.has_usage:
                input_tokens, output_tokens = response.input_tokens, response.output_tokens
            else:
                input_tokens = estimate_tokens(prompt)
                output_tokens = estimate_tokens(response.content)
            self._telemetry.record_model_call(
                project_id, response.model, input_tokens, output_tokens, duration
            )

        logger.debug("Summarized %d-char prompt in %.2fs", len(prompt), duration)
        return response.content

    async def aclose(self) -> None:
        await self._llm.aclose()
