"""Per-project token usage and cost accounting."""

import logging
import threading
from dataclasses import dataclass, field

from archrag.monitoring.metrics import MetricsSink, NullMetrics
from archrag.pipeline.config import ApprovalConfig

logger = logging.getLogger(__name__)

# USD per 1M tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "gpt-4o": (2.50, 10.00),
    "gpt-4o-mini": (0.15, 0.60),
    "gpt-4": (30.00, 60.00),
    "gpt-4-turbo": (10.00, 30.00),
    "gpt-3.5-turbo": (0.50, 1.50),
    "text-embedding-ada-002": (0.10, 0.0),
    "text-embedding-3-small": (0.02, 0.0),
    "text-embedding-3-large": (0.13, 0.0),
    "gemini-2.5-flash": (0.30, 2.50),
    "gemini-2.5-pro": (1.25, 10.00),
    "gemini-1.5-flash": (0.075, 0.30),
    "text-embedding-004": (0.0, 0.0),
    "gemini-embedding-001": (0.15, 0.0),
    "hashing-embedding": (0.0, 0.0),
    "mock-embedding": (0.0, 0.0),
    "mock": (0.0, 0.0),
}


def _pricing_key(model: str) -> str:
    model = model.lower()
    return model[len("models/"):] if model.startswith("models/") else model


def estimate_cost(model: str, input_tokens: int, output_tokens: int = 0) -> float:
    """Estimated USD cost of a call (0 for models without a price entry)."""
    input_price, output_price = MODEL_PRICING.get(_pricing_key(model), (0.0, 0.0))
    return (input_tokens / 1_000_000) * input_price + (output_tokens / 1_000_000) * output_price


@dataclass
class ProjectUsage:
    """Accumulated usage for one project."""

    input_tokens: int = 0
    output_tokens: int = 0
    embedding_calls: int = 0
    embedding_tokens: int = 0
    embedding_seconds: float = 0.0
    retrieval_operations: int = 0
    chunks_retrieved: int = 0
    retrieval_seconds: float = 0.0
    summarizations: int = 0
    model_call_seconds: float = 0.0
    failed_model_calls: int = 0
    estimated_cost: float = 0.0
    model_calls: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class TelemetrySummary:
    """Read-only view of a project's usage."""

    project_id: str
    total_tokens: int
    embedding_calls: int
    embedding_tokens: int
    retrieval_operations: int
    retrieval_seconds: float
    summarizations: int
    model_calls: dict[str, int]
    estimated_cost: float


@dataclass(frozen=True)
class ApprovalDecision:
    """Outcome of the job approval gate."""

    requires_approval: bool
    warning: bool
    reasons: list[str]


def evaluate_job_approval(
    estimated_tokens: int, estimated_cost: float, config: ApprovalConfig | None = None
) -> ApprovalDecision:
    """Decide whether a job can start unattended.

    Args:
        estimated_tokens: Estimated total tokens for the job
        estimated_cost: Estimated USD cost for the job
        config: Thresholds

    Returns:
        ApprovalDecision; ``requires_approval`` implies ``warning``
    """
    config = config or ApprovalConfig()
    reasons = []

    requires_approval = False
    if estimated_tokens >= config.approval_threshold_tokens:
        reasons.append(f"{estimated_tokens} tokens >= approval threshold {config.approval_threshold_tokens}")
        requires_approval = True
    if estimated_cost >= config.approval_threshold_cost:
        reasons.append(f"${estimated_cost:.2f} >= approval threshold ${config.approval_threshold_cost:.2f}")
        requires_approval = True

    warning = requires_approval
    if not requires_approval:
        if estimated_tokens >= config.warn_threshold_tokens:
            reasons.append(f"{estimated_tokens} tokens >= warning threshold {config.warn_threshold_tokens}")
            warning = True
        if estimated_cost >= config.warn_threshold_cost:
            reasons.append(f"${estimated_cost:.2f} >= warning threshold ${config.warn_threshold_cost:.2f}")
            warning = True

    return ApprovalDecision(requires_approval=requires_approval, warning=warning, reasons=reasons)


class AnalysisTelemetry:
    """Records token usage, calls and cost per project.

    Cost is accumulated per call at the called model's price rather than
    estimated afterwards, so mixed-model projects are priced correctly.
    """

    def __init__(self, metrics: MetricsSink | None = None):
        self._metrics = metrics or NullMetrics()
        self._lock = threading.Lock()
        self._projects: dict[str, ProjectUsage] = {}

    def _usage(self, project_id: str) -> ProjectUsage:
        usage = self._projects.get(project_id)
        if usage is None:
            usage = self._projects[project_id] = ProjectUsage()
        return usage

    def record_tokens_consumed(
        self, project_id: str, input_tokens: int, output_tokens: int, model: str
    ) -> None:
        with self._lock:
            usage = self._usage(project_id)
            usage.input_tokens += input_tokens
            usage.output_tokens += output_tokens
            usage.model_calls[model] = usage.model_calls.get(model, 0) + 1
            usage.estimated_cost += estimate_cost(model, input_tokens, output_tokens)

        self._metrics.increment("tokens_consumed", input_tokens + output_tokens, model=model)
        logger.debug(
            "Recorded tokens for %s: %d input, %d output, model: %s",
            project_id, input_tokens, output_tokens, model,
        )

    def record_embedding_call(
        self, project_id: str, text_count: int, tokens: int, model: str, duration: float
    ) -> None:
        with self._lock:
            usage = self._usage(project_id)
            usage.embedding_calls += 1
            usage.embedding_tokens += tokens
            usage.embedding_seconds += duration
            usage.estimated_cost += estimate_cost(model, tokens)

        logger.debug(
            "Recorded embedding call for %s: %d texts, %d tokens, %.3fs",
            project_id, text_count, tokens, duration,
        )

    def record_retrieval(
        self, project_id: str, chunks_retrieved: int, duration: float, summarized: bool
    ) -> None:
        with self._lock:
            usage = self._usage(project_id)
            usage.retrieval_operations += 1
            usage.chunks_retrieved += chunks_retrieved
            usage.retrieval_seconds += duration
            if summarized:
                usage.summarizations += 1

        logger.debug(
            "Recorded retrieval for %s: %d chunks, %.3fs, summarized: %s",
            project_id, chunks_retrieved, duration, summarized,
        )

    def record_model_call(
        self,
        project_id: str,
        model: str,
        input_tokens: int,
        output_tokens: int,
        duration: float,
        success: bool = True,
    ) -> None:
        self.record_tokens_consumed(project_id, input_tokens, output_tokens, model)
        with self._lock:
            usage = self._usage(project_id)
            usage.model_call_seconds += duration
            if not success:
                usage.failed_model_calls += 1
        self._metrics.histogram("model_call_duration_seconds", duration, model=model)

    def estimate_cost(self, model: str, input_tokens: int, output_tokens: int = 0) -> float:
        return estimate_cost(model, input_tokens, output_tokens)

    def get_project_summary(self, project_id: str) -> TelemetrySummary:
        with self._lock:
            usage = self._usage(project_id)
            return TelemetrySummary(
                project_id=project_id,
                total_tokens=usage.input_tokens + usage.output_tokens,
                embedding_calls=usage.embedding_calls,
                embedding_tokens=usage.embedding_tokens,
                retrieval_operations=usage.retrieval_operations,
                retrieval_seconds=usage.retrieval_seconds,
                summarizations=usage.summarizations,
                model_calls=dict(usage.model_calls),
                estimated_cost=usage.estimated_cost,
            )

    def exceeds_max_cost(self, project_id: str, max_cost: float) -> bool:
        return self.get_project_summary(project_id).estimated_cost > max_cost

    def reset_project(self, project_id: str) -> None:
        with self._lock:
            self._projects.pop(project_id, None)
