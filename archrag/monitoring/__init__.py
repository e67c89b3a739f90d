"""Job supervision, metrics and cost accounting."""

from archrag.monitoring.metrics import InMemoryMetrics, MetricsSink, NullMetrics
from archrag.monitoring.telemetry import (
    AnalysisTelemetry,
    ApprovalDecision,
    TelemetrySummary,
    evaluate_job_approval,
)
from archrag.monitoring.watchdog import BatchProcessingWatchdog, ProjectIndexingInfo

__all__ = [
    "MetricsSink",
    "InMemoryMetrics",
    "NullMetrics",
    "AnalysisTelemetry",
    "ApprovalDecision",
    "TelemetrySummary",
    "evaluate_job_approval",
    "BatchProcessingWatchdog",
    "ProjectIndexingInfo",
]
