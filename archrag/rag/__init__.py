"""Retrieval orchestration and context assembly."""

from archrag.rag.context_builder import build_direct_context, build_summary_context
from archrag.rag.orchestrator import RetrievalOrchestrator
from archrag.rag.prompts import build_summarize_prompt

__all__ = [
    "RetrievalOrchestrator",
    "build_direct_context",
    "build_summary_context",
    "build_summarize_prompt",
]
