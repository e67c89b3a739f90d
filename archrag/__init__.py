"""Code-repository indexing and context retrieval service."""

__version__ = "0.1.0"

# Domain entities
from archrag.domain import Chunk, IndexingResult, RetrievalResult, SourceReference

# Errors
from archrag.errors import (
    ArchRagError,
    CircuitOpenError,
    EmbeddingError,
    IndexingError,
    OperationCancelledError,
    ProviderError,
)
from archrag.cancellation import CancellationToken

# Pipeline components
from archrag.pipeline.config import Config
from archrag.rag.orchestrator import RetrievalOrchestrator
from archrag.dependencies import Services, build_orchestrator

# CLI
from archrag.cli import main

__all__ = [
    # Domain
    "Chunk",
    "IndexingResult",
    "RetrievalResult",
    "SourceReference",
    # Errors
    "ArchRagError",
    "CircuitOpenError",
    "EmbeddingError",
    "IndexingError",
    "OperationCancelledError",
    "ProviderError",
    "CancellationToken",
    # Pipeline
    "Config",
    "RetrievalOrchestrator",
    "Services",
    "build_orchestrator",
    # CLI
    "main",
]
