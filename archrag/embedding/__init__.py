"""Embedding providers and the resilient call layer around them."""

from archrag.embedding.base import EmbeddingProvider
from archrag.embedding.factory import create_embedding_provider
from archrag.embedding.gemini import GeminiEmbeddingProvider
from archrag.embedding.hashing import HashingEmbeddingProvider
from archrag.embedding.rate_limit import RateLimitDecision, TokenBudgetRateLimiter
from archrag.embedding.resilience import (
    CircuitBreaker,
    CircuitState,
    ResiliencePolicy,
    resilient_call,
)
from archrag.embedding.service import ResilientEmbeddingService

__all__ = [
    "EmbeddingProvider",
    "GeminiEmbeddingProvider",
    "HashingEmbeddingProvider",
    "create_embedding_provider",
    "RateLimitDecision",
    "TokenBudgetRateLimiter",
    "CircuitBreaker",
    "CircuitState",
    "ResiliencePolicy",
    "resilient_call",
    "ResilientEmbeddingService",
]
