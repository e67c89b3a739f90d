"""Embedding provider factory."""

from archrag.embedding.base import EmbeddingProvider
from archrag.embedding.gemini import GeminiEmbeddingProvider
from archrag.embedding.hashing import HashingEmbeddingProvider
from archrag.pipeline.config import EmbeddingConfig


def create_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    """Create embedding provider from configuration.

    Args:
        config: Embedding section with keys:
            - provider: "gemini" or "hashing"
            - model: Model name (gemini only)
            - api_key: API key (gemini only)
            - dimension: Vector size
            - timeout_seconds: HTTP timeout (gemini only)

    Returns:
        EmbeddingProvider instance

    Raises:
        ValueError: If provider is not supported or config is invalid
    """
    provider = config.provider

    if not provider:
        raise ValueError("Embedding config must specify 'provider'")

    if provider == "gemini":
        return GeminiEmbeddingProvider(
            model=config.model,
            api_key=config.api_key,
            dimension=config.dimension,
            timeout=config.timeout_seconds,
        )
    if provider == "hashing":
        return HashingEmbeddingProvider(dimension=config.dimension)
    raise ValueError(f"Unsupported embedding provider: {provider}. Supported: gemini, hashing")
