"""LLM factory for creating LLM instances."""

from archrag.llm.base import BaseLLM
from archrag.llm.gemini import GeminiLLM
from archrag.pipeline.config import LLMConfig


def create_llm(config: LLMConfig) -> BaseLLM | None:
    """Create LLM instance from configuration.

    Args:
        config: LLM configuration section

    Returns:
        BaseLLM instance, or None when no provider is configured

    Raises:
        ValueError: If provider is not supported or config is invalid
    """
    provider = config.provider

    if not provider:
        return None

    if provider == "gemini":
        return GeminiLLM(
            model=config.model,
            api_key=config.api_key,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            timeout=config.timeout_seconds,
        )
    else:
        raise ValueError(f"Unsupported LLM provider: {provider}. Supported: gemini")
