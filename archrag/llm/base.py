"""Text-generation interface behind the summarizer."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class LLMResponse:
    """One completion and the usage the provider reported for it.

    Attributes:
        content: Completion text
        model: Model that produced it
        tokens_used: Total tokens billed, when reported
        finish_reason: Provider stop reason ("STOP", "MAX_TOKENS", ...)
        input_tokens: Prompt tokens, when reported
        output_tokens: Completion tokens, when reported
    """

    content: str
    model: str
    tokens_used: Optional[int] = None
    finish_reason: Optional[str] = None
    input_tokens: Optional[int] = None
    output_tokens: Optional[int] = None

    @property
    def has_usage(self) -> bool:
        """True when both prompt and completion counts were reported."""
        return self.input_tokens is not None and self.output_tokens is not None


class BaseLLM(ABC):
    """A prompt-in, text-out model.

    Implementations only translate requests and errors; retries, timeouts
    and the circuit breaker live in ``LLMSummarizer``.
    """

    def __init__(
        self,
        model: str,
        temperature: float = 0.2,
        max_tokens: int = 2048,
    ):
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Complete ``prompt``; ``None`` overrides fall back to the instance defaults."""

    async def aclose(self) -> None:
        """Release network resources."""
